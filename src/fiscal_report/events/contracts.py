"""Typed contracts for report pipeline events."""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel


class EventEnvelope(BaseModel):
    """Canonical event envelope used on Service Bus."""

    event: str
    data: dict[str, Any] | str

    @classmethod
    def from_message_body(cls, body: str) -> EventEnvelope:
        """Parse an event envelope from a JSON message body.

        ``data`` may arrive as stringified JSON and is decoded when it is an object.
        """
        envelope = cls.model_validate(json.loads(body))
        if isinstance(envelope.data, str):
            try:
                decoded = json.loads(envelope.data)
            except json.JSONDecodeError:
                return envelope
            if isinstance(decoded, dict):
                envelope.data = decoded
        return envelope


class StageEvent(BaseModel):
    """Payload of stage-start, stage-complete and stage-failed events."""

    report_id: str
    stage_id: str
    job_id: str | None = None
    version: int | None = None
    error: str | None = None
