"""Event contracts and publishing interfaces for pipeline progress."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from fiscal_report.events.contracts import EventEnvelope, StageEvent
from fiscal_report.events.servicebus import ServiceBusPublisher


@runtime_checkable
class EventPublisher(Protocol):
    """Protocol for publishing pipeline events to connected consumers."""

    async def publish(self, event_type: str, data: StageEvent | dict[str, Any] | str) -> None:
        """Broadcast an event to all connected consumers."""
        ...


class NullPublisher:
    """Publisher that drops every event."""

    async def publish(self, event_type: str, data: StageEvent | dict[str, Any] | str) -> None:
        return None


__all__ = [
    "EventEnvelope",
    "EventPublisher",
    "NullPublisher",
    "ServiceBusPublisher",
    "StageEvent",
]
