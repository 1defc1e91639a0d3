"""ChangeProposal — the normalized shape of every reviewer or adjustment edit."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class ChangeType(StrEnum):
    ADD = "add"
    DELETE = "delete"
    MODIFY = "modify"
    RESTRUCTURE = "restructure"


class Severity(StrEnum):
    CRITICAL = "critical"
    IMPORTANT = "important"
    SUGGESTION = "suggestion"


class ChangeProposal(BaseModel):
    """One proposed edit, addressable by its stage id and index."""

    model_config = ConfigDict(frozen=True)

    change_type: ChangeType = ChangeType.MODIFY
    severity: Severity = Severity.SUGGESTION
    section: str = ""
    original: str = ""
    proposed: str = ""
    reasoning: str = ""
    index: int = 0
    stage_id: str = ""
    specialist: str = ""
    id: str = ""

    @property
    def key(self) -> str:
        """Rollback key, ``{stage_id}-{index}``."""
        return f"{self.stage_id}-{self.index}"

    @property
    def description(self) -> str:
        parts = [p for p in (self.reasoning, self.proposed) if p]
        return " — ".join(parts)


class ParseResult(BaseModel):
    """Proposals plus the diagnostics of how they were extracted."""

    proposals: list[ChangeProposal]
    strategy: str
    attempts: list[str]
    raw_excerpt: str = ""
    error: str | None = None

    @property
    def degraded(self) -> bool:
        """True when no JSON could be used and a text fallback was taken."""
        return self.strategy in ("text_lines", "whole_text")
