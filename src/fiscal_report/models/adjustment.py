"""Adjustment session and history documents."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field

from fiscal_report.models.base import DocumentBase
from fiscal_report.models.proposal import ChangeProposal


class SessionStatus(StrEnum):
    INPUT = "input"
    ANALYZING = "analyzing"
    REVIEW = "review"
    APPLYING = "applying"
    COMPLETE = "complete"
    PREVIEW = "preview"
    ADJUST = "adjust"


class DecisionKind(StrEnum):
    ACCEPT = "accept"
    REJECT = "reject"
    EDIT = "edit"


class ApplyMode(StrEnum):
    DIRECT = "direct"
    AI = "ai"


class ProposalDecision(BaseModel):
    decision: DecisionKind
    edited_text: str | None = None


class AdjustmentSession(DocumentBase):
    """A user-driven propose/review/apply loop over one document."""

    report_id: str | None = None
    title: str = ""
    original_content: str = ""
    current_content: str = ""
    status: SessionStatus = SessionStatus.INPUT
    instruction: str = ""
    proposals: list[ChangeProposal] = Field(default_factory=list)
    decisions: dict[str, ProposalDecision] = Field(default_factory=dict)
    preview_content: str | None = None
    adjustment_count: int = 0
    last_instruction: str | None = None
    etag: str | None = Field(default=None, alias="_etag", exclude=True)

    @property
    def is_external(self) -> bool:
        return self.report_id is None


class Adjustment(DocumentBase):
    """Immutable audit entry for one applied batch of adjustments."""

    session_id: str
    report_id: str | None = None
    version: int
    instruction: str
    previous_content: str
    new_content: str
    mode: ApplyMode = ApplyMode.DIRECT
    applied: list[str] = Field(default_factory=list)
    not_found: list[str] = Field(default_factory=list)
    snapshot_version: int | None = None
