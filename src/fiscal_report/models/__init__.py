"""Pydantic document models."""

from fiscal_report.models.adjustment import (
    Adjustment,
    AdjustmentSession,
    ApplyMode,
    DecisionKind,
    ProposalDecision,
    SessionStatus,
)
from fiscal_report.models.ai_config import AiConfig, PromptConfig, Provider, StageConfig
from fiscal_report.models.base import DocumentBase
from fiscal_report.models.job import JobStatus, PipelineJob
from fiscal_report.models.proposal import ChangeProposal, ChangeType, ParseResult, Severity
from fiscal_report.models.report import (
    DocumentVersionSet,
    Report,
    ReportStatus,
    RollbackInfo,
    RolledBackChange,
    Snapshot,
)
from fiscal_report.models.stage import SnapshotSource, StageId

__all__ = [
    "Adjustment",
    "AdjustmentSession",
    "AiConfig",
    "ApplyMode",
    "ChangeProposal",
    "ChangeType",
    "DecisionKind",
    "DocumentBase",
    "DocumentVersionSet",
    "JobStatus",
    "ParseResult",
    "PipelineJob",
    "PromptConfig",
    "ProposalDecision",
    "Provider",
    "Report",
    "ReportStatus",
    "RollbackInfo",
    "RolledBackChange",
    "SessionStatus",
    "Severity",
    "Snapshot",
    "SnapshotSource",
    "StageConfig",
    "StageId",
]
