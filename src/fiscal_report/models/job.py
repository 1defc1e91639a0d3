"""Pipeline job document — queued long-running stage work."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import Field

from fiscal_report.models.base import DocumentBase
from fiscal_report.models.stage import StageId


class JobStatus(StrEnum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class PipelineJob(DocumentBase):
    """A request to run stages for a report outside the request cycle.

    An empty ``stage_ids`` list means run every remaining stage.
    """

    report_id: str
    stage_ids: list[StageId] = Field(default_factory=list)
    status: JobStatus = JobStatus.QUEUED
    error: str | None = None
    claimed_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
