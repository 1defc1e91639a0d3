"""Report document model — the aggregate root of the pipeline."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from fiscal_report.models.base import DocumentBase, utc_now
from fiscal_report.models.stage import STAGE_ORDER


class ReportStatus(StrEnum):
    DRAFT = "draft"
    PROCESSING = "processing"
    GENERATED = "generated"
    ERROR = "error"


class RollbackInfo(BaseModel):
    """Which stage change was undone to produce a snapshot."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    change_index: int


class Snapshot(BaseModel):
    """An immutable, fully-materialized document version."""

    model_config = ConfigDict(frozen=True)

    version: int
    content: str
    source: str
    from_version: int | None = None
    rollback: RollbackInfo | None = None
    processed_feedback: str | None = None
    created_at: datetime = Field(default_factory=utc_now)


class DocumentVersionSet(BaseModel):
    """Append-only version history with a single latest pointer."""

    snapshots: list[Snapshot] = Field(default_factory=list)
    latest: int | None = None

    def latest_snapshot(self) -> Snapshot | None:
        if self.latest is None:
            return None
        return self.get(self.latest)

    def latest_content(self) -> str | None:
        snapshot = self.latest_snapshot()
        return snapshot.content if snapshot else None

    def get(self, version: int) -> Snapshot | None:
        for snapshot in self.snapshots:
            if snapshot.version == version:
                return snapshot
        return None

    def next_version(self) -> int:
        return (self.latest or 0) + 1

    def with_snapshot(self, snapshot: Snapshot) -> DocumentVersionSet:
        """Return a new set with ``snapshot`` appended and the pointer advanced."""
        if snapshot.version != self.next_version():
            msg = f"Expected version {self.next_version()}, got {snapshot.version}"
            raise ValueError(msg)
        return DocumentVersionSet(
            snapshots=[*self.snapshots, snapshot],
            latest=snapshot.version,
        )

    def integrity_warnings(self) -> list[str]:
        """Describe any violation of the gapless, increasing, single-latest rules."""
        warnings: list[str] = []
        versions = [s.version for s in self.snapshots]
        if versions != list(range(1, len(versions) + 1)):
            warnings.append(f"Version sequence is not gapless from 1: {versions}")
        if versions and self.latest != max(versions):
            warnings.append(f"Latest pointer {self.latest} does not match max version {max(versions)}")
        if not versions and self.latest is not None:
            warnings.append("Latest pointer set without any snapshots")
        return warnings


class RolledBackChange(BaseModel):
    stage_id: str
    change_index: int
    version: int
    fuzzy_matched: bool = False
    rolled_back_at: datetime = Field(default_factory=utc_now)


class Report(DocumentBase):
    """A fiscal advice report moving through the stage pipeline."""

    client_name: str = ""
    raw_input: str = ""
    status: ReportStatus = ReportStatus.DRAFT
    stage_results: dict[str, str] = Field(default_factory=dict)
    stage_prompts: dict[str, str] = Field(default_factory=dict)
    versions: DocumentVersionSet = Field(default_factory=DocumentVersionSet)
    failed_stage: str | None = None
    error: str | None = None
    rolled_back_changes: dict[str, RolledBackChange] = Field(default_factory=dict)
    etag: str | None = Field(default=None, alias="_etag", exclude=True)

    def completed_stages(self) -> set[str]:
        return {stage for stage, output in self.stage_results.items() if output}

    def record_stage(self, stage_id: str, output: str, prompt: str) -> None:
        """Store a stage's raw output and prompt and settle the lifecycle status.

        New output invalidates the stage's rollback markers: change indexes
        refer to the proposals parsed from the output they were recorded for.
        """
        if self.stage_results.get(stage_id) != output:
            self.rolled_back_changes = {
                key: change
                for key, change in self.rolled_back_changes.items()
                if change.stage_id != stage_id
            }
        self.stage_results[stage_id] = output
        self.stage_prompts[stage_id] = prompt
        if self.failed_stage == stage_id:
            self.failed_stage = None
            self.error = None
        if self.failed_stage is None:
            done = self.completed_stages()
            finished = all(stage in done for stage in STAGE_ORDER)
            self.status = ReportStatus.GENERATED if finished else ReportStatus.PROCESSING
