"""Repository for the reports container (partitioned by /id)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fiscal_report.database.repositories.base import BaseRepository
from fiscal_report.errors import ReportNotFoundError, VersionConflictError
from fiscal_report.models.report import Report, ReportStatus

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

_DEFAULT_ATTEMPTS = 10


class ReportRepository(BaseRepository[Report]):
    """Provide data access for the reports container."""

    container_name = "reports"
    model_class = Report

    async def list_all(self) -> list[Report]:
        """Fetch all active reports, newest first."""
        return await self.query(
            "SELECT * FROM c WHERE NOT IS_DEFINED(c.deleted_at)"
            " ORDER BY c.created_at DESC",
        )

    async def get_by_status(self, status: ReportStatus) -> list[Report]:
        """Fetch active reports in a given lifecycle status."""
        return await self.query(
            "SELECT * FROM c WHERE c.status = @status AND NOT IS_DEFINED(c.deleted_at)",
            [{"name": "@status", "value": status.value}],
        )

    async def require(self, report_id: str) -> Report:
        report = await self.get(report_id, report_id)
        if report is None:
            raise ReportNotFoundError(report_id)
        return report

    async def mutate(
        self,
        report_id: str,
        change: Callable[[Report], None],
        *,
        attempts: int = _DEFAULT_ATTEMPTS,
    ) -> Report:
        """Read-modify-write a report under optimistic concurrency.

        ``change`` is re-applied to a fresh read after every lost race, so it
        must derive everything it writes from the report it is given.
        """
        for attempt in range(1, attempts + 1):
            report = await self.require(report_id)
            change(report)
            if report.etag is None:
                raise RuntimeError(f"Report {report_id} was read without an etag")
            saved = await self.replace_if_unmodified(report, report.etag)
            if saved is not None:
                return saved
            logger.info("Report write conflict — report=%s attempt=%d", report_id, attempt)
        raise VersionConflictError(report_id, -1)

    async def record_stage_output(
        self, report_id: str, stage_id: str, output: str, prompt: str
    ) -> Report:
        """Store a stage's raw output and the prompt that produced it."""

        def _apply(report: Report) -> None:
            report.record_stage(stage_id, output, prompt)

        return await self.mutate(report_id, _apply)

    async def mark_failed(self, report_id: str, stage_id: str, error: str, prompt: str) -> Report:
        """Put the report in the error state, naming the failing stage."""

        def _apply(report: Report) -> None:
            report.status = ReportStatus.ERROR
            report.failed_stage = stage_id
            report.error = error
            report.stage_prompts[stage_id] = prompt

        return await self.mutate(report_id, _apply)

    async def clear_stages(self, report_id: str, stage_ids: list[str]) -> Report:
        """Remove recorded output for the given stages."""

        def _apply(report: Report) -> None:
            for stage_id in stage_ids:
                report.stage_results.pop(stage_id, None)
                report.stage_prompts.pop(stage_id, None)
            report.rolled_back_changes = {
                key: change
                for key, change in report.rolled_back_changes.items()
                if change.stage_id not in stage_ids
            }
            if report.failed_stage in stage_ids:
                report.failed_stage = None
                report.error = None
            if report.failed_stage is None:
                report.status = (
                    ReportStatus.PROCESSING if report.completed_stages() else ReportStatus.DRAFT
                )

        return await self.mutate(report_id, _apply)
