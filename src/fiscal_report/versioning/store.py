"""Append-only snapshot history for report documents."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from fiscal_report.config import PipelineConfig
from fiscal_report.errors import VersionConflictError
from fiscal_report.models.report import Report, RollbackInfo, Snapshot
from fiscal_report.models.stage import SnapshotSource

if TYPE_CHECKING:
    from collections.abc import Callable

    from fiscal_report.database.repositories.reports import ReportRepository

logger = logging.getLogger(__name__)


class VersionedDocumentStore:
    """Single source of truth for a report's current content and its history.

    Snapshots are full documents, never diffs, and are never changed after
    they are written. Version allocation is serialized per report in-process
    with a lock and across processes with an etag compare-and-swap.
    """

    def __init__(self, reports: ReportRepository, config: PipelineConfig | None = None) -> None:
        self._reports = reports
        self._config = config or PipelineConfig()
        self._locks: dict[str, asyncio.Lock] = {}

    def _get_report_lock(self, report_id: str) -> asyncio.Lock:
        """Return the per-report lock, creating it on first use."""
        lock = self._locks.get(report_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[report_id] = lock
        return lock

    async def latest_content(self, report_id: str) -> str | None:
        """Content of the highest version, or None before any mutating stage ran."""
        report = await self._reports.require(report_id)
        return report.versions.latest_content()

    async def latest_snapshot(self, report_id: str) -> Snapshot | None:
        report = await self._reports.require(report_id)
        return report.versions.latest_snapshot()

    async def list_snapshots(self, report_id: str) -> list[Snapshot]:
        report = await self._reports.require(report_id)
        return list(report.versions.snapshots)

    async def get_snapshot(self, report_id: str, version: int) -> Snapshot | None:
        report = await self._reports.require(report_id)
        return report.versions.get(version)

    async def append_snapshot(
        self,
        report_id: str,
        source: str,
        content: str,
        *,
        from_version: int | None = None,
        rollback: RollbackInfo | None = None,
        processed_feedback: str | None = None,
        also: Callable[[Report, Snapshot], None] | None = None,
    ) -> Snapshot:
        """Store ``content`` as the next version and advance the latest pointer.

        ``also`` is applied to the report in the same write, for bookkeeping
        that must land atomically with the snapshot. A lost race is retried
        against the fresh latest version.
        """
        return await self.append_derived(
            report_id,
            source,
            lambda _report: content,
            from_version=from_version,
            rollback=rollback,
            processed_feedback=processed_feedback,
            also=also,
        )

    async def append_derived(
        self,
        report_id: str,
        source: str,
        derive: Callable[[Report], str],
        *,
        from_version: int | None = None,
        rollback: RollbackInfo | None = None,
        processed_feedback: str | None = None,
        also: Callable[[Report, Snapshot], None] | None = None,
    ) -> Snapshot:
        """Append a snapshot whose content is computed from the freshly read report.

        ``derive`` runs once per attempt, so content built from the latest
        version is rebuilt after a lost race. Exceptions it raises propagate
        without writing anything.
        """
        attempts = max(1, self._config.max_append_retries)
        async with self._get_report_lock(report_id):
            conflict: VersionConflictError | None = None
            for attempt in range(1, attempts + 1):
                try:
                    snapshot = await self._try_append(
                        report_id,
                        source,
                        derive,
                        from_version=from_version,
                        rollback=rollback,
                        processed_feedback=processed_feedback,
                        also=also,
                    )
                except VersionConflictError as exc:
                    conflict = exc
                    logger.warning(
                        "Snapshot version conflict — report=%s version=%d attempt=%d/%d",
                        report_id,
                        exc.version,
                        attempt,
                        attempts,
                    )
                    continue
                logger.info(
                    "Snapshot appended — report=%s version=%d source=%s chars=%d",
                    report_id,
                    snapshot.version,
                    source,
                    len(snapshot.content),
                )
                return snapshot
            assert conflict is not None
            raise conflict

    async def _try_append(
        self,
        report_id: str,
        source: str,
        derive: Callable[[Report], str],
        *,
        from_version: int | None,
        rollback: RollbackInfo | None,
        processed_feedback: str | None,
        also: Callable[[Report, Snapshot], None] | None,
    ) -> Snapshot:
        report = await self._reports.require(report_id)
        content = derive(report)
        version = report.versions.next_version()
        snapshot = Snapshot(
            version=version,
            content=content,
            source=source,
            from_version=from_version if from_version is not None else report.versions.latest,
            rollback=rollback,
            processed_feedback=processed_feedback,
        )
        report.versions = report.versions.with_snapshot(snapshot)
        if also is not None:
            also(report, snapshot)
        if report.etag is None:
            raise RuntimeError(f"Report {report_id} was read without an etag")
        saved = await self._reports.replace_if_unmodified(report, report.etag)
        if saved is None:
            raise VersionConflictError(report_id, version)
        return snapshot

    async def edit_content(self, report_id: str, content: str) -> Snapshot:
        """Store a hand-edited document as the next version."""
        if not content.strip():
            raise ValueError("Edited content must not be empty")
        return await self.append_snapshot(report_id, SnapshotSource.MANUAL, content)

    async def restore_version(self, report_id: str, version: int) -> Snapshot:
        """Make an older version current again by appending a copy of it."""
        snapshot = await self.get_snapshot(report_id, version)
        if snapshot is None:
            raise LookupError(f"Report {report_id} has no version {version}")
        return await self.append_snapshot(
            report_id,
            SnapshotSource.MANUAL,
            snapshot.content,
            from_version=version,
        )
