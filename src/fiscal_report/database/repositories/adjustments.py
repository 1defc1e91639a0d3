"""Repositories for adjustment sessions and their history entries."""

from __future__ import annotations

from fiscal_report.database.repositories.base import BaseRepository
from fiscal_report.models.adjustment import Adjustment, AdjustmentSession


class AdjustmentSessionRepository(BaseRepository[AdjustmentSession]):
    """Sessions are partitioned by /id."""

    container_name = "adjustment_sessions"
    model_class = AdjustmentSession

    async def get_by_report(self, report_id: str) -> list[AdjustmentSession]:
        """Fetch all sessions opened against a report."""
        return await self.query(
            "SELECT * FROM c WHERE c.report_id = @report_id AND NOT IS_DEFINED(c.deleted_at)"
            " ORDER BY c.created_at DESC",
            [{"name": "@report_id", "value": report_id}],
        )


class AdjustmentRepository(BaseRepository[Adjustment]):
    """History entries are partitioned by /session_id."""

    container_name = "adjustments"
    model_class = Adjustment

    async def list_by_session(self, session_id: str) -> list[Adjustment]:
        """Fetch a session's history in version order."""
        return await self.query(
            "SELECT * FROM c WHERE c.session_id = @session_id AND NOT IS_DEFINED(c.deleted_at)"
            " ORDER BY c.version ASC",
            [{"name": "@session_id", "value": session_id}],
        )
