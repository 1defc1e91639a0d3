"""Repository for the jobs container (partitioned by /id)."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from fiscal_report.database.repositories.base import BaseRepository
from fiscal_report.models.job import JobStatus, PipelineJob

_CLAIM_TTL = timedelta(minutes=30)


def _is_claimable(job: PipelineJob, *, now: datetime) -> bool:
    """Queued jobs without a live claim, or running jobs whose worker went quiet."""
    expired = job.claimed_at is None or now - job.claimed_at >= _CLAIM_TTL
    if job.status is JobStatus.QUEUED:
        return expired
    return job.status is JobStatus.RUNNING and job.claimed_at is not None and expired


class JobRepository(BaseRepository[PipelineJob]):
    container_name = "jobs"
    model_class = PipelineJob

    async def list_for_report(self, report_id: str) -> list[PipelineJob]:
        return await self.query(
            "SELECT * FROM c WHERE c.report_id = @report_id AND NOT IS_DEFINED(c.deleted_at)"
            " ORDER BY c.created_at DESC",
            [{"name": "@report_id", "value": report_id}],
        )

    async def list_by_status(self, status: JobStatus) -> list[PipelineJob]:
        """Fetch active jobs in one status, oldest first."""
        return await self.query(
            "SELECT * FROM c WHERE c.status = @status AND NOT IS_DEFINED(c.deleted_at)"
            " ORDER BY c.created_at ASC",
            [{"name": "@status", "value": status.value}],
        )

    async def claim(self, job_id: str) -> PipelineJob | None:
        """Atomically move a job to running. Returns None if not claimable.

        A running job is claimable again once its claim is older than the
        claim TTL, so work held by a crashed worker is picked up.
        """
        job = await self.get(job_id, job_id)
        if job is None or job.etag is None:
            return None
        now = datetime.now(UTC)
        if not _is_claimable(job, now=now):
            return None
        job.status = JobStatus.RUNNING
        job.claimed_at = now
        job.started_at = now
        job.error = None
        return await self.replace_if_unmodified(job, job.etag)

    async def release(self, job: PipelineJob) -> PipelineJob:
        """Put a claimed job back in the queue for another worker."""
        job.status = JobStatus.QUEUED
        job.claimed_at = None
        job.started_at = None
        return await self.update(job, job.id)

    async def finish(self, job: PipelineJob, error: str | None = None) -> PipelineJob:
        job.status = JobStatus.FAILED if error else JobStatus.COMPLETED
        job.error = error
        job.completed_at = datetime.now(UTC)
        return await self.update(job, job.id)
