"""Cosmos DB change feed poller for queued pipeline jobs."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import TYPE_CHECKING, Any

from fiscal_report.errors import ReportEngineError
from fiscal_report.models.job import JobStatus

if TYPE_CHECKING:
    from azure.cosmos.aio import ContainerProxy, DatabaseProxy

    from fiscal_report.database.repositories.jobs import JobRepository
    from fiscal_report.models.job import PipelineJob
    from fiscal_report.pipeline.orchestrator import StagePipeline

logger = logging.getLogger(__name__)

_FEED_STATUSES = (JobStatus.QUEUED,)
_SWEEP_STATUSES = (JobStatus.QUEUED, JobStatus.RUNNING)


class JobPoller:
    """Consume the jobs container change feed and run each queued job.

    Runs as a background task in the worker. Jobs are processed one at a
    time; a job is only run after it is claimed with an etag check, so
    several workers can share one container. The change feed only shows
    writes made while the poller is listening, so the poller also sweeps
    the container on start and every ``sweep_interval_s`` for queued jobs
    and for running jobs whose claim has expired.
    """

    def __init__(
        self,
        database: DatabaseProxy,
        jobs: JobRepository,
        pipeline: StagePipeline,
        *,
        poll_interval_s: float = 2.0,
        sweep_interval_s: float = 300.0,
    ) -> None:
        self._database = database
        self._jobs = jobs
        self._pipeline = pipeline
        self._poll_interval_s = poll_interval_s
        self._sweep_interval_s = sweep_interval_s
        self._running = False
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start polling the change feed in a background task."""
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info("Job poller started")

    async def stop(self) -> None:
        """Stop the poller gracefully."""
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        logger.info("Job poller stopped")

    async def _poll_loop(self) -> None:
        container: ContainerProxy = self._database.get_container_client("jobs")
        token: str | None = None
        last_sweep: float | None = None

        while self._running:
            if last_sweep is None or time.monotonic() - last_sweep >= self._sweep_interval_s:
                try:
                    await self.sweep()
                except Exception:
                    logger.exception("Error sweeping jobs container")
                last_sweep = time.monotonic()

            try:
                token = await self.process_feed(container, token)
            except Exception:
                logger.exception("Error processing jobs change feed")

            await asyncio.sleep(self._poll_interval_s)

    async def sweep(self) -> int:
        """Run jobs the change feed did not deliver. Returns how many ran."""
        ran = 0
        for status in _SWEEP_STATUSES:
            for job in await self._jobs.list_by_status(status):
                if await self.run_job(job.id):
                    ran += 1
        if ran:
            logger.info("Job sweep recovered jobs — count=%d", ran)
        return ran

    async def process_feed(
        self, container: ContainerProxy, continuation_token: str | None
    ) -> str | None:
        """Read one batch of job changes and handle them in order."""
        query_kwargs: dict[str, Any] = {"max_item_count": 100}
        if continuation_token:
            query_kwargs["continuation"] = continuation_token

        response = container.query_items_change_feed(**query_kwargs)
        new_token = continuation_token

        async for item in response:
            try:
                await self.handle_job_change(item)
            except Exception:
                logger.exception("Failed to process job %s", item.get("id"))

        if hasattr(response, "continuation_token"):
            token = response.continuation_token
            if isinstance(token, str):
                new_token = token

        return new_token

    async def handle_job_change(self, item: dict[str, Any]) -> None:
        """Claim and run a job document seen on the change feed."""
        job_id = item.get("id")
        if not job_id or item.get("status") not in _FEED_STATUSES or item.get("deleted_at"):
            return
        await self.run_job(job_id)

    async def run_job(self, job_id: str) -> bool:
        """Claim a job and run it to a final status. Returns False if it was not claimable.

        Cancellation puts the job back in the queue; any other error fails it.
        """
        job = await self._jobs.claim(job_id)
        if job is None:
            logger.info("Job not claimable — job=%s", job_id)
            return False

        logger.info("Job claimed — job=%s report=%s stages=%s", job.id, job.report_id, job.stage_ids)
        try:
            await self._pipeline.run_pipeline(
                job.report_id,
                stages=job.stage_ids or None,
                job_id=job.id,
            )
        except asyncio.CancelledError:
            logger.warning("Job interrupted, requeueing — job=%s report=%s", job.id, job.report_id)
            await self._release(job)
            raise
        except (ReportEngineError, ValueError) as exc:
            logger.warning("Job failed — job=%s report=%s error=%s", job.id, job.report_id, exc)
            await self._jobs.finish(job, error=str(exc))
            return True
        except Exception as exc:
            logger.exception("Job crashed — job=%s report=%s", job.id, job.report_id)
            await self._jobs.finish(job, error=f"{type(exc).__name__}: {exc}")
            return True

        await self._jobs.finish(job)
        logger.info("Job completed — job=%s report=%s", job.id, job.report_id)
        return True

    async def _release(self, job: PipelineJob) -> None:
        try:
            await self._jobs.release(job)
        except Exception:
            logger.exception(
                "Could not requeue job — job=%s; it is reclaimed after the claim TTL", job.id
            )
