"""Worker entry point — runs queued pipeline jobs from the jobs change feed."""

from __future__ import annotations

import asyncio
import logging
import signal

from agent_framework.observability import create_resource, enable_instrumentation
from azure.monitor.opentelemetry import configure_azure_monitor

from fiscal_report.config import load_settings
from fiscal_report.events import ServiceBusPublisher
from fiscal_report.health import check_emulators
from fiscal_report.logging import configure_logging
from fiscal_report.pipeline.job_poller import JobPoller
from fiscal_report.startup import init_database, init_services

logger = logging.getLogger(__name__)


async def run() -> None:
    """Initialize and run the worker until terminated."""
    settings = load_settings()
    configure_logging(settings.app.log_level, log_file="worker.log")

    logger.info("Worker starting")

    if settings.monitor.connection_string:
        configure_azure_monitor(
            connection_string=settings.monitor.connection_string,
            resource=create_resource(service_name="fiscal-report-worker"),
        )
        enable_instrumentation()
        logger.info("Azure Monitor OpenTelemetry configured with agent instrumentation")

    if settings.app.is_development and not await check_emulators(settings):
        return

    try:
        cosmos = await init_database(settings)
    except ConnectionError as exc:
        logger.error(str(exc))  # noqa: TRY400
        return

    event_publisher = ServiceBusPublisher(settings.servicebus)
    services = init_services(cosmos.database, settings, events=event_publisher)
    poller = JobPoller(
        cosmos.database,
        services.jobs,
        services.pipeline,
        poll_interval_s=settings.pipeline.job_poll_interval_s,
        sweep_interval_s=settings.pipeline.job_sweep_interval_s,
    )
    await poller.start()

    logger.info("Worker running")

    # Wait until terminated
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    await stop_event.wait()

    logger.info("Worker shutting down")
    await poller.stop()
    await event_publisher.close()
    await cosmos.close()
    logger.info("Worker shutdown complete")


def main() -> None:
    """Entry point for the worker process."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
