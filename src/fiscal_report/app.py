"""FastAPI application factory for the report engine API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from azure.monitor.opentelemetry import configure_azure_monitor
from fastapi import FastAPI

from fiscal_report.config import load_settings
from fiscal_report.events import ServiceBusPublisher
from fiscal_report.logging import configure_logging
from fiscal_report.routes import adjustments, prompt_configs, reports
from fiscal_report.startup import init_database, init_services

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Connect storage and the event bus on startup and close them on shutdown."""
    settings = app.state.settings
    cosmos = await init_database(settings)
    publisher = ServiceBusPublisher(settings.servicebus)

    app.state.cosmos = cosmos
    app.state.event_publisher = publisher
    app.state.services = init_services(cosmos.database, settings, events=publisher)
    logger.info("API started — env=%s", settings.app.env)

    yield

    logger.info("API shutting down")
    await publisher.close()
    await cosmos.close()


def create_app() -> FastAPI:
    """Build the API application."""
    settings = load_settings()
    configure_logging(settings.app.log_level)

    if settings.monitor.connection_string:
        configure_azure_monitor(connection_string=settings.monitor.connection_string)
        logger.info("Azure Monitor OpenTelemetry configured")

    app = FastAPI(title="Fiscal Report Engine", lifespan=lifespan)
    app.state.settings = settings
    app.include_router(reports.router)
    app.include_router(adjustments.router)
    app.include_router(prompt_configs.router)

    @app.get("/health", tags=["status"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "env": settings.app.env}

    return app
