"""Component wiring shared by the web app and the worker."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from fiscal_report.adjustments.session import AdjustmentService
from fiscal_report.ai.config_resolver import AIConfigResolver
from fiscal_report.ai.factory import ModelInvoker
from fiscal_report.database.client import CosmosClient
from fiscal_report.database.repositories import (
    AdjustmentRepository,
    AdjustmentSessionRepository,
    JobRepository,
    PromptConfigRepository,
    ReportRepository,
)
from fiscal_report.feedback.parser import FeedbackParser
from fiscal_report.pipeline.orchestrator import StagePipeline
from fiscal_report.versioning.rollback import RollbackEngine
from fiscal_report.versioning.store import VersionedDocumentStore

if TYPE_CHECKING:
    from azure.cosmos.aio import DatabaseProxy

    from fiscal_report.config import Settings
    from fiscal_report.events import EventPublisher

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Repositories and engines built over one Cosmos database."""

    reports: ReportRepository
    prompt_configs: PromptConfigRepository
    jobs: JobRepository
    store: VersionedDocumentStore
    pipeline: StagePipeline
    rollback: RollbackEngine
    adjustments: AdjustmentService
    parser: FeedbackParser


async def init_database(settings: Settings) -> CosmosClient:
    """Connect to Cosmos DB. Raises ConnectionError when no endpoint is configured."""
    cosmos = CosmosClient(settings.cosmos)
    await cosmos.initialize()
    logger.info("Cosmos DB initialized — database=%s", settings.cosmos.database)
    return cosmos


def init_services(
    database: DatabaseProxy,
    settings: Settings,
    *,
    events: EventPublisher | None = None,
    invoker: ModelInvoker | None = None,
) -> Services:
    """Build the report engine components over ``database``."""
    reports = ReportRepository(database)
    prompt_configs = PromptConfigRepository(database)
    parser = FeedbackParser()
    resolver = AIConfigResolver()
    invoker = invoker or ModelInvoker.from_settings(settings)
    store = VersionedDocumentStore(reports, settings.pipeline)

    pipeline = StagePipeline(
        reports,
        prompt_configs,
        store,
        invoker,
        resolver=resolver,
        parser=parser,
        events=events,
        config=settings.pipeline,
    )
    adjustments = AdjustmentService(
        AdjustmentSessionRepository(database),
        AdjustmentRepository(database),
        reports,
        prompt_configs,
        store,
        invoker,
        resolver=resolver,
        parser=parser,
        config=settings.pipeline,
    )
    return Services(
        reports=reports,
        prompt_configs=prompt_configs,
        jobs=JobRepository(database),
        store=store,
        pipeline=pipeline,
        rollback=RollbackEngine(reports, store, parser, settings.pipeline),
        adjustments=adjustments,
        parser=parser,
    )
