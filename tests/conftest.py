"""Shared fixtures: an in-memory Cosmos DB database and report factories."""

from __future__ import annotations

import asyncio
import copy
import re
from typing import TYPE_CHECKING, Any

import pytest
from azure.cosmos.exceptions import (
    CosmosHttpResponseError,
    CosmosResourceExistsError,
    CosmosResourceNotFoundError,
)

from fiscal_report.config import PipelineConfig
from fiscal_report.database.repositories import (
    AdjustmentRepository,
    AdjustmentSessionRepository,
    JobRepository,
    PromptConfigRepository,
    ReportRepository,
)
from fiscal_report.models.ai_config import AiConfig, PromptConfig, StageConfig
from fiscal_report.models.report import DocumentVersionSet, Report, Snapshot
from fiscal_report.models.stage import ADJUSTMENT_OPERATION, EDITOR_OPERATION, STAGE_ORDER
from fiscal_report.versioning.store import VersionedDocumentStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

_CLAUSE_EQ = re.compile(r"^c\.(\w+)\s*(=|!=)\s*(@\w+|true|false)$")
_CLAUSE_UNDEFINED = re.compile(r"^NOT IS_DEFINED\(c\.(\w+)\)$")
_ORDER_BY = re.compile(r"\s+ORDER BY c\.(\w+)\s+(ASC|DESC)\s*$", re.IGNORECASE)


class _Pager:
    """Async iterator standing in for an azure-cosmos item paged result."""

    def __init__(self, items: list[dict[str, Any]], continuation_token: str | None = None) -> None:
        self._items = items
        self.continuation_token = continuation_token

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[dict[str, Any]]:
        for item in self._items:
            yield copy.deepcopy(item)


class FakeContainer:
    """In-memory container with etag semantics and a change feed.

    Reads and replaces yield to the event loop so concurrent writers
    interleave the way they do against a real account.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.items: dict[str, dict[str, Any]] = {}
        self.changes: list[dict[str, Any]] = []
        self._etag_counter = 0
        self.replace_calls = 0
        self.conflicts = 0

    def _store(self, body: dict[str, Any]) -> dict[str, Any]:
        self._etag_counter += 1
        stored = copy.deepcopy(body)
        stored["_etag"] = f'"{self.name}-{self._etag_counter}"'
        self.items[stored["id"]] = stored
        self.changes.append(copy.deepcopy(stored))
        return copy.deepcopy(stored)

    async def create_item(self, body: dict[str, Any]) -> dict[str, Any]:
        if body["id"] in self.items:
            raise CosmosResourceExistsError(status_code=409, message="Conflict")
        return self._store(body)

    async def read_item(self, item: str, partition_key: str) -> dict[str, Any]:
        await asyncio.sleep(0)
        if item not in self.items:
            raise CosmosResourceNotFoundError(status_code=404, message="Not found")
        return copy.deepcopy(self.items[item])

    async def upsert_item(self, body: dict[str, Any]) -> dict[str, Any]:
        return self._store(body)

    async def replace_item(
        self,
        item: str,
        body: dict[str, Any],
        etag: str | None = None,
        match_condition: object | None = None,
    ) -> dict[str, Any]:
        await asyncio.sleep(0)
        self.replace_calls += 1
        current = self.items.get(item)
        if current is None:
            raise CosmosResourceNotFoundError(status_code=404, message="Not found")
        if match_condition is not None and current["_etag"] != etag:
            self.conflicts += 1
            raise CosmosHttpResponseError(status_code=412, message="Precondition failed")
        return self._store(body)

    def query_items(self, query: str, parameters: list[dict[str, Any]] | None = None) -> _Pager:
        values = {p["name"]: p["value"] for p in parameters or []}
        order = _ORDER_BY.search(query)
        where = _ORDER_BY.sub("", query).split(" WHERE ", 1)
        clauses = where[1].split(" AND ") if len(where) > 1 else []

        def matches(item: dict[str, Any]) -> bool:
            for clause in clauses:
                clause = clause.strip()
                undefined = _CLAUSE_UNDEFINED.match(clause)
                if undefined:
                    if item.get(undefined.group(1)) is not None:
                        return False
                    continue
                eq = _CLAUSE_EQ.match(clause)
                if eq is None:
                    raise AssertionError(f"Unsupported clause in fake query: {clause}")
                field, op, raw = eq.groups()
                expected: Any = {"true": True, "false": False}.get(raw, values.get(raw))
                equal = item.get(field) == expected
                if equal != (op == "="):
                    return False
            return True

        results = [item for item in self.items.values() if matches(item)]
        if order:
            results.sort(
                key=lambda item: (item.get(order.group(1)) is None, item.get(order.group(1)) or ""),
                reverse=order.group(2).upper() == "DESC",
            )
        return _Pager(results)

    def query_items_change_feed(
        self,
        max_item_count: int = 100,
        continuation: str | None = None,
    ) -> _Pager:
        start = int(continuation) if continuation else 0
        batch = self.changes[start : start + max_item_count]
        return _Pager(batch, continuation_token=str(start + len(batch)))


class FakeDatabase:
    """Database proxy handing out one FakeContainer per name."""

    def __init__(self) -> None:
        self.containers: dict[str, FakeContainer] = {}

    def get_container_client(self, name: str) -> FakeContainer:
        if name not in self.containers:
            self.containers[name] = FakeContainer(name)
        return self.containers[name]


@pytest.fixture
def database() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    return PipelineConfig(
        model_timeout_s=5.0,
        fuzzy_prefix_length=50,
        fuzzy_max_ratio=2.0,
        max_append_retries=10,
        job_poll_interval_s=0.01,
    )


@pytest.fixture
def reports(database: FakeDatabase) -> ReportRepository:
    return ReportRepository(database)


@pytest.fixture
def prompt_configs(database: FakeDatabase) -> PromptConfigRepository:
    return PromptConfigRepository(database)


@pytest.fixture
def sessions(database: FakeDatabase) -> AdjustmentSessionRepository:
    return AdjustmentSessionRepository(database)


@pytest.fixture
def history(database: FakeDatabase) -> AdjustmentRepository:
    return AdjustmentRepository(database)


@pytest.fixture
def jobs(database: FakeDatabase) -> JobRepository:
    return JobRepository(database)


@pytest.fixture
def store(reports: ReportRepository, pipeline_config: PipelineConfig) -> VersionedDocumentStore:
    return VersionedDocumentStore(reports, pipeline_config)


@pytest.fixture
def make_report(reports: ReportRepository) -> Callable[..., Awaitable[Report]]:
    """Persist a report, optionally seeded with document versions and stage output."""

    async def _make(
        *,
        report_id: str = "report-1",
        contents: list[str] | None = None,
        stage_results: dict[str, str] | None = None,
        raw_input: str = "Client wil een BV oprichten.",
    ) -> Report:
        versions = DocumentVersionSet()
        for content in contents or []:
            versions = versions.with_snapshot(
                Snapshot(version=versions.next_version(), content=content, source="3_generatie")
            )
        report = Report(
            id=report_id,
            client_name="De Vries",
            raw_input=raw_input,
            stage_results=dict(stage_results or {}),
            versions=versions,
        )
        return await reports.create(report)

    return _make


@pytest.fixture
def global_ai_config() -> AiConfig:
    return AiConfig(model="gemini-2.5-pro", temperature=0.2, max_output_tokens=8192)


@pytest.fixture
def active_prompt_config(global_ai_config: AiConfig) -> PromptConfig:
    """A prompt configuration with a template for every stage and helper operation."""
    stages = {
        stage.value: StageConfig(prompt=f"Stage {stage.value}\n{{RAW_INPUT}}\n{{CURRENT_REPORT}}")
        for stage in STAGE_ORDER
    }
    stages["5_feedback_verwerker"] = StageConfig(
        prompt="Verwerk {CHANGE_COUNT} wijzigingen:\n{FEEDBACK}\nin:\n{CURRENT_REPORT}"
    )
    stages[ADJUSTMENT_OPERATION] = StageConfig(prompt="Pas aan: {INSTRUCTION}\n{CURRENT_REPORT}")
    stages[EDITOR_OPERATION] = StageConfig(
        prompt="Voer {CHANGE_COUNT} aanpassingen door:\n{FEEDBACK}\n{CURRENT_REPORT}"
    )
    return PromptConfig(id="config-1", name="default", is_active=True, stages=stages, ai_config=global_ai_config)


@pytest.fixture
async def seeded_prompt_config(
    prompt_configs: PromptConfigRepository,
    active_prompt_config: PromptConfig,
) -> PromptConfig:
    return await prompt_configs.create(active_prompt_config)
