"""Generic repository over a single Cosmos DB container."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar, cast

from azure.core import MatchConditions
from azure.cosmos.exceptions import CosmosHttpResponseError, CosmosResourceNotFoundError

from fiscal_report.models.base import DocumentBase

if TYPE_CHECKING:
    from azure.cosmos.aio import DatabaseProxy

T = TypeVar("T", bound=DocumentBase)

HTTP_PRECONDITION_FAILED = 412

logger = logging.getLogger(__name__)


class BaseRepository(Generic[T]):
    """CRUD, parameterized queries and soft delete for one document type."""

    container_name: ClassVar[str]
    model_class: type[T]

    def __init__(self, database: DatabaseProxy) -> None:
        self._container = database.get_container_client(self.container_name)

    def _to_body(self, item: T) -> dict[str, Any]:
        return item.model_dump(mode="json", exclude_none=True)

    def _from_data(self, data: dict[str, Any]) -> T:
        return self.model_class.model_validate(data)

    async def create(self, item: T) -> T:
        """Insert a new document."""
        data = await self._container.create_item(body=self._to_body(item))
        return self._with_etag(item, data)

    async def get(self, item_id: str, partition_key: str) -> T | None:
        """Fetch a document by id, ignoring soft-deleted ones."""
        try:
            data = cast(
                "dict[str, Any]",
                await self._container.read_item(item=item_id, partition_key=partition_key),
            )
        except CosmosResourceNotFoundError:
            return None
        if data.get("deleted_at") is not None:
            return None
        return self._from_data(data)

    async def update(self, item: T, partition_key: str) -> T:
        """Overwrite a document unconditionally."""
        item.updated_at = datetime.now(UTC)
        data = await self._container.upsert_item(body=self._to_body(item))
        logger.debug(
            "Document upserted — container=%s id=%s pk=%s",
            self.container_name,
            item.id,
            partition_key,
        )
        return self._with_etag(item, data)

    async def replace_if_unmodified(self, item: T, etag: str) -> T | None:
        """Replace a document only if its etag still matches.

        Returns None when another writer got there first.
        """
        item.updated_at = datetime.now(UTC)
        try:
            data = await self._container.replace_item(
                item=item.id,
                body=self._to_body(item),
                etag=etag,
                match_condition=MatchConditions.IfNotModified,
            )
        except CosmosHttpResponseError as exc:
            if exc.status_code == HTTP_PRECONDITION_FAILED:
                return None
            raise
        return self._with_etag(item, data)

    async def query(
        self,
        sql: str,
        parameters: list[dict[str, Any]] | None = None,
    ) -> list[T]:
        """Run a parameterized SQL query and validate each result."""
        items: list[T] = []
        async for data in self._container.query_items(query=sql, parameters=parameters or []):
            items.append(self._from_data(data))
        return items

    async def soft_delete(self, item: T, partition_key: str) -> T:
        """Mark a document as deleted without removing it."""
        item.deleted_at = datetime.now(UTC)
        return await self.update(item, partition_key)

    @staticmethod
    def _with_etag(item: T, data: object) -> T:
        if isinstance(data, dict) and "_etag" in data and hasattr(item, "etag"):
            item.etag = data["_etag"]  # type: ignore[attr-defined]
        return item
