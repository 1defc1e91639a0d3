"""Repository for the prompt_configs container (partitioned by /id)."""

from __future__ import annotations

from fiscal_report.database.repositories.base import BaseRepository
from fiscal_report.models.ai_config import PromptConfig


class PromptConfigRepository(BaseRepository[PromptConfig]):
    container_name = "prompt_configs"
    model_class = PromptConfig

    async def get_active(self) -> PromptConfig | None:
        """Return the single active prompt configuration, if any."""
        results = await self.query(
            "SELECT * FROM c WHERE c.is_active = true AND NOT IS_DEFINED(c.deleted_at)"
            " ORDER BY c.updated_at DESC",
        )
        return results[0] if results else None

    async def activate(self, config: PromptConfig) -> PromptConfig:
        """Make ``config`` the active one and deactivate all others."""
        for other in await self.query(
            "SELECT * FROM c WHERE c.is_active = true AND c.id != @id"
            " AND NOT IS_DEFINED(c.deleted_at)",
            [{"name": "@id", "value": config.id}],
        ):
            other.is_active = False
            await self.update(other, other.id)
        config.is_active = True
        return await self.update(config, config.id)
