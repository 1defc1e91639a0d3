"""Pre-flight health checks for local emulator dependencies."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import urlparse

import httpx

if TYPE_CHECKING:
    from fiscal_report.config import Settings

logger = logging.getLogger(__name__)


async def check_emulators(settings: Settings) -> bool:
    """Verify the local Cosmos DB emulator is reachable. Return False if it is down."""
    failures: list[str] = []
    async with httpx.AsyncClient(timeout=3) as client:
        cosmos_url = settings.cosmos.endpoint
        if not cosmos_url:
            failures.append("COSMOS_ENDPOINT is not set — add it to .env")
        elif not cosmos_url.startswith("https://"):
            try:
                await client.get(f"{cosmos_url.rstrip('/')}/")
            except httpx.ConnectError:
                parsed = urlparse(cosmos_url)
                failures.append(f"Cosmos DB emulator is not running at {parsed.netloc}")

    if not (settings.openai.api_key or settings.openai.endpoint or settings.google.api_key):
        failures.append(
            "No model provider is configured — set GOOGLE_API_KEY, OPENAI_API_KEY "
            "or AZURE_OPENAI_ENDPOINT"
        )

    if failures:
        for failure in failures:
            logger.error(failure)
        logger.error("Start the emulator with: docker compose up -d")
        return False
    return True
