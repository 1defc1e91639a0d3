"""Tests for emulator pre-flight checks."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx

from fiscal_report.config import CosmosConfig, GoogleConfig, OpenAIConfig
from fiscal_report.health import check_emulators


def _settings(endpoint: str = "http://localhost:8081", google_key: str = "key") -> MagicMock:
    settings = MagicMock()
    settings.cosmos = CosmosConfig(endpoint=endpoint)
    settings.openai = OpenAIConfig(api_key="", endpoint="")
    settings.google = GoogleConfig(api_key=google_key)
    return settings


def _client(get: AsyncMock) -> MagicMock:
    client = MagicMock()
    client.get = get
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    return client


class TestCheckEmulators:
    """Test the emulator checks."""

    async def test_all_available(self) -> None:
        """Verify a reachable emulator and a provider key pass."""
        client = _client(AsyncMock())
        with patch("fiscal_report.health.httpx.AsyncClient", return_value=client):
            assert await check_emulators(_settings()) is True
        client.get.assert_awaited_once_with("http://localhost:8081/")

    async def test_emulator_down(self) -> None:
        """Verify a refused connection fails the check."""
        client = _client(AsyncMock(side_effect=httpx.ConnectError("refused")))
        with patch("fiscal_report.health.httpx.AsyncClient", return_value=client):
            assert await check_emulators(_settings()) is False

    async def test_missing_endpoint(self) -> None:
        client = _client(AsyncMock())
        with patch("fiscal_report.health.httpx.AsyncClient", return_value=client):
            assert await check_emulators(_settings(endpoint="")) is False

    async def test_cloud_endpoint_not_contacted(self) -> None:
        client = _client(AsyncMock())
        with patch("fiscal_report.health.httpx.AsyncClient", return_value=client):
            assert await check_emulators(_settings(endpoint="https://acct.documents.azure.com")) is True
        client.get.assert_not_awaited()

    async def test_no_model_provider(self) -> None:
        """Verify a missing provider key fails the check."""
        client = _client(AsyncMock())
        with patch("fiscal_report.health.httpx.AsyncClient", return_value=client):
            assert await check_emulators(_settings(google_key="")) is False
