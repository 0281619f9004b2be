from __future__ import annotations

import logging

import pytest
from aiohttp import test_utils

from altwatch.server import create_app


def _client(provider) -> test_utils.TestClient:
    return test_utils.TestClient(test_utils.TestServer(create_app(provider)))


@pytest.mark.asyncio
async def test_health_check_responds() -> None:
    async with _client(dict) as client:
        response = await client.get("/")

        assert response.status == 200
        assert await response.text() == "I'm alive"


@pytest.mark.asyncio
async def test_status_serves_provider_data() -> None:
    snapshot = {"connection": {"phase": "connected"}, "outstanding_items": 2}

    async with _client(lambda: snapshot) as client:
        response = await client.get("/status")

        assert response.status == 200
        assert await response.json() == snapshot


@pytest.mark.asyncio
async def test_provider_errors_become_500(caplog: pytest.LogCaptureFixture) -> None:
    def _broken() -> dict[str, object]:
        raise RuntimeError("state unavailable")

    with caplog.at_level(logging.ERROR, logger="altwatch.server"):
        async with _client(_broken) as client:
            response = await client.get("/status")

            assert response.status == 500
            assert await response.text() == "Internal server error"

    assert "Unhandled status server error" in caplog.text
