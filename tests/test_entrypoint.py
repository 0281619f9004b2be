from __future__ import annotations

import logging

import httpx
import pytest

from altwatch import entrypoint
from altwatch.core.config import DescriberSettings, MastodonSettings, Settings
from altwatch.core.models import ItemOutcome


def _settings() -> Settings:
    return Settings(
        mastodon=MastodonSettings(
            instance_url="https://mastodon.example",
            access_token="token-123",
        ),
        describer=DescriberSettings(
            model="google/gemma-3-27b-it",
            api_key="sk-test",
            text_model="meta-llama/llama-3.3-70b-instruct",
        ),
    )


def _unreachable(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected request to {request.url}")


def _application() -> entrypoint.Application:
    client = httpx.AsyncClient(transport=httpx.MockTransport(_unreachable))
    return entrypoint.build_application(_settings(), http_client=client)


@pytest.mark.asyncio
async def test_status_snapshot_before_connecting() -> None:
    app = _application()
    app.stats.record(ItemOutcome.COMMITTED)

    snapshot = app.status_snapshot()

    assert snapshot["account_id"] is None
    assert snapshot["connection"] == {"phase": "disconnected", "attempt_count": 0}
    assert snapshot["outstanding_items"] == 0
    assert snapshot["processed_set_size"] == 0
    assert snapshot["gateway"]["issued"] == 0
    assert snapshot["stats"]["items"]["committed"] == 1
    await entrypoint.shutdown(app)


@pytest.mark.asyncio
async def test_shutdown_is_idempotent_and_closes_the_client() -> None:
    app = _application()

    await entrypoint.shutdown(app)
    await entrypoint.shutdown(app)

    assert app.shutdown_event.is_set()
    assert app.http_client.is_closed


@pytest.mark.asyncio
async def test_account_lookup_stops_once_shutdown_is_requested() -> None:
    app = _application()
    app.request_shutdown()

    assert await entrypoint._resolve_account_id(app) is None
    await entrypoint.shutdown(app)


def test_configure_logging_quiets_chatty_libraries(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in entrypoint.QUIET_LOGGERS:
        monkeypatch.setattr(logging.getLogger(name), "level", logging.NOTSET)

    entrypoint.configure_logging("debug")

    for name in entrypoint.QUIET_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING
