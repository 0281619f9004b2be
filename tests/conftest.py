from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
import pytest

from altwatch.services.stats import ProcessingStats
from altwatch.stream.processed import ProcessedSet


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def httpx_client() -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient() as client:
        yield client


@pytest.fixture
def processed() -> ProcessedSet:
    return ProcessedSet(capacity=100)


@pytest.fixture
def stats() -> ProcessingStats:
    return ProcessingStats()
