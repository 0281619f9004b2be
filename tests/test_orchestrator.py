from __future__ import annotations

import asyncio

import pytest

from altwatch.core.exceptions import (
    QuotaExceededError,
    ThrottledError,
    TransformError,
    TransportError,
)
from altwatch.core.models import ItemOutcome, MediaKind
from altwatch.pipeline.orchestrator import FanOutOrchestrator
from altwatch.pipeline.updater import ConsistencyCheckedUpdater
from altwatch.services.backoff import BackoffPolicy
from altwatch.services.gateway import RateLimitedGateway
from altwatch.services.stats import ProcessingStats

from ._fakes import (
    FakeDescriber,
    FakePlatform,
    FakePromptBuilder,
    FakeTransformer,
    make_event,
    make_media,
    wait_until,
)


class _Pipeline:
    def __init__(
        self,
        *,
        describer: FakeDescriber | None = None,
        transformer: FakeTransformer | None = None,
        max_concurrent: int = 4,
        max_concurrent_items_per_event: int = 4,
        max_retries: int = 2,
    ) -> None:
        self.platform = FakePlatform()
        self.describer = describer or FakeDescriber()
        self.transformer = transformer or FakeTransformer()
        self.prompts = FakePromptBuilder()
        self.stats = ProcessingStats()
        self.gateway = RateLimitedGateway(max_concurrent=max_concurrent, min_interval=0.0)
        self.orchestrator = FanOutOrchestrator(
            transformer=self.transformer,
            gateway=self.gateway,
            describer=self.describer,
            updater=ConsistencyCheckedUpdater(self.platform, write_timeout=1.0),
            platform=self.platform,
            prompt_builder=self.prompts,
            stats=self.stats,
            max_concurrent_items_per_event=max_concurrent_items_per_event,
            backoff=BackoffPolicy(base=0.001, cap=0.001, jitter=0.0),
            max_retries=max_retries,
            read_timeout=1.0,
        )


@pytest.mark.asyncio
async def test_quota_failure_on_one_item_does_not_block_its_sibling() -> None:
    pipeline = _Pipeline(
        describer=FakeDescriber({"x": QuotaExceededError("credits exhausted")}),
    )
    pipeline.platform.add_status("1", "x", "y")
    event = make_event("1", make_media("x"), make_media("y"))

    outcomes = await pipeline.orchestrator.process_and_wait(event)

    assert sorted(outcomes) == sorted([ItemOutcome.QUOTA_EXCEEDED, ItemOutcome.COMMITTED])
    assert pipeline.platform.writes == [("1", "y", "Description of y")]
    assert pipeline.stats.outcomes[ItemOutcome.QUOTA_EXCEEDED] == 1
    assert pipeline.stats.outcomes[ItemOutcome.COMMITTED] == 1
    assert pipeline.stats.events_completed == 1


@pytest.mark.asyncio
async def test_items_are_described_concurrently_within_gateway_limit() -> None:
    pipeline = _Pipeline(max_concurrent=2, max_concurrent_items_per_event=5)
    media_ids = ["a", "b", "c", "d", "e"]
    pipeline.platform.add_status("1", *media_ids)
    event = make_event("1", *(make_media(media_id) for media_id in media_ids))

    outcomes = await pipeline.orchestrator.process_and_wait(event)

    assert outcomes == [ItemOutcome.COMMITTED] * 5
    assert pipeline.describer.peak_in_flight == 2
    assert sorted(write[1] for write in pipeline.platform.writes) == media_ids


@pytest.mark.asyncio
async def test_items_with_a_description_are_not_touched() -> None:
    pipeline = _Pipeline()
    pipeline.platform.add_status("1", "a", "b")
    pipeline.platform.statuses["1"].media["a"] = "Hand-written"
    event = make_event("1", make_media("a", description="Hand-written"), make_media("b"))

    await pipeline.orchestrator.process_and_wait(event)

    assert pipeline.transformer.calls == ["b"]
    assert pipeline.platform.writes == [("1", "b", "Description of b")]


@pytest.mark.asyncio
async def test_event_without_pending_media_is_not_processed() -> None:
    pipeline = _Pipeline()
    event = make_event("1", make_media("a", description="Done"))

    assert pipeline.orchestrator.process(event) is None
    assert await pipeline.orchestrator.process_and_wait(event) == []


@pytest.mark.asyncio
async def test_item_described_since_the_event_is_skipped() -> None:
    pipeline = _Pipeline()
    pipeline.platform.add_status("1", "a")
    pipeline.platform.statuses["1"].media["a"] = "Added meanwhile"

    outcomes = await pipeline.orchestrator.process_and_wait(
        make_event("1", make_media("a")),
    )

    assert outcomes == [ItemOutcome.SKIPPED]
    assert pipeline.transformer.calls == []
    assert pipeline.platform.writes == []


@pytest.mark.asyncio
async def test_manual_edit_during_processing_is_detected() -> None:
    pipeline = _Pipeline()
    pipeline.platform.add_status("1", "a")
    pipeline.platform.after_read.append(
        lambda: pipeline.platform.manual_edit("1", "a", "Hand-written"),
    )

    outcomes = await pipeline.orchestrator.process_and_wait(
        make_event("1", make_media("a")),
    )

    assert outcomes == [ItemOutcome.RACE_DETECTED]
    assert pipeline.platform.writes == []
    assert pipeline.platform.statuses["1"].media["a"] == "Hand-written"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (TransformError("unsupported", skipped=True), ItemOutcome.SKIPPED),
        (TransformError("corrupt image"), ItemOutcome.TRANSFORM_FAILED),
        (TransportError("download failed"), ItemOutcome.TRANSPORT_FAILED),
    ],
)
async def test_transform_failures_abandon_the_item(
    error: Exception,
    expected: ItemOutcome,
) -> None:
    pipeline = _Pipeline(transformer=FakeTransformer({"a": error}))
    pipeline.platform.add_status("1", "a", "b")

    outcomes = await pipeline.orchestrator.process_and_wait(
        make_event("1", make_media("a"), make_media("b")),
    )

    assert outcomes[0] is expected
    assert outcomes[1] is ItemOutcome.COMMITTED
    assert pipeline.describer.calls == ["b"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (ThrottledError("slow down", retry_after=0.0), ItemOutcome.THROTTLED),
        (TransportError("connection reset"), ItemOutcome.TRANSPORT_FAILED),
        (RuntimeError("bug"), ItemOutcome.FAILED),
    ],
)
async def test_describer_failures_map_to_outcomes(
    error: Exception,
    expected: ItemOutcome,
) -> None:
    pipeline = _Pipeline(describer=FakeDescriber({"a": error}))
    pipeline.platform.add_status("1", "a")

    outcomes = await pipeline.orchestrator.process_and_wait(
        make_event("1", make_media("a")),
    )

    assert outcomes == [expected]
    assert pipeline.platform.writes == []
    assert pipeline.gateway.outstanding == 0


@pytest.mark.asyncio
async def test_process_returns_before_items_finish() -> None:
    gate = asyncio.Event()
    pipeline = _Pipeline(describer=FakeDescriber(gate=gate))
    pipeline.platform.add_status("1", "a")

    joiner = pipeline.orchestrator.process(make_event("1", make_media("a")))

    assert joiner is not None
    await wait_until(lambda: pipeline.describer.in_flight == 1)
    assert pipeline.orchestrator.outstanding == 1
    assert not joiner.done()

    gate.set()
    assert await joiner == [ItemOutcome.COMMITTED]
    assert pipeline.orchestrator.outstanding == 0


@pytest.mark.asyncio
async def test_drain_cancels_items_past_the_grace_period() -> None:
    pipeline = _Pipeline(describer=FakeDescriber(gate=asyncio.Event()))
    pipeline.platform.add_status("1", "a")
    joiner = pipeline.orchestrator.process(make_event("1", make_media("a")))
    await wait_until(lambda: pipeline.describer.in_flight == 1)

    await pipeline.orchestrator.drain(0.05)

    assert pipeline.orchestrator.outstanding == 0
    assert joiner is not None
    assert joiner.done()
    assert pipeline.platform.writes == []
    assert pipeline.gateway.outstanding == 0
    assert pipeline.orchestrator.process(make_event("2", make_media("b"))) is None


@pytest.mark.asyncio
async def test_drain_waits_for_items_that_finish_in_time() -> None:
    pipeline = _Pipeline(describer=FakeDescriber(delay=0.02))
    pipeline.platform.add_status("1", "a")
    pipeline.orchestrator.process(make_event("1", make_media("a")))

    await pipeline.orchestrator.drain(2.0)

    assert pipeline.platform.writes == [("1", "a", "Description of a")]


@pytest.mark.asyncio
async def test_items_beyond_the_per_event_limit_wait_for_a_free_slot() -> None:
    pipeline = _Pipeline(max_concurrent=8, max_concurrent_items_per_event=2)
    media_ids = [f"m{index}" for index in range(6)]
    pipeline.platform.add_status("1", *media_ids)

    outcomes = await pipeline.orchestrator.process_and_wait(
        make_event("1", *(make_media(media_id) for media_id in media_ids)),
    )

    assert outcomes == [ItemOutcome.COMMITTED] * 6
    assert sorted(pipeline.transformer.calls) == media_ids
    assert pipeline.describer.peak_in_flight <= 2
    assert sorted(write[1] for write in pipeline.platform.writes) == media_ids


@pytest.mark.asyncio
async def test_throttled_description_is_retried_and_committed() -> None:
    pipeline = _Pipeline(
        describer=FakeDescriber(
            {"a": [ThrottledError("slow down", retry_after=0.0), "Alt a"]},
        ),
    )
    pipeline.platform.add_status("1", "a")

    outcomes = await pipeline.orchestrator.process_and_wait(
        make_event("1", make_media("a")),
    )

    assert outcomes == [ItemOutcome.COMMITTED]
    assert pipeline.describer.calls == ["a", "a"]
    assert pipeline.platform.writes == [("1", "a", "Alt a")]
    assert pipeline.gateway.stats.throttled == 1


@pytest.mark.asyncio
async def test_transport_failure_is_retried_and_committed() -> None:
    pipeline = _Pipeline(
        describer=FakeDescriber({"a": [TransportError("connection reset"), "Alt a"]}),
    )
    pipeline.platform.add_status("1", "a")

    outcomes = await pipeline.orchestrator.process_and_wait(
        make_event("1", make_media("a")),
    )

    assert outcomes == [ItemOutcome.COMMITTED]
    assert pipeline.describer.calls == ["a", "a"]
    assert pipeline.platform.writes == [("1", "a", "Alt a")]


@pytest.mark.asyncio
async def test_transport_failures_past_the_retry_limit_abandon_the_item() -> None:
    pipeline = _Pipeline(
        describer=FakeDescriber({"a": TransportError("connection reset")}),
        max_retries=2,
    )
    pipeline.platform.add_status("1", "a")

    outcomes = await pipeline.orchestrator.process_and_wait(
        make_event("1", make_media("a")),
    )

    assert outcomes == [ItemOutcome.TRANSPORT_FAILED]
    assert pipeline.describer.calls == ["a", "a", "a"]
    assert pipeline.platform.writes == []


@pytest.mark.asyncio
async def test_quota_failure_is_not_retried() -> None:
    pipeline = _Pipeline(
        describer=FakeDescriber({"a": QuotaExceededError("credits exhausted")}),
    )
    pipeline.platform.add_status("1", "a")

    outcomes = await pipeline.orchestrator.process_and_wait(
        make_event("1", make_media("a")),
    )

    assert outcomes == [ItemOutcome.QUOTA_EXCEEDED]
    assert pipeline.describer.calls == ["a"]


@pytest.mark.asyncio
async def test_event_payload_is_the_baseline_when_the_live_read_fails() -> None:
    pipeline = _Pipeline()
    pipeline.platform.add_status("1", "a")
    pipeline.platform.fail_reads = 1

    outcomes = await pipeline.orchestrator.process_and_wait(
        make_event("1", make_media("a")),
    )

    assert outcomes == [ItemOutcome.COMMITTED]
    assert pipeline.platform.reads == 2


@pytest.mark.asyncio
async def test_prompt_is_built_once_per_media_kind() -> None:
    pipeline = _Pipeline()
    pipeline.platform.add_status("1", "a", "b", "c")
    event = make_event(
        "1",
        make_media("a"),
        make_media("b"),
        make_media("c", kind=MediaKind.AUDIO),
    )

    await pipeline.orchestrator.process_and_wait(event)

    assert [call[2] for call in pipeline.prompts.calls] == [MediaKind.IMAGE, MediaKind.AUDIO]
    assert pipeline.prompts.calls[0][:2] == ("Look at this", "en")
