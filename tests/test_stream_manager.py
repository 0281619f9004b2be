from __future__ import annotations

import asyncio

import pytest

from altwatch.core.exceptions import (
    AuthenticationFailedError,
    StreamDisconnectedError,
)
from altwatch.core.models import ConnectionPhase, ConnectionState, StreamEvent
from altwatch.services.backoff import BackoffPolicy
from altwatch.services.mastodon.sse import SseFrame
from altwatch.services.stats import ProcessingStats
from altwatch.stream import ProcessedSet, StreamConnectionManager

from ._fakes import (
    ACCOUNT_ID,
    FakeStreamTransport,
    status_json,
    update_frame,
    wait_until,
)

HEARTBEAT = SseFrame(event="heartbeat", data="thump")


class _Harness:
    def __init__(
        self,
        sessions: list[BaseException | list[SseFrame]],
        processed: ProcessedSet,
        stats: ProcessingStats,
        **kwargs: object,
    ) -> None:
        self.transport = FakeStreamTransport(sessions)
        self.events: list[StreamEvent] = []
        self.states: list[ConnectionState] = []
        self.delays: list[float] = []
        options: dict[str, object] = {
            "backoff": BackoffPolicy(base=1.0, cap=60.0, jitter=0.0),
            "idle_timeout": 5.0,
            "max_auth_failures": 3,
            "stats": stats,
            "listener": self.states.append,
            "clock": lambda: 0.0,
        }
        options.update(kwargs)
        self.manager = StreamConnectionManager(
            self.transport,
            self.events.append,
            ACCOUNT_ID,
            processed,
            **options,
        )

        async def _no_wait(seconds: float) -> None:
            self.delays.append(seconds)
            await asyncio.sleep(0)

        self.manager._wait_for_shutdown = _no_wait  # type: ignore[method-assign]

    def backoff_states(self) -> list[ConnectionState]:
        return [state for state in self.states if state.phase is ConnectionPhase.BACKOFF]

    async def run_until(self, predicate: object) -> None:
        task = asyncio.create_task(self.manager.run())
        try:
            await wait_until(predicate)
        finally:
            self.manager.request_shutdown()
            async with asyncio.timeout(2):
                await task


@pytest.mark.asyncio
async def test_own_new_posts_are_dispatched_once(
    processed: ProcessedSet,
    stats: ProcessingStats,
) -> None:
    frames = [
        update_frame(status_json("1")),
        update_frame(status_json("1")),
        HEARTBEAT,
        update_frame(status_json("2")),
    ]
    harness = _Harness([frames], processed, stats)

    await harness.run_until(lambda: len(harness.events) == 2)

    assert [event.id for event in harness.events] == ["1", "2"]
    assert stats.duplicates == 1
    assert stats.events_dispatched == 2


@pytest.mark.asyncio
async def test_foreign_malformed_and_unrelated_frames_are_dropped(
    processed: ProcessedSet,
    stats: ProcessingStats,
) -> None:
    frames = [
        update_frame(status_json("10", author_id="999")),
        SseFrame(event="update", data="{not json"),
        SseFrame(event="update", data='{"id": "11"}'),
        SseFrame(event="delete", data="12"),
        SseFrame(event="notification", data="{}"),
        update_frame(status_json("13")),
    ]
    harness = _Harness([frames], processed, stats)

    await harness.run_until(lambda: len(harness.events) == 1)

    assert [event.id for event in harness.events] == ["13"]
    assert stats.foreign == 1
    assert stats.malformed == 2
    assert "10" not in processed


@pytest.mark.asyncio
async def test_redelivery_after_reconnect_is_dropped(
    processed: ProcessedSet,
    stats: ProcessingStats,
) -> None:
    sessions: list[BaseException | list[SseFrame]] = [
        [update_frame(status_json("1"))],
        [update_frame(status_json("1")), update_frame(status_json("2"))],
    ]
    harness = _Harness(sessions, processed, stats)

    await harness.run_until(lambda: len(harness.events) == 2)

    assert [event.id for event in harness.events] == ["1", "2"]
    assert harness.transport.connects == 2


@pytest.mark.asyncio
async def test_edits_are_dispatched_when_enabled(
    processed: ProcessedSet,
    stats: ProcessingStats,
) -> None:
    frames = [
        update_frame(status_json("1")),
        update_frame(
            status_json("1", edited_at="2026-01-01T00:00:00Z"),
            event="status.update",
        ),
    ]
    harness = _Harness([frames], processed, stats)

    await harness.run_until(lambda: len(harness.events) == 2)

    assert [event.is_edit for event in harness.events] == [False, True]


@pytest.mark.asyncio
async def test_edits_are_ignored_when_disabled(
    processed: ProcessedSet,
    stats: ProcessingStats,
) -> None:
    frames = [
        update_frame(status_json("1"), event="status.update"),
        update_frame(status_json("2")),
    ]
    harness = _Harness([frames], processed, stats, process_edits=False)

    await harness.run_until(lambda: len(harness.events) == 1)

    assert [event.id for event in harness.events] == ["2"]


@pytest.mark.asyncio
async def test_consecutive_failures_back_off_exponentially(
    processed: ProcessedSet,
    stats: ProcessingStats,
) -> None:
    sessions: list[BaseException | list[SseFrame]] = [
        StreamDisconnectedError("refused"),
        StreamDisconnectedError("refused"),
        StreamDisconnectedError("refused"),
        [],
    ]
    harness = _Harness(sessions, processed, stats)

    await harness.run_until(
        lambda: harness.manager.state.phase is ConnectionPhase.CONNECTED,
    )

    backoffs = harness.backoff_states()
    assert [state.resume_at for state in backoffs] == [1.0, 2.0, 4.0]
    assert [state.attempt_count for state in backoffs] == [1, 2, 3]
    assert harness.delays == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_backoff_delay_is_capped(
    processed: ProcessedSet,
    stats: ProcessingStats,
) -> None:
    sessions: list[BaseException | list[SseFrame]] = [
        *(StreamDisconnectedError("refused") for _ in range(8)),
        [],
    ]
    harness = _Harness(sessions, processed, stats)

    await harness.run_until(lambda: harness.transport.connects == 9)

    assert harness.delays == [1.0, 2.0, 4.0, 8.0, 16.0, 32.0, 60.0, 60.0]


@pytest.mark.asyncio
async def test_successful_connection_resets_the_attempt_count(
    processed: ProcessedSet,
    stats: ProcessingStats,
) -> None:
    sessions: list[BaseException | list[SseFrame]] = [
        StreamDisconnectedError("refused"),
        StreamDisconnectedError("refused"),
        [HEARTBEAT],
        StreamDisconnectedError("refused"),
        [],
    ]
    harness = _Harness(sessions, processed, stats)

    await harness.run_until(lambda: harness.transport.connects == 5)

    assert harness.delays == [1.0, 2.0, 1.0, 2.0]


@pytest.mark.asyncio
async def test_repeated_authentication_failure_is_fatal(
    processed: ProcessedSet,
    stats: ProcessingStats,
) -> None:
    sessions: list[BaseException | list[SseFrame]] = [
        AuthenticationFailedError("bad token", status_code=401) for _ in range(3)
    ]
    harness = _Harness(sessions, processed, stats)

    with pytest.raises(AuthenticationFailedError):
        async with asyncio.timeout(2):
            await harness.manager.run()

    assert harness.transport.connects == 3
    assert harness.manager.state.phase is ConnectionPhase.CLOSED


@pytest.mark.asyncio
async def test_authentication_failures_must_be_consecutive(
    processed: ProcessedSet,
    stats: ProcessingStats,
) -> None:
    sessions: list[BaseException | list[SseFrame]] = [
        AuthenticationFailedError("bad token"),
        AuthenticationFailedError("bad token"),
        [],
        AuthenticationFailedError("bad token"),
        AuthenticationFailedError("bad token"),
        [],
    ]
    harness = _Harness(sessions, processed, stats)

    await harness.run_until(lambda: harness.transport.connects == 6)

    assert harness.manager.state.phase is ConnectionPhase.CLOSED


@pytest.mark.asyncio
async def test_idle_stream_is_reconnected(
    processed: ProcessedSet,
    stats: ProcessingStats,
) -> None:
    harness = _Harness([[HEARTBEAT]], processed, stats, idle_timeout=0.05)

    await harness.run_until(lambda: harness.transport.connects >= 2)

    assert harness.backoff_states()
    assert harness.transport.closed >= 1


@pytest.mark.asyncio
async def test_shutdown_closes_an_open_stream(
    processed: ProcessedSet,
    stats: ProcessingStats,
) -> None:
    harness = _Harness([[]], processed, stats)

    await harness.run_until(
        lambda: harness.manager.state.phase is ConnectionPhase.CONNECTED,
    )

    assert harness.manager.state.phase is ConnectionPhase.CLOSED
    assert harness.transport.closed == 1
    assert harness.transport.connects == 1


@pytest.mark.asyncio
async def test_handler_errors_do_not_stop_the_stream(
    processed: ProcessedSet,
    stats: ProcessingStats,
) -> None:
    seen: list[str] = []

    def _handler(event: StreamEvent) -> None:
        seen.append(event.id)
        if event.id == "1":
            raise ValueError("boom")

    transport = FakeStreamTransport(
        [[update_frame(status_json("1")), update_frame(status_json("2"))]],
    )
    manager = StreamConnectionManager(
        transport,
        _handler,
        ACCOUNT_ID,
        processed,
        backoff=BackoffPolicy(base=1.0, cap=60.0, jitter=0.0),
        idle_timeout=5.0,
        max_auth_failures=3,
    )
    task = asyncio.create_task(manager.run())
    await wait_until(lambda: len(seen) == 2)
    manager.request_shutdown()
    async with asyncio.timeout(2):
        await task

    assert seen == ["1", "2"]


async def _frames_then_hang(*frames: SseFrame):
    for frame in frames:
        yield frame
    await asyncio.Event().wait()


async def _frames_then_end(*frames: SseFrame):
    for frame in frames:
        yield frame


@pytest.mark.asyncio
async def test_next_event_returns_frames_in_order(
    processed: ProcessedSet,
    stats: ProcessingStats,
) -> None:
    harness = _Harness([], processed, stats, idle_timeout=0.05)
    frames = _frames_then_hang(HEARTBEAT, update_frame(status_json("1")))

    first = await harness.manager.next_event(frames)
    second = await harness.manager.next_event(frames)

    assert first == HEARTBEAT
    assert second is not None
    assert second.event == "update"
    with pytest.raises(StreamDisconnectedError, match="No frame received"):
        await harness.manager.next_event(frames)


@pytest.mark.asyncio
async def test_next_event_reports_end_of_stream(
    processed: ProcessedSet,
    stats: ProcessingStats,
) -> None:
    harness = _Harness([], processed, stats)

    with pytest.raises(StreamDisconnectedError, match="Stream ended"):
        await harness.manager.next_event(_frames_then_end())


@pytest.mark.asyncio
async def test_next_event_returns_none_after_shutdown(
    processed: ProcessedSet,
    stats: ProcessingStats,
) -> None:
    harness = _Harness([], processed, stats)
    harness.manager.request_shutdown()

    assert await harness.manager.next_event(_frames_then_hang()) is None
