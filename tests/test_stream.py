from __future__ import annotations

from transcript_engine.config import StreamingConfig
from transcript_engine.core.models import StreamEvent
from transcript_engine.core.stream import StreamCorrelator, format_elapsed
from transcript_engine.core.types import MessageType
from tests.factories import at, make_message


def in_progress(message_id: int = 1, started: float = 0, **fields):
    return make_message(
        message_id,
        started,
        message_type=MessageType.REASONING,
        content=" ",
        start_time=at(started),
        **fields,
    )


def test_content_replaces_and_done_is_final(clock):
    correlator = StreamCorrelator(clock=clock)
    correlator.track(in_progress())

    correlator.apply_event(1, StreamEvent(content="Hel"))
    correlator.apply_event(1, StreamEvent(content="Hello"))
    correlator.apply_event(1, StreamEvent(content="Hello world", is_done=True))

    display = correlator.get_display_content(1)
    assert display.content == "Hello world"
    assert display.is_streaming is False


def test_events_after_completion_are_ignored(clock):
    correlator = StreamCorrelator(clock=clock)
    correlator.track(in_progress())
    correlator.apply_event(1, StreamEvent(content="final", is_done=True))

    assert correlator.apply_event(1, StreamEvent(content="late")) is False
    assert correlator.get_display_content(1).content == "final"


def test_finished_message_from_store_is_terminal(clock):
    correlator = StreamCorrelator(clock=clock)
    correlator.track(in_progress(finish_time=at(3)))

    assert correlator.apply_event(1, StreamEvent(content="nope")) is False
    assert correlator.is_streaming(1) is False


def test_applying_same_event_twice_is_idempotent(clock):
    once = StreamCorrelator(clock=clock)
    twice = StreamCorrelator(clock=clock)
    for correlator in (once, twice):
        correlator.track(in_progress())
    event = StreamEvent(content="partial", duration_ms=1500)
    done = StreamEvent(content="all", is_done=True, end_time=at(4))

    once.apply_event(1, event)
    once.apply_event(1, done)
    twice.apply_event(1, event)
    twice.apply_event(1, event)
    twice.apply_event(1, done)
    twice.apply_event(1, done)

    assert once.get_display_content(1) == twice.get_display_content(1)


def test_unknown_message_event_is_dropped(clock):
    correlator = StreamCorrelator(clock=clock)
    assert correlator.apply_event(42, StreamEvent(content="x")) is False
    assert correlator.get_display_content(42) is None


def test_thinking_time_prefers_backend_duration(clock):
    correlator = StreamCorrelator(clock=clock)
    correlator.track(in_progress(finish_time=at(10)))
    correlator.get(1).duration_ms = 2500

    assert correlator.thinking_elapsed_ms(1) == 2500


def test_thinking_time_falls_back_to_finish_minus_start(clock):
    correlator = StreamCorrelator(clock=clock)
    correlator.track(in_progress(started=2, finish_time=at(9)))

    assert correlator.thinking_elapsed_ms(1) == 7000


def test_thinking_time_uses_live_clock_while_in_progress(clock):
    correlator = StreamCorrelator(clock=clock)
    correlator.track(in_progress())
    clock.advance(12.5)

    assert correlator.get_display_content(1).thinking_elapsed_ms == 12500
    assert correlator.thinking_elapsed_ms(1, now=at(3)) == 3000


def test_thinking_time_without_start_is_none(clock):
    correlator = StreamCorrelator(clock=clock)
    correlator.track(make_message(1, 0, message_type=MessageType.USER))

    assert correlator.thinking_elapsed_ms(1) is None


def test_refresh_interval_slows_down_after_a_minute(clock):
    correlator = StreamCorrelator(clock=clock)
    correlator.track(in_progress())

    assert correlator.refresh_interval(1, now=at(30)) == 1.0
    assert correlator.refresh_interval(1, now=at(60)) == 1.0
    assert correlator.refresh_interval(1, now=at(61)) == 5.0

    correlator.apply_event(1, StreamEvent(content="done", is_done=True))
    assert correlator.refresh_interval(1, now=at(61)) is None


def test_refresh_interval_uses_config(clock):
    config = StreamingConfig(refresh_fast_seconds=0.5, refresh_slow_seconds=2, slow_after_seconds=10)
    correlator = StreamCorrelator(config, clock=clock)
    correlator.track(in_progress())

    assert correlator.refresh_interval(1, now=at(5)) == 0.5
    assert correlator.refresh_interval(1, now=at(11)) == 2


def test_done_without_end_time_uses_clock(clock):
    correlator = StreamCorrelator(clock=clock)
    correlator.track(in_progress())
    clock.advance(4)
    correlator.apply_event(1, StreamEvent(content="x", is_done=True))

    assert correlator.get(1).finish_time == at(4)
    assert correlator.thinking_elapsed_ms(1) == 4000


def test_begin_registers_provisional_message(clock):
    correlator = StreamCorrelator(clock=clock)
    correlator.begin(7, MessageType.RESPONSE)

    assert correlator.apply_event(7, StreamEvent(content="hi")) is True
    assert [s.message_id for s in correlator.provisional()] == [7]
    assert correlator.in_flight() == [7]


def test_sync_forgets_messages_outside_active_branch(clock):
    correlator = StreamCorrelator(clock=clock)
    correlator.track(in_progress(1))
    correlator.track(in_progress(2))
    correlator.begin(3, MessageType.RESPONSE)

    correlator.sync([in_progress(1)])

    assert correlator.get(1) is not None
    assert correlator.get(2) is None
    assert correlator.get(3) is not None  # still waiting for the store

    correlator.sync([in_progress(1)], stored_ids=[1, 3])
    assert correlator.get(3) is None


def test_track_promotes_provisional_and_keeps_live_content(clock):
    correlator = StreamCorrelator(clock=clock)
    correlator.begin(5, MessageType.RESPONSE, started_at=at(1))
    correlator.apply_event(5, StreamEvent(content="streamed so far"))

    correlator.track(in_progress(5, started=1))

    state = correlator.get(5)
    assert state.provisional is False
    assert state.content == "streamed so far"


def test_complete_all_terminates_in_flight(clock):
    correlator = StreamCorrelator(clock=clock)
    correlator.track(in_progress(1))
    correlator.track(in_progress(2, finish_time=at(1)))

    assert correlator.complete_all(now=at(9)) == [1]
    assert correlator.in_flight() == []
    assert correlator.get(1).finish_time == at(9)


def test_overlay_applies_live_state(clock):
    correlator = StreamCorrelator(clock=clock)
    message = in_progress()
    correlator.track(message)
    correlator.apply_event(1, StreamEvent(content="live", is_done=True, end_time=at(2)))

    live = correlator.overlay(message)
    assert live.content == "live"
    assert live.finish_time == at(2)
    assert message.content == " "


def test_format_elapsed():
    assert format_elapsed(0) == "0s"
    assert format_elapsed(42_900) == "42s"
    assert format_elapsed(65_000) == "1m 5s"
    assert format_elapsed(-5) == "0s"
