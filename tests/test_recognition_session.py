from __future__ import annotations

import logging
import threading
import time

from errors import (
    ERROR_MESSAGES,
    LISTENING_MESSAGE,
    NO_MICROPHONE,
    PERMISSION_DENIED,
    RESTARTS_EXHAUSTED,
    UNSUPPORTED,
)
from fakes import FakeClock, FakeEngine
from models import EngineErrorReason, EngineEvent, RecognitionResult, SessionState
from recognition_session import RecognitionSession


def _make_session(engine: FakeEngine | None = None, clock: FakeClock | None = None, **kwargs):  # noqa: ANN201
    engine = engine or FakeEngine()
    clock = clock or FakeClock()
    transitions: list[tuple[SessionState, SessionState]] = []
    kwargs.setdefault("run_async", lambda fn: fn())
    session = RecognitionSession(
        engine=engine,
        clock=clock,
        on_state_change=lambda f, t: transitions.append((f, t)),
        **kwargs,
    )
    return session, engine, clock, transitions


def test_start_emits_listening_message_and_starts_engine() -> None:
    session, engine, _, transitions = _make_session()
    results: list[str] = []

    session.start(results.append)

    assert engine.start_calls == 1
    assert session.is_listening is True
    assert session.state == SessionState.LISTENING
    assert session.restart_count == 0
    assert results == [LISTENING_MESSAGE]
    assert transitions == [(SessionState.IDLE, SessionState.LISTENING)]


def test_start_twice_is_noop() -> None:
    session, engine, _, _ = _make_session()
    session.start(lambda t: None)
    engine.end()
    assert session.restart_count == 1

    session.start(lambda t: None)

    assert engine.start_calls == 1
    assert session.restart_count == 1


def test_final_result_invokes_trigger_once() -> None:
    session, engine, _, _ = _make_session()
    results: list[str] = []
    triggers: list[str] = []
    session.start(results.append, triggers.append)

    engine.final("help me please someone is following me")

    assert results[-1] == "help me please someone is following me"
    assert triggers == ["someone is following me"]
    assert session.final_transcript == "help me please someone is following me"


def test_interim_result_gets_suffix_and_skips_matching() -> None:
    session, engine, _, _ = _make_session()
    results: list[str] = []
    triggers: list[str] = []
    session.start(results.append, triggers.append)

    engine.interim("help me")

    assert results[-1] == "help me (listening...)"
    assert triggers == []


def test_result_index_skips_already_reported_segments() -> None:
    session, engine, _, _ = _make_session()
    results: list[str] = []
    session.start(results.append)

    engine.emit(
        EngineEvent.result(
            RecognitionResult("old words", 0.9, is_final=True),
            RecognitionResult("new words", 0.9, is_final=True),
            result_index=1,
        )
    )

    assert results == [LISTENING_MESSAGE, "new words"]


def test_each_final_segment_fires_its_own_trigger() -> None:
    session, engine, _, _ = _make_session()
    triggers: list[str] = []
    session.start(lambda t: None, triggers.append)

    engine.emit(
        EngineEvent.result(
            RecognitionResult("help me", 0.9, is_final=True),
            RecognitionResult("help me", 0.9, is_final=True),
        )
    )

    assert triggers == ["help me", "help me"]


def test_low_confidence_and_short_results_are_kept(caplog) -> None:  # noqa: ANN001
    session, engine, _, _ = _make_session(min_word_count=3)
    triggers: list[str] = []
    session.start(lambda t: None, triggers.append)

    with caplog.at_level(logging.INFO, logger="recognition_session"):
        engine.final("emergency", confidence=0.01)

    assert triggers == ["emergency"]
    assert "Low confidence" in caplog.text
    assert "Short result" in caplog.text


def test_fuzzy_final_result_triggers() -> None:
    session, engine, _, _ = _make_session()
    triggers: list[str] = []
    session.start(lambda t: None, triggers.append)

    engine.final("please cal the polise")

    assert triggers == ["call the police"]


def test_permission_denied_stops_without_restart() -> None:
    session, engine, clock, _ = _make_session()
    results: list[str] = []
    session.start(results.append)

    engine.error(EngineErrorReason.PERMISSION_DENIED, "not-allowed")
    clock.advance(5)

    assert session.is_listening is False
    assert session.state == SessionState.STOPPED
    assert results[-1] == ERROR_MESSAGES[PERMISSION_DENIED]
    assert engine.start_calls == 1
    assert clock.pending() == []


def test_no_microphone_stops_without_restart() -> None:
    session, engine, clock, _ = _make_session()
    results: list[str] = []
    session.start(results.append)

    engine.error(EngineErrorReason.NO_MICROPHONE)
    clock.advance(5)

    assert session.state == SessionState.STOPPED
    assert results[-1] == ERROR_MESSAGES[NO_MICROPHONE]
    assert engine.start_calls == 1


def test_no_speech_keeps_listening_and_rearms_watchdog() -> None:
    session, engine, clock, _ = _make_session()
    session.start(lambda t: None)

    clock.advance(15)
    engine.error(EngineErrorReason.NO_SPEECH)
    clock.advance(15)

    assert session.is_listening is True
    assert session.restart_count == 0


def test_other_error_restarts_after_backoff() -> None:
    session, engine, clock, _ = _make_session()
    session.start(lambda t: None)

    engine.error(EngineErrorReason.OTHER, "network")
    assert session.state == SessionState.RESTARTING
    clock.advance(0.4)
    assert engine.start_calls == 1
    clock.advance(0.1)

    assert engine.start_calls == 2
    assert session.state == SessionState.LISTENING
    assert session.restart_count == 1


def test_restarts_exhausted_stops_session() -> None:
    session, engine, clock, _ = _make_session()
    results: list[str] = []
    session.start(results.append)

    for _ in range(4):
        engine.end()
        clock.advance(0.5)
    assert engine.start_calls == 5
    assert session.is_listening is True
    assert session.restart_count == 4

    engine.end()

    assert session.is_listening is False
    assert session.state == SessionState.STOPPED
    assert session.restart_count == 5
    assert results[-1] == ERROR_MESSAGES[RESTARTS_EXHAUSTED]
    assert clock.pending() == []
    assert engine.start_calls == 5
    assert engine.stop_calls == 1


def test_restart_count_never_exceeds_limit() -> None:
    session, engine, clock, _ = _make_session(max_restarts=3)
    session.start(lambda t: None)

    for _ in range(10):
        if session.is_listening:
            engine.end()
            clock.advance(0.5)
        assert session.restart_count <= 3

    assert session.state == SessionState.STOPPED


def test_failed_restart_retries_after_longer_delay() -> None:
    session, engine, clock, _ = _make_session()
    session.start(lambda t: None)
    engine.fail_starts = 1

    engine.end()
    clock.advance(0.5)
    assert engine.start_calls == 2
    assert session.state == SessionState.RESTARTING

    clock.advance(1.0)
    assert engine.start_calls == 3
    assert session.state == SessionState.LISTENING
    assert session.restart_count == 1


def test_second_failed_restart_counts_as_new_attempt() -> None:
    session, engine, clock, _ = _make_session()
    session.start(lambda t: None)
    engine.fail_starts = 2

    engine.end()
    clock.advance(1.5)
    assert engine.start_calls == 3
    assert session.restart_count == 2

    clock.advance(0.5)
    assert engine.start_calls == 4
    assert session.state == SessionState.LISTENING


def test_stop_during_pending_restart_aborts_it() -> None:
    session, engine, clock, _ = _make_session()
    session.start(lambda t: None)

    engine.end()
    session.stop()
    clock.advance(2)

    assert engine.start_calls == 1
    assert session.state == SessionState.IDLE


def test_end_after_stop_is_ignored() -> None:
    session, engine, clock, _ = _make_session()
    session.start(lambda t: None)
    session.stop()

    engine.end()
    clock.advance(1)

    assert session.restart_count == 0
    assert session.state == SessionState.IDLE
    assert engine.start_calls == 1


def test_inactivity_timeout_stops_session() -> None:
    session, engine, clock, transitions = _make_session()
    session.start(lambda t: None)

    clock.advance(19.9)
    assert session.is_listening is True
    clock.advance(0.1)

    assert session.is_listening is False
    assert session.state == SessionState.IDLE
    assert engine.stop_calls == 1
    assert (SessionState.LISTENING, SessionState.IDLE) in transitions


def test_results_rearm_inactivity_timer() -> None:
    session, engine, clock, _ = _make_session(inactivity_timeout_ms=20000)
    session.start(lambda t: None)

    clock.advance(15)
    engine.interim("hello")
    clock.advance(15)
    assert session.is_listening is True

    clock.advance(5)
    assert session.is_listening is False


def test_stop_is_idempotent_and_cancels_timers() -> None:
    session, engine, clock, _ = _make_session()
    session.stop()
    session.start(lambda t: None)

    session.stop()
    session.stop()

    assert engine.stop_calls == 1
    assert clock.pending() == []


def test_unsupported_engine_reports_once_without_starting() -> None:
    engine = FakeEngine(available=False, reinit_result=False)
    session, _, clock, _ = _make_session(engine=engine)
    results: list[str] = []

    session.start(results.append)

    assert engine.reinit_calls == 1
    assert engine.start_calls == 0
    assert session.is_listening is False
    assert results == [ERROR_MESSAGES[UNSUPPORTED]]
    assert clock.pending() == []


def test_reinitialized_engine_starts() -> None:
    engine = FakeEngine(available=False, reinit_result=True)
    session, _, _, _ = _make_session(engine=engine)

    session.start(lambda t: None)

    assert engine.reinit_calls == 1
    assert engine.start_calls == 1
    assert session.is_listening is True


def test_manual_start_resets_restart_count() -> None:
    session, engine, clock, _ = _make_session(max_restarts=2)
    session.start(lambda t: None)
    engine.end()
    clock.advance(0.5)
    engine.end()
    assert session.state == SessionState.STOPPED
    assert session.restart_count == 2

    session.start(lambda t: None)

    assert session.restart_count == 0
    assert session.state == SessionState.LISTENING


def test_tunables_are_clamped() -> None:
    session, _, _, _ = _make_session()

    session.set_confidence_threshold(1.7)
    session.set_min_word_count(0)
    snapshot = session.snapshot()
    assert snapshot.confidence_threshold == 1.0
    assert snapshot.min_word_count == 1

    session.set_confidence_threshold(-0.5)
    session.set_min_word_count(4)
    snapshot = session.snapshot()
    assert snapshot.confidence_threshold == 0.0
    assert snapshot.min_word_count == 4


def test_callback_errors_do_not_break_session() -> None:
    session, engine, _, _ = _make_session()
    triggers: list[str] = []

    def bad_result(text: str) -> None:
        raise ValueError("ui gone")

    session.start(bad_result, triggers.append)
    engine.final("call the police")

    assert session.is_listening is True
    assert triggers == ["call the police"]


# ---------------------------------------------------------------
# Engine threads and the session lock
# ---------------------------------------------------------------

class JoiningEngine(FakeEngine):
    """Engine whose stop() waits for its callback thread, like the DashScope SDK."""

    def __init__(self) -> None:
        super().__init__()
        self.worker: threading.Thread | None = None

    def stop(self) -> None:
        super().stop()
        worker = self.worker
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout=5.0)


def test_stop_completes_while_engine_worker_waits_on_session_lock() -> None:
    engine = JoiningEngine()
    session, _, _, _ = _make_session(engine=engine)
    results: list[str] = []
    session.start(results.append)

    session._lock.acquire()
    engine.worker = threading.Thread(target=engine.final, args=("hello there",), daemon=True)
    engine.worker.start()
    time.sleep(0.1)
    stopper = threading.Thread(target=session.stop, daemon=True)
    stopper.start()
    time.sleep(0.1)
    session._lock.release()

    stopper.join(timeout=3.0)
    assert not stopper.is_alive()
    engine.worker.join(timeout=3.0)
    assert not engine.worker.is_alive()
    assert session.is_listening is False
    assert engine.stop_calls == 1


def test_engine_is_stopped_off_the_event_thread_after_permission_error() -> None:
    deferred: list = []
    session, engine, _, _ = _make_session(run_async=deferred.append)
    results: list[str] = []
    session.start(results.append)

    engine.error(EngineErrorReason.PERMISSION_DENIED, "not-allowed")

    assert session.state == SessionState.STOPPED
    assert results[-1] == ERROR_MESSAGES[PERMISSION_DENIED]
    assert engine.stop_calls == 0
    assert len(deferred) == 1

    deferred[0]()
    assert engine.stop_calls == 1


def test_deferred_engine_stop_is_dropped_after_restart() -> None:
    deferred: list = []
    session, engine, _, _ = _make_session(run_async=deferred.append)
    session.start(lambda t: None)
    engine.error(EngineErrorReason.NO_MICROPHONE)

    session.start(lambda t: None)
    deferred[0]()

    assert session.is_listening is True
    assert engine.stop_calls == 0
    assert engine.start_calls == 2
