"""Continuous recognition session with trigger detection.

The session drives a ``SpeechEngine`` through an explicit state machine::

    IDLE -> LISTENING -> (IDLE | RESTARTING) -> LISTENING | STOPPED

Every engine notification arrives as a typed ``EngineEvent`` and is routed
through ``_handle_engine_event``.  Transient engine failures are retried a
bounded number of times, and an inactivity watchdog releases the
microphone once the user has gone quiet.

Two locks are used.  ``_lock`` guards session state and is the only lock
taken on engine callback threads.  ``_engine_lock`` serializes calls into
the engine (``start``/``stop``), which may join those callback threads, so
it is always taken first and ``_lock`` is never held across an engine call.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from clock import run_in_background
from errors import (
    ERROR_MESSAGES,
    LISTENING_MESSAGE,
    NO_MICROPHONE,
    PERMISSION_DENIED,
    RESTARTS_EXHAUSTED,
    UNSUPPORTED,
)
from interfaces import Clock, SpeechEngine, TimerHandle
from matcher import match_trigger
from models import (
    EngineErrorReason,
    EngineEvent,
    EngineEventKind,
    MatchDecision,
    SessionSnapshot,
    SessionState,
)

logger = logging.getLogger(__name__)

ResultCallback = Callable[[str], None]
TriggerCallback = Callable[[str], None]
StateCallback = Callable[[SessionState, SessionState], None]
Matcher = Callable[[str], MatchDecision]

INTERIM_SUFFIX = " (listening...)"


class RecognitionSession:
    def __init__(
        self,
        engine: SpeechEngine,
        clock: Clock,
        matcher: Matcher = match_trigger,
        max_restarts: int = 5,
        confidence_threshold: float = 0.1,
        min_word_count: int = 1,
        inactivity_timeout_ms: int = 20000,
        restart_delay_s: float = 0.5,
        retry_delay_s: float = 1.0,
        on_state_change: Optional[StateCallback] = None,
        run_async: Callable[[Callable[[], None]], None] = run_in_background,
    ) -> None:
        self._engine = engine
        self._clock = clock
        self._matcher = matcher
        self._max_restarts = max_restarts
        self._restart_delay_s = restart_delay_s
        self._retry_delay_s = retry_delay_s
        self._on_state_change = on_state_change
        self._run_async = run_async

        self._engine_lock = threading.RLock()
        self._lock = threading.RLock()
        self._engine_stop_pending = False
        self._state = SessionState.IDLE
        self._session_id = 0
        self._is_listening = False
        self._restart_count = 0
        self._last_result_at = 0.0
        self._confidence_threshold = 0.1
        self._min_word_count = 1
        self._inactivity_timeout_ms = inactivity_timeout_ms
        self._final_transcript = ""

        self._on_result: Optional[ResultCallback] = None
        self._on_trigger: Optional[TriggerCallback] = None
        self._watchdog: Optional[TimerHandle] = None
        self._watchdog_token = 0
        self._restart_timer: Optional[TimerHandle] = None

        self.set_confidence_threshold(confidence_threshold)
        self.set_min_word_count(min_word_count)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_listening(self) -> bool:
        return self._is_listening

    @property
    def restart_count(self) -> int:
        return self._restart_count

    @property
    def final_transcript(self) -> str:
        return self._final_transcript

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(
                state=self._state,
                is_listening=self._is_listening,
                restart_count=self._restart_count,
                last_result_at=self._last_result_at,
                confidence_threshold=self._confidence_threshold,
                min_word_count=self._min_word_count,
                inactivity_timeout_ms=self._inactivity_timeout_ms,
            )

    def set_state_listener(self, on_state_change: Optional[StateCallback]) -> None:
        self._on_state_change = on_state_change

    def set_confidence_threshold(self, threshold: float) -> None:
        with self._lock:
            self._confidence_threshold = min(1.0, max(0.0, float(threshold)))

    def set_min_word_count(self, count: int) -> None:
        with self._lock:
            self._min_word_count = max(1, int(count))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, on_result: ResultCallback, on_trigger: Optional[TriggerCallback] = None) -> None:
        with self._engine_lock:
            with self._lock:
                if self._is_listening:
                    return
                if not self._ensure_engine(on_result):
                    return

                self._session_id += 1
                self._restart_count = 0
                self._final_transcript = ""
                self._engine_stop_pending = False
                self._on_result = on_result
                self._on_trigger = on_trigger
                self._is_listening = True
                self._transition(SessionState.LISTENING)
                self._emit_result(LISTENING_MESSAGE)
                self._last_result_at = self._clock.now()
                self._arm_watchdog()

            try:
                self._engine.start(self._handle_engine_event)
            except Exception as exc:
                logger.warning("Speech engine failed to start: %s", exc)
                with self._lock:
                    if self._is_listening:
                        self._schedule_restart()
            self._flush_engine_stop()

    def stop(self) -> None:
        with self._engine_lock:
            with self._lock:
                if not self._is_listening:
                    return
                self._release(SessionState.IDLE)
            self._flush_engine_stop()

    def _ensure_engine(self, on_result: ResultCallback) -> bool:
        if self._engine.is_available():
            return True
        logger.warning("Speech recognition unavailable, reinitializing engine")
        try:
            if self._engine.reinitialize():
                return True
        except Exception:
            logger.exception("Speech engine reinitialization failed")
        logger.error("Speech recognition is not supported on this platform")
        self._safe_call(on_result, ERROR_MESSAGES[UNSUPPORTED])
        return False

    # ------------------------------------------------------------------
    # Engine events
    # ------------------------------------------------------------------

    def _handle_engine_event(self, event: EngineEvent) -> None:
        # Runs on engine threads: only ``_lock`` may be taken here, engine
        # calls are handed to a worker.
        try:
            with self._lock:
                if event.kind == EngineEventKind.RESULT:
                    self._handle_result(event)
                elif event.kind == EngineEventKind.ERROR:
                    self._handle_error(event)
                elif event.kind == EngineEventKind.END:
                    self._handle_end()
                stop_pending = self._engine_stop_pending
        except Exception:
            logger.exception("Failed to handle speech engine event %s", event.kind)
            return
        if stop_pending:
            self._run_async(self._stop_engine_in_background)

    def _handle_result(self, event: EngineEvent) -> None:
        if not self._is_listening:
            return
        for result in event.results[event.result_index:]:
            transcript = result.text.strip()
            if result.is_final:
                self._final_transcript = f"{self._final_transcript} {transcript}".strip()
                word_count = len(transcript.split())
                if result.confidence < self._confidence_threshold:
                    logger.info(
                        "Low confidence result kept (%.2f < %.2f): %r",
                        result.confidence,
                        self._confidence_threshold,
                        transcript,
                    )
                if word_count < self._min_word_count:
                    logger.info("Short result kept (%d words): %r", word_count, transcript)
                self._emit_result(transcript)
                decision = self._matcher(transcript)
                if decision.matched and decision.phrase:
                    logger.warning("Trigger phrase detected: %r", decision.phrase)
                    self._emit_trigger(decision.phrase)
            else:
                self._emit_result(transcript + INTERIM_SUFFIX)
            if not self._is_listening:
                return

        self._last_result_at = self._clock.now()
        self._arm_watchdog()

    def _handle_error(self, event: EngineEvent) -> None:
        if not self._is_listening:
            return
        reason = event.reason
        if reason == EngineErrorReason.PERMISSION_DENIED:
            logger.error("Microphone permission denied: %s", event.message)
            self._halt(ERROR_MESSAGES[PERMISSION_DENIED])
        elif reason == EngineErrorReason.NO_MICROPHONE:
            logger.error("No microphone available: %s", event.message)
            self._halt(ERROR_MESSAGES[NO_MICROPHONE])
        elif reason == EngineErrorReason.NO_SPEECH:
            logger.debug("No speech detected")
            self._last_result_at = self._clock.now()
            self._arm_watchdog()
        else:
            logger.warning("Speech engine error: %s", event.message or reason.value)
            self._last_result_at = self._clock.now()
            self._arm_watchdog()
            self._schedule_restart()

    def _handle_end(self) -> None:
        if not self._is_listening:
            return
        logger.info("Speech engine ended unexpectedly")
        self._schedule_restart()

    # ------------------------------------------------------------------
    # Bounded restart
    # ------------------------------------------------------------------

    def _schedule_restart(self) -> None:
        self._cancel_restart()
        self._restart_count += 1
        if self._restart_count >= self._max_restarts:
            logger.error("Giving up after %d restart attempts", self._max_restarts)
            self._halt(ERROR_MESSAGES[RESTARTS_EXHAUSTED])
            return

        logger.warning(
            "Restarting speech engine (attempt %d/%d)", self._restart_count, self._max_restarts
        )
        self._transition(SessionState.RESTARTING)
        session_id = self._session_id
        self._restart_timer = self._clock.call_later(
            self._restart_delay_s, lambda: self._attempt_restart(session_id, final_try=False)
        )

    def _attempt_restart(self, session_id: int, final_try: bool) -> None:
        with self._engine_lock:
            with self._lock:
                if session_id != self._session_id or not self._is_listening:
                    return
                self._restart_timer = None
            try:
                self._engine.start(self._handle_engine_event)
            except Exception as exc:
                with self._lock:
                    if session_id != self._session_id or not self._is_listening:
                        return
                    if final_try:
                        logger.error("Speech engine restart failed again: %s", exc)
                        self._schedule_restart()
                    else:
                        logger.warning("Speech engine restart failed, retrying: %s", exc)
                        self._restart_timer = self._clock.call_later(
                            self._retry_delay_s,
                            lambda: self._attempt_restart(session_id, final_try=True),
                        )
            else:
                with self._lock:
                    if session_id == self._session_id and self._is_listening:
                        self._transition(SessionState.LISTENING)
            self._flush_engine_stop()

    def _cancel_restart(self) -> None:
        timer = self._restart_timer
        self._restart_timer = None
        if timer is not None:
            timer.cancel()

    # ------------------------------------------------------------------
    # Inactivity watchdog
    # ------------------------------------------------------------------

    def _arm_watchdog(self) -> None:
        self._cancel_watchdog()
        if not self._is_listening:
            return
        self._watchdog_token += 1
        token = self._watchdog_token
        self._watchdog = self._clock.call_later(
            self._inactivity_timeout_ms / 1000.0, lambda: self._on_inactivity(token)
        )

    def _cancel_watchdog(self) -> None:
        timer = self._watchdog
        self._watchdog = None
        if timer is not None:
            timer.cancel()

    def _on_inactivity(self, token: int) -> None:
        with self._engine_lock:
            with self._lock:
                if token != self._watchdog_token or not self._is_listening:
                    return
                logger.info(
                    "No speech for %d ms, stopping recognition", self._inactivity_timeout_ms
                )
                self._watchdog = None
                self._release(SessionState.IDLE)
            self._flush_engine_stop()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _release(self, to_state: SessionState) -> None:
        """Leave the listening state; the engine itself is stopped by ``_flush_engine_stop``."""
        self._is_listening = False
        self._cancel_watchdog()
        self._cancel_restart()
        self._engine_stop_pending = True
        self._transition(to_state)

    def _halt(self, message: str) -> None:
        self._release(SessionState.STOPPED)
        self._emit_result(message)

    def _flush_engine_stop(self) -> None:
        # caller holds _engine_lock but not _lock
        with self._lock:
            if not self._engine_stop_pending:
                return
            self._engine_stop_pending = False
        self._safe_stop_engine()

    def _stop_engine_in_background(self) -> None:
        with self._engine_lock:
            self._flush_engine_stop()

    def _emit_result(self, text: str) -> None:
        if self._on_result:
            self._safe_call(self._on_result, text)

    def _emit_trigger(self, phrase: str) -> None:
        if self._on_trigger:
            self._safe_call(self._on_trigger, phrase)

    def _safe_call(self, callback: Callable[[str], None], value: str) -> None:
        try:
            callback(value)
        except Exception:
            logger.exception("Recognition callback raised")

    def _safe_stop_engine(self) -> None:
        try:
            self._engine.stop()
        except Exception:
            logger.debug("Speech engine stop failed", exc_info=True)

    def _transition(self, to_state: SessionState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        if self._on_state_change:
            try:
                self._on_state_change(from_state, to_state)
            except Exception:
                logger.exception("State change callback raised")
