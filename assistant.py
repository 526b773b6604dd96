"""Voice assistant surface: one screen's worth of listening, replies and alerts."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

from clock import run_in_background
from errors import CHAT_FAILED, ERROR_MESSAGES, LISTENING_MESSAGE, STOPPED_MESSAGE
from matcher import match_trigger
from models import SessionState
from recognition_session import INTERIM_SUFFIX, Matcher, RecognitionSession
from speech_output import SpeechOutput

logger = logging.getLogger(__name__)

EventCallback = Callable[[str, Any], None]
MessageHandler = Callable[[str], str]

# Transcript placeholders and error banners; never forwarded as user input.
_STATUS_MESSAGES = frozenset({LISTENING_MESSAGE, STOPPED_MESSAGE, *ERROR_MESSAGES.values()})


def emergency_acknowledgement(phrase: str) -> str:
    return (
        f'I\'ve detected an emergency situation ("{phrase}"). '
        "Sending an alert to your emergency contacts."
    )


class VoiceAssistant:
    """Binds a recognition session, speech output and the app callbacks.

    UI events are published through ``on_event(kind, payload)`` with kinds
    ``transcript``, ``listening``, ``emergency``, ``reply`` and ``error``.
    """

    def __init__(
        self,
        session: RecognitionSession,
        speech: SpeechOutput,
        on_emergency: Callable[[], None],
        on_message: Optional[MessageHandler] = None,
        on_event: Optional[EventCallback] = None,
        matcher: Matcher = match_trigger,
        run_async: Callable[[Callable[[], None]], None] = run_in_background,
        prefer_high_quality: bool = True,
    ) -> None:
        self._session = session
        self._speech = speech
        self._on_emergency = on_emergency
        self._on_message = on_message
        self._on_event = on_event
        self._matcher = matcher
        self._run_async = run_async
        self._prefer_high_quality = prefer_high_quality

        self._lock = threading.RLock()
        self._is_listening = False
        self._is_processing = False
        self._suspended = False
        self._closed = False
        self._transcript = LISTENING_MESSAGE

        self._session.set_state_listener(self._handle_state_change)

    @property
    def is_listening(self) -> bool:
        return self._is_listening

    @property
    def is_processing(self) -> bool:
        return self._is_processing

    @property
    def transcript(self) -> str:
        return self._transcript

    def toggle_listening(self) -> None:
        if self._is_listening:
            self.stop_listening()
        else:
            self.start_listening()

    def start_listening(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._session.start(self._handle_result, self._handle_trigger)
            self._set_listening(self._session.is_listening)

    def stop_listening(self) -> None:
        with self._lock:
            self._session.stop()
            self._set_listening(False)
            self._set_transcript(STOPPED_MESSAGE)

    def submit_text(self, text: str) -> Optional[str]:
        """Handle a typed (or dictated) message; returns the assistant reply."""
        message = (text or "").strip() or self._transcript
        if message.endswith(INTERIM_SUFFIX):
            message = message[: -len(INTERIM_SUFFIX)].strip()
        if not message or message in _STATUS_MESSAGES:
            return None

        self._set_transcript(LISTENING_MESSAGE)
        self._is_processing = True
        try:
            decision = self._matcher(message)
            if decision.matched and decision.phrase:
                self.handle_emergency(decision.phrase)
                return None
            if self._on_message is None:
                return None

            try:
                reply = self._on_message(message)
            except Exception:
                logger.exception("Message handler failed")
                self._publish("error", ERROR_MESSAGES[CHAT_FAILED])
                self.say(ERROR_MESSAGES[CHAT_FAILED], prefer_high_quality=False)
                return None

            self._publish("reply", reply)
            self.say(reply, prefer_high_quality=self._prefer_high_quality)
            return reply
        finally:
            self._is_processing = False

    def handle_emergency(self, phrase: str) -> None:
        logger.warning("Emergency trigger: %r", phrase)
        self._publish("emergency", phrase)
        try:
            self._on_emergency()
        except Exception:
            logger.exception("Emergency callback failed")
        self._run_async(lambda: self.say(emergency_acknowledgement(phrase), prefer_high_quality=False))

    def say(self, text: str, prefer_high_quality: bool = False) -> None:
        """Speak with recognition paused so the engine does not hear itself."""
        with self._lock:
            resume = self._session.is_listening
            if resume:
                self._suspended = True
                self._session.stop()
        try:
            self._speech.speak(text, prefer_high_quality)
        finally:
            with self._lock:
                self._suspended = False
                if resume and self._is_listening and not self._closed:
                    self._session.start(self._handle_result, self._handle_trigger)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._session.stop()
            self._set_listening(False)
        self._speech.cancel()

    # ------------------------------------------------------------------
    # Session callbacks
    # ------------------------------------------------------------------

    def _handle_result(self, text: str) -> None:
        self._set_transcript(text)

    def _handle_trigger(self, phrase: str) -> None:
        self.handle_emergency(phrase)

    def _handle_state_change(self, from_state: SessionState, to_state: SessionState) -> None:
        if self._suspended:
            return
        if to_state in (SessionState.IDLE, SessionState.STOPPED):
            self._set_listening(False)

    def _set_listening(self, value: bool) -> None:
        if self._is_listening == value:
            return
        self._is_listening = value
        self._publish("listening", value)

    def _set_transcript(self, text: str) -> None:
        self._transcript = text
        self._publish("transcript", text)

    def _publish(self, kind: str, payload: Any) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(kind, payload)
        except Exception:
            logger.exception("UI event handler failed for %s", kind)
