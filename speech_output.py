"""Text-to-speech with a remote high-quality voice and a local fallback."""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional, Sequence

from config import DEFAULT_VOICE_ID
from interfaces import AudioPlayer, RemoteSynthesisService, SpeechSynthesizer

logger = logging.getLogger(__name__)

PREFERRED_VOICE_HINTS = ("natural", "neural", "google", "samantha", "zira", "female")
DEFAULT_RATE = 175
DEFAULT_VOLUME = 1.0


def pick_preferred_voice(voices: Sequence[Any]) -> Optional[str]:
    """Return the id of the first voice whose name looks natural-sounding."""
    for hint in PREFERRED_VOICE_HINTS:
        for voice in voices:
            name = str(getattr(voice, "name", "") or "").lower()
            if hint in name:
                return getattr(voice, "id", None)
    return None


class SpeechOutput:
    def __init__(
        self,
        synthesizer: Optional[SpeechSynthesizer],
        remote: Optional[RemoteSynthesisService] = None,
        player: Optional[AudioPlayer] = None,
        default_voice_id: str = DEFAULT_VOICE_ID,
        fallback_floor_s: float = 2.0,
        fallback_per_char_s: float = 0.1,
    ) -> None:
        self._synthesizer = synthesizer
        self._remote = remote
        self._player = player
        self._default_voice_id = default_voice_id
        self._fallback_floor_s = fallback_floor_s
        self._fallback_per_char_s = fallback_per_char_s
        self._lock = threading.Lock()
        self._local_done: Optional[threading.Event] = None

    def speak(self, text: str, prefer_high_quality: bool = False, voice_id: Optional[str] = None) -> str:
        """Speak ``text`` and block until done.

        Returns the path that produced audio: ``"remote"``, ``"local"`` or
        ``"none"`` when nothing could be spoken.
        """
        if not text:
            return "none"

        if prefer_high_quality and self._remote is not None and self._player is not None:
            try:
                audio, content_type = self._remote.synthesize(text, voice_id or self._default_voice_id)
                if not audio:
                    raise ValueError("empty audio payload")
                self._player.play(audio, content_type)
                return "remote"
            except Exception as exc:
                logger.warning("High quality speech failed, using local voice: %s", exc)

        if self.speak_local(text):
            return "local"
        return "none"

    def speak_local(self, text: str) -> bool:
        if self._synthesizer is None:
            logger.error("Speech synthesis not supported")
            return False

        done = threading.Event()
        with self._lock:
            previous = self._local_done
            self._local_done = done
            try:
                self._synthesizer.cancel()
            except Exception:
                logger.debug("Cancelling local speech failed", exc_info=True)
            if previous is not None:
                previous.set()

        try:
            voice_id = pick_preferred_voice(self._synthesizer.voices())
            self._synthesizer.speak(text, voice_id, DEFAULT_RATE, DEFAULT_VOLUME, done.set)
        except Exception as exc:
            logger.error("Local speech failed: %s", exc)
            done.set()
            return False

        timeout = max(self._fallback_floor_s, len(text) * self._fallback_per_char_s)
        if not done.wait(timeout):
            logger.debug("Local speech finish signal missing after %.1fs", timeout)
        return True

    def cancel(self) -> None:
        with self._lock:
            if self._local_done is not None:
                self._local_done.set()
                self._local_done = None
        if self._synthesizer is not None:
            try:
                self._synthesizer.cancel()
            except Exception:
                logger.debug("Cancelling local speech failed", exc_info=True)
