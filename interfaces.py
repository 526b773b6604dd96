"""Protocol interfaces used by the recognition session and speech output."""

from __future__ import annotations

from queue import Queue
from typing import Any, Callable, Optional, Protocol, Sequence

from models import EngineEvent


class SpeechEngine(Protocol):
    def is_available(self) -> bool: ...

    def reinitialize(self) -> bool: ...

    def start(self, on_event: Callable[[EngineEvent], None]) -> None: ...

    def stop(self) -> None: ...


class Recorder(Protocol):
    def start(self, audio_queue: Queue[Optional[bytes]]) -> None: ...

    def stop(self) -> None: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Clock(Protocol):
    def now(self) -> float: ...

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> TimerHandle: ...


class RemoteSynthesisService(Protocol):
    def synthesize(self, text: str, voice_id: str) -> tuple[bytes, str]: ...


class AudioPlayer(Protocol):
    def play(self, audio: bytes, content_type: str) -> None: ...


class SpeechSynthesizer(Protocol):
    def voices(self) -> Sequence[Any]: ...

    def cancel(self) -> None: ...

    def speak(
        self,
        text: str,
        voice_id: Optional[str],
        rate: int,
        volume: float,
        on_done: Callable[[], None],
    ) -> None: ...

