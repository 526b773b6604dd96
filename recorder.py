"""Microphone capture for the speech engine.

The recorder owns the input device: it picks one (by name when configured),
opens a 16-bit mono PCM stream at the configured rate and pushes raw frames
into the engine's queue.  Device failures surface as ``MicrophoneError``
carrying the ``EngineErrorReason`` the session reacts to.
"""

from __future__ import annotations

import logging
import threading
from queue import Full, Queue
from typing import Any, Optional

from config import AppSettings
from models import EngineErrorReason

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)

_PERMISSION_HINTS = ("permission", "not permitted", "access denied", "not authorized")
_MISSING_DEVICE_HINTS = (
    "input device",
    "no default input",
    "querying device",
    "invalid device",
    "device unavailable",
    "no such device",
)


class MicrophoneError(RuntimeError):
    def __init__(self, reason: EngineErrorReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason


def classify_device_error(message: str) -> EngineErrorReason:
    """Map a PortAudio / OS error message to an engine error reason."""
    low = message.lower()
    if any(hint in low for hint in _PERMISSION_HINTS):
        return EngineErrorReason.PERMISSION_DENIED
    if any(hint in low for hint in _MISSING_DEVICE_HINTS):
        return EngineErrorReason.NO_MICROPHONE
    return EngineErrorReason.OTHER


def find_input_device(preferred: str = "") -> Optional[int]:
    """Return the device index to open, or ``None`` for the host default.

    Raises ``MicrophoneError`` when the host has no capture device at all.
    """
    if sd is None:
        raise MicrophoneError(EngineErrorReason.NO_MICROPHONE, "sounddevice is not installed")
    try:
        devices = list(sd.query_devices())
    except Exception as exc:
        raise MicrophoneError(classify_device_error(str(exc)), str(exc)) from exc

    inputs = [
        (index, device)
        for index, device in enumerate(devices)
        if device.get("max_input_channels", 0) > 0
    ]
    if not inputs:
        raise MicrophoneError(EngineErrorReason.NO_MICROPHONE, "no input device")
    if not preferred:
        return None
    for index, device in inputs:
        if preferred.lower() in str(device.get("name", "")).lower():
            return index
    logger.warning("Input device %r not found, using the default microphone", preferred)
    return None


class SoundDeviceRecorder:
    def __init__(self, sample_rate: int = 16000, chunk_ms: int = 100, device_name: str = "") -> None:
        self.sample_rate = sample_rate
        self.chunk_ms = chunk_ms
        self.device_name = device_name
        self.dropped_chunks = 0
        self._stream: Any = None
        self._running = False
        self._lock = threading.Lock()
        self._audio_queue: Optional[Queue[Optional[bytes]]] = None

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "SoundDeviceRecorder":
        return cls(
            sample_rate=settings.sample_rate,
            chunk_ms=settings.chunk_ms,
            device_name=settings.input_device,
        )

    @property
    def blocksize(self) -> int:
        return int(self.sample_rate * self.chunk_ms / 1000)

    def start(self, audio_queue: Queue[Optional[bytes]]) -> None:
        with self._lock:
            if self._running:
                return
            device = find_input_device(self.device_name)
            self._audio_queue = audio_queue
            try:
                stream = sd.RawInputStream(
                    samplerate=self.sample_rate,
                    channels=1,
                    dtype="int16",
                    blocksize=self.blocksize,
                    device=device,
                    callback=self._on_audio,
                )
                stream.start()
            except Exception as exc:
                self._audio_queue = None
                raise MicrophoneError(classify_device_error(str(exc)), str(exc)) from exc
            self._stream = stream
            self._running = True
            logger.info("Microphone open at %d Hz (device=%s)", self.sample_rate, device)

    def stop(self) -> None:
        with self._lock:
            stream = self._stream
            self._stream = None
            self._running = False
            if stream is not None:
                try:
                    stream.stop()
                    stream.close()
                except Exception:
                    logger.debug("Closing input stream failed", exc_info=True)
            if self.dropped_chunks:
                logger.info("Dropped %d audio chunks while the engine was busy", self.dropped_chunks)
                self.dropped_chunks = 0
            self._end_of_stream()

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if status:
            logger.debug("Input stream status: %s", status)
        audio_queue = self._audio_queue
        if not self._running or audio_queue is None:
            return
        try:
            audio_queue.put_nowait(bytes(indata))
        except Full:
            self.dropped_chunks += 1

    def _end_of_stream(self) -> None:
        # None tells the engine's pump thread the stream is over.
        audio_queue = self._audio_queue
        self._audio_queue = None
        if audio_queue is None:
            return
        try:
            audio_queue.put_nowait(None)
        except Full:
            logger.debug("Audio queue full, pump will stop on run change")
