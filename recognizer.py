"""Continuous speech engine using DashScope real-time recognition.

Microphone PCM frames are pumped from the recorder queue into a
``dashscope.audio.asr.Recognition`` stream.  SDK callbacks are translated
into ``EngineEvent`` objects: sentence updates become interim results,
sentence ends become final results, and stream failures plus the
recorder's microphone errors are mapped onto the engine error taxonomy.
"""

from __future__ import annotations

import logging
import os
import threading
from queue import Empty, Queue
from typing import Any, Callable, Optional

from config import AppSettings
from interfaces import Recorder
from models import EngineErrorReason, EngineEvent, RecognitionResult
from recorder import MicrophoneError, SoundDeviceRecorder

try:
    import dashscope
    from dashscope.audio.asr import Recognition, RecognitionCallback
except Exception:  # pragma: no cover
    dashscope = None  # type: ignore
    Recognition = None  # type: ignore
    RecognitionCallback = object  # type: ignore

logger = logging.getLogger(__name__)

EventCallback = Callable[[EngineEvent], None]


def classify_error(message: str) -> EngineErrorReason:
    """Map a recognition stream error message to an error reason.

    Device failures are classified by the recorder before the stream opens;
    the stream itself only distinguishes silence from everything else.
    """
    low = message.lower()
    if "no speech" in low or "no valid audio" in low:
        return EngineErrorReason.NO_SPEECH
    return EngineErrorReason.OTHER


class _StreamCallback(RecognitionCallback):
    def __init__(self, engine: "DashscopeSpeechEngine", run_id: int) -> None:
        super().__init__()
        self._engine = engine
        self._run_id = run_id

    def on_open(self) -> None:
        logger.debug("Recognition stream %d opened", self._run_id)

    def on_event(self, result: Any) -> None:
        sentence = result.get_sentence()
        if not isinstance(sentence, dict) or "text" not in sentence:
            return
        is_final = _is_sentence_end(sentence)
        self._engine._emit(
            self._run_id,
            EngineEvent.result(
                RecognitionResult(
                    text=str(sentence.get("text", "")).lower(),
                    confidence=float(sentence.get("confidence", 1.0)),
                    is_final=is_final,
                )
            ),
        )

    def on_error(self, result: Any) -> None:
        message = str(getattr(result, "message", "") or result)
        # A failed stream is finished; its trailing close must not count as a second failure.
        if self._run_id == self._engine._run_id:
            self._engine._active = False
        self._engine._emit(self._run_id, EngineEvent.error(classify_error(message), message))

    def on_complete(self) -> None:
        self._engine._emit_end(self._run_id)

    def on_close(self) -> None:
        self._engine._emit_end(self._run_id)


def _is_sentence_end(sentence: dict) -> bool:
    if "sentence_end" in sentence:
        return bool(sentence["sentence_end"])
    return sentence.get("end_time") is not None


class DashscopeSpeechEngine:
    def __init__(
        self,
        api_key: str,
        model: str = "paraformer-realtime-v2",
        recorder: Optional[Recorder] = None,
        sample_rate: int = 16000,
        queue_maxsize: int = 50,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._recorder = recorder or SoundDeviceRecorder(sample_rate=sample_rate)
        self._sample_rate = sample_rate
        self._queue_maxsize = queue_maxsize

        self._lock = threading.RLock()
        self._run_id = 0
        self._active = False
        self._recognition: Any = None
        self._pump: Optional[threading.Thread] = None
        self._audio_queue: Queue[Optional[bytes]] = Queue(maxsize=queue_maxsize)
        self._on_event: Optional[EventCallback] = None

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "DashscopeSpeechEngine":
        return cls(
            api_key=settings.dashscope_api_key,
            model=settings.asr_model,
            recorder=SoundDeviceRecorder.from_settings(settings),
            sample_rate=settings.sample_rate,
        )

    def is_available(self) -> bool:
        return dashscope is not None and bool(self._api_key)

    def reinitialize(self) -> bool:
        if not self._api_key:
            self._api_key = os.getenv("DASHSCOPE_API_KEY", "")
        return self.is_available()

    def start(self, on_event: EventCallback) -> None:
        with self._lock:
            self._teardown()
            if not self.is_available():
                raise RuntimeError("dashscope is not installed or no API key configured")

            self._run_id += 1
            run_id = self._run_id
            self._on_event = on_event
            self._audio_queue = Queue(maxsize=self._queue_maxsize)

            try:
                self._recorder.start(self._audio_queue)
            except MicrophoneError as exc:
                logger.error("Microphone unavailable (%s): %s", exc.reason.value, exc)
                on_event(EngineEvent.error(exc.reason, str(exc)))
                return

            dashscope.api_key = self._api_key
            recognition = Recognition(
                model=self._model,
                format="pcm",
                sample_rate=self._sample_rate,
                callback=_StreamCallback(self, run_id),
            )
            try:
                recognition.start()
            except Exception:
                self._teardown()
                raise
            self._recognition = recognition
            self._active = True

            self._pump = threading.Thread(
                target=self._pump_audio, args=(run_id, recognition, self._audio_queue), daemon=True
            )
            self._pump.start()

    def stop(self) -> None:
        with self._lock:
            self._teardown()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _teardown(self) -> None:
        was_active = self._active
        self._active = False
        self._run_id += 1
        try:
            self._recorder.stop()
        except Exception:
            logger.debug("Recorder stop failed", exc_info=True)
        recognition = self._recognition
        self._recognition = None
        if recognition is not None and was_active:
            try:
                recognition.stop()
            except Exception:
                logger.debug("Recognition stop failed", exc_info=True)
        pump = self._pump
        self._pump = None
        if pump is not None and pump.is_alive() and pump is not threading.current_thread():
            pump.join(timeout=0.5)

    def _pump_audio(self, run_id: int, recognition: Any, audio_queue: Queue[Optional[bytes]]) -> None:
        while run_id == self._run_id:
            try:
                frame = audio_queue.get(timeout=0.2)
            except Empty:
                continue
            if frame is None:  # Sentinel
                return
            try:
                recognition.send_audio_frame(frame)
            except Exception as exc:
                logger.warning("Sending audio frame failed: %s", exc)
                self._emit(run_id, EngineEvent.error(EngineErrorReason.OTHER, str(exc)))
                return

    def _emit(self, run_id: int, event: EngineEvent) -> None:
        if run_id != self._run_id or self._on_event is None:
            return
        self._on_event(event)

    def _emit_end(self, run_id: int) -> None:
        # Runs on the SDK thread while stop() may be waiting on it, so no lock.
        if run_id != self._run_id or not self._active:
            return
        self._active = False
        self._emit(run_id, EngineEvent.end())
