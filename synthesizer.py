"""Speech synthesis adapters: remote voice service, audio playback, pyttsx3."""

from __future__ import annotations

import base64
import binascii
import io
import logging
import threading
from typing import Any, Callable, Optional

import requests

from errors import SynthesisError

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

try:
    import soundfile as sf
except Exception:  # pragma: no cover
    sf = None  # type: ignore

try:
    import pyttsx3
except Exception:  # pragma: no cover
    pyttsx3 = None  # type: ignore

logger = logging.getLogger(__name__)


class HttpSynthesisService:
    """Client for a text-to-speech endpoint taking ``{text, voiceId}``.

    The endpoint may answer with JSON ``{"audioData": <base64>, "contentType": ...}``
    or with a raw audio body.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str = "",
        request_timeout_s: float = 15.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._endpoint = endpoint
        self._api_key = api_key
        self._request_timeout_s = request_timeout_s
        self._session = session or requests.Session()

    def synthesize(self, text: str, voice_id: str) -> tuple[bytes, str]:
        if not self._endpoint:
            raise SynthesisError("no synthesis endpoint configured")

        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        try:
            response = self._session.post(
                self._endpoint,
                json={"text": text, "voiceId": voice_id},
                headers=headers,
                timeout=self._request_timeout_s,
            )
        except requests.RequestException as exc:
            raise SynthesisError(f"synthesis request failed: {exc}") from exc

        if not response.ok:
            raise SynthesisError(f"synthesis service returned {response.status_code}: {response.text[:200]}")

        content_type = response.headers.get("Content-Type", "")
        if content_type.startswith("application/json"):
            return self._decode_json(response)
        if not response.content:
            raise SynthesisError("synthesis service returned no audio")
        return response.content, content_type or "audio/mpeg"

    def _decode_json(self, response: requests.Response) -> tuple[bytes, str]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise SynthesisError("synthesis response is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise SynthesisError("synthesis response has unexpected shape")

        encoded = payload.get("audioData")
        if not encoded:
            raise SynthesisError(str(payload.get("error") or "missing audio payload"))
        try:
            audio = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise SynthesisError("audio payload is not valid base64") from exc
        return audio, str(payload.get("contentType") or "audio/mpeg")


class SoundDevicePlayer:
    def __init__(self, pcm_sample_rate: int = 24000) -> None:
        self._pcm_sample_rate = pcm_sample_rate

    def play(self, audio: bytes, content_type: str) -> None:
        if sd is None or np is None:
            raise SynthesisError("sounddevice is not installed")
        try:
            if "pcm" in content_type:
                data = np.frombuffer(audio, dtype=np.int16)
                sample_rate = self._pcm_sample_rate
            else:
                if sf is None:
                    raise SynthesisError("soundfile is not installed")
                data, sample_rate = sf.read(io.BytesIO(audio), dtype="float32")
            sd.play(data, sample_rate)
            sd.wait()
        except SynthesisError:
            raise
        except Exception as exc:
            raise SynthesisError(f"playback failed: {exc}") from exc


class Pyttsx3Synthesizer:
    def __init__(self) -> None:
        self._engine: Any = None
        self._lock = threading.Lock()

    def is_available(self) -> bool:
        return pyttsx3 is not None

    def voices(self) -> list[Any]:
        if pyttsx3 is None:
            return []
        return list(self._get_engine().getProperty("voices") or [])

    def cancel(self) -> None:
        if self._engine is not None:
            self._engine.stop()

    def speak(
        self,
        text: str,
        voice_id: Optional[str],
        rate: int,
        volume: float,
        on_done: Callable[[], None],
    ) -> None:
        engine = self._get_engine()
        engine.setProperty("rate", rate)
        engine.setProperty("volume", volume)
        if voice_id:
            engine.setProperty("voice", voice_id)

        def _run() -> None:
            with self._lock:
                token = engine.connect("finished-utterance", lambda name, completed: on_done())
                try:
                    engine.say(text)
                    engine.runAndWait()
                except Exception:
                    logger.exception("pyttsx3 playback failed")
                finally:
                    engine.disconnect(token)
                    on_done()

        threading.Thread(target=_run, daemon=True).start()

    def _get_engine(self) -> Any:
        if pyttsx3 is None:
            raise RuntimeError("pyttsx3 is not installed")
        if self._engine is None:
            self._engine = pyttsx3.init()
        return self._engine
