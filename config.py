"""Simple JSON-based config store."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_VOICE_ID = "EXAVITQu4vr4xnSDxMaL"

_ENV_OVERRIDES = {
    "dashscope_api_key": "DASHSCOPE_API_KEY",
    "tts_api_key": "SAFEVOICE_TTS_API_KEY",
    "chat_api_key": "SAFEVOICE_CHAT_API_KEY",
}


@dataclass
class AppSettings:
    dashscope_api_key: str = ""
    asr_model: str = "paraformer-realtime-v2"
    tts_endpoint: str = ""
    tts_api_key: str = ""
    voice_id: str = DEFAULT_VOICE_ID
    chat_endpoint: str = ""
    chat_api_key: str = ""
    hotkey: str = "<f8>"
    emergency_hotkey: str = ""
    sample_rate: int = 16000
    chunk_ms: int = 100
    input_device: str = ""
    confidence_threshold: float = 0.1
    min_word_count: int = 1
    inactivity_timeout_ms: int = 20000
    max_restarts: int = 5
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict) -> "AppSettings":
        known = {f.name: f for f in fields(cls)}
        values = {}
        for name, value in data.items():
            if name not in known:
                continue
            default = known[name].default
            try:
                values[name] = type(default)(value)
            except (TypeError, ValueError):
                logger.warning("Ignoring invalid config value %s=%r", name, value)
        return cls(**values)

    def with_env_overrides(self) -> "AppSettings":
        data = asdict(self)
        for name, env_var in _ENV_OVERRIDES.items():
            if not data[name]:
                data[name] = os.getenv(env_var, "")
        return AppSettings(**data)


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "safevoice" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> AppSettings:
        return AppSettings.from_dict(self._read_all()).with_env_overrides()

    def save(self, settings: AppSettings) -> None:
        data = self._read_all()
        data.update(asdict(settings))
        self._write_all(data)

    def get_api_key(self) -> str:
        data = self._read_all()
        return str(data.get("dashscope_api_key", ""))

    def set_api_key(self, key: str) -> None:
        data = self._read_all()
        data["dashscope_api_key"] = key
        self._write_all(data)

    def get_hotkey(self) -> str:
        data = self._read_all()
        return str(data.get("hotkey", AppSettings.hotkey))

    def set_hotkey(self, hotkey: str) -> None:
        data = self._read_all()
        data["hotkey"] = hotkey
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
