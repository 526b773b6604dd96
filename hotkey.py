"""Desktop-wide hotkeys for the voice assistant."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from assistant import VoiceAssistant
from clock import run_in_background
from config import AppSettings

try:
    from pynput import keyboard
except Exception:  # pragma: no cover
    keyboard = None  # type: ignore

logger = logging.getLogger(__name__)

MANUAL_TRIGGER = "emergency hotkey"


def to_pynput_hotkey(name: str) -> str:
    """Normalize ``Key.f8``, ``F8`` or ``<ctrl>+<alt>+h`` to pynput's hotkey syntax."""
    name = name.strip()
    if not name:
        return ""
    if name.startswith("Key."):
        return f"<{name[4:].lower()}>"
    if "+" in name or name.startswith("<") or len(name) == 1:
        return name.lower()
    return f"<{name.lower()}>"


class AssistantHotkeys:
    """Toggle listening, and optionally raise an alert, from any window.

    pynput runs handlers on its listener thread.  Starting or stopping
    recognition opens and closes the microphone and the recognition stream,
    so the assistant is always driven from a worker.
    """

    def __init__(
        self,
        assistant: VoiceAssistant,
        toggle_key: str = "<f8>",
        emergency_key: str = "",
        run_async: Callable[[Callable[[], None]], None] = run_in_background,
    ) -> None:
        self._assistant = assistant
        self._toggle_key = to_pynput_hotkey(toggle_key)
        self._emergency_key = to_pynput_hotkey(emergency_key)
        self._run_async = run_async
        self._listener: Optional[object] = None

        if not self._toggle_key:
            raise ValueError("a toggle hotkey is required")
        if self._emergency_key == self._toggle_key:
            raise ValueError(f"{toggle_key!r} cannot both toggle listening and raise an alert")

    @classmethod
    def from_settings(cls, assistant: VoiceAssistant, settings: AppSettings) -> "AssistantHotkeys":
        return cls(assistant, toggle_key=settings.hotkey, emergency_key=settings.emergency_hotkey)

    def bindings(self) -> dict[str, Callable[[], None]]:
        keys = {self._toggle_key: self._on_toggle}
        if self._emergency_key:
            keys[self._emergency_key] = self._on_emergency
        return keys

    def start(self) -> None:
        if keyboard is None:
            raise RuntimeError("pynput is not installed")
        if self._listener is not None:
            return
        listener = keyboard.GlobalHotKeys(self.bindings())
        listener.start()
        self._listener = listener
        logger.info("Hotkeys active: %s", ", ".join(self.bindings()))

    def stop(self) -> None:
        listener = self._listener
        self._listener = None
        if listener is not None:
            listener.stop()

    def _on_toggle(self) -> None:
        self._run_async(self._assistant.toggle_listening)

    def _on_emergency(self) -> None:
        logger.warning("Emergency hotkey pressed")
        self._run_async(lambda: self._assistant.handle_emergency(MANUAL_TRIGGER))
