"""Application entrypoint."""

from __future__ import annotations

import logging
import sys

from assistant import VoiceAssistant
from chat_client import HttpChatClient
from clock import ThreadingClock, run_in_background
from config import AppSettings, JsonConfigStore
from hotkey import AssistantHotkeys
from overlay import OverlayWindow
from recognition_session import RecognitionSession
from recognizer import DashscopeSpeechEngine
from speech_output import SpeechOutput
from synthesizer import HttpSynthesisService, Pyttsx3Synthesizer, SoundDevicePlayer

try:
    from PySide6.QtCore import QObject, Signal, QSize
    from PySide6.QtGui import QAction, QIcon, QPixmap, QPainter, QColor, QBrush
    from PySide6.QtWidgets import QApplication, QInputDialog, QMenu, QMessageBox, QSystemTrayIcon
except Exception as exc:  # pragma: no cover
    raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")

logger = logging.getLogger(__name__)


def _create_icon(color: str = "#888888", size: int = 22) -> QIcon:
    """Generate a simple circular tray icon with the given color."""
    pixmap = QPixmap(QSize(size, size))
    pixmap.fill(QColor(0, 0, 0, 0))
    painter = QPainter(pixmap)
    painter.setRenderHint(QPainter.Antialiasing, True)
    painter.setBrush(QBrush(QColor(color)))
    painter.setPen(QColor(color))
    painter.drawEllipse(2, 2, size - 4, size - 4)
    painter.end()
    return QIcon(pixmap)


ICON_IDLE = "#888888"       # grey
ICON_LISTENING = "#3AA0FF"  # blue
ICON_EMERGENCY = "#FF4444"  # red


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def build_assistant(settings: AppSettings, on_emergency, on_event) -> VoiceAssistant:  # noqa: ANN001
    session = RecognitionSession(
        engine=DashscopeSpeechEngine.from_settings(settings),
        clock=ThreadingClock(),
        max_restarts=settings.max_restarts,
        confidence_threshold=settings.confidence_threshold,
        min_word_count=settings.min_word_count,
        inactivity_timeout_ms=settings.inactivity_timeout_ms,
    )
    remote = None
    if settings.tts_endpoint:
        remote = HttpSynthesisService(settings.tts_endpoint, api_key=settings.tts_api_key)
    speech = SpeechOutput(
        synthesizer=Pyttsx3Synthesizer(),
        remote=remote,
        player=SoundDevicePlayer(),
        default_voice_id=settings.voice_id,
    )
    on_message = None
    if settings.chat_endpoint:
        on_message = HttpChatClient(settings.chat_endpoint, api_key=settings.chat_api_key)
    return VoiceAssistant(
        session=session,
        speech=speech,
        on_emergency=on_emergency,
        on_message=on_message,
        on_event=on_event,
    )


class UIBridge(QObject):
    event_signal = Signal(str, object)  # kind, payload


class App:
    def __init__(self) -> None:
        self.app = QApplication(sys.argv)
        self.config_store = JsonConfigStore()
        self.settings = self.config_store.load()
        configure_logging(self.settings.log_level)

        self.overlay = OverlayWindow()
        self.ui = UIBridge()
        self.ui.event_signal.connect(self._on_event_ui)

        self.assistant = build_assistant(self.settings, self._on_emergency, self._on_event)
        self.hotkeys: AssistantHotkeys | None = None

        self.tray = QSystemTrayIcon()
        self.tray.setIcon(_create_icon(ICON_IDLE))
        self.tray.setToolTip("Safety Voice — Ready")
        self._setup_menu()
        self.tray.show()

    def _setup_menu(self) -> None:
        menu = QMenu()

        listen_action = QAction("Start / Stop Listening", menu)
        # Opening or closing the stream blocks, keep it off the Qt main thread
        listen_action.triggered.connect(lambda: run_in_background(self.assistant.toggle_listening))
        menu.addAction(listen_action)

        type_action = QAction("Type a Message", menu)
        type_action.triggered.connect(self._type_message)
        menu.addAction(type_action)

        menu.addSeparator()

        api_action = QAction("Set API Key", menu)
        api_action.triggered.connect(self._set_api_key)
        menu.addAction(api_action)

        hotkey_action = QAction("Set Hotkey", menu)
        hotkey_action.triggered.connect(self._set_hotkey)
        menu.addAction(hotkey_action)

        menu.addSeparator()
        quit_action = QAction("Quit", menu)
        quit_action.triggered.connect(self.quit)
        menu.addAction(quit_action)

        self.tray.setContextMenu(menu)

    def _type_message(self) -> None:
        value, ok = QInputDialog.getText(None, "Safety Assistant", "Type a message")
        if not ok or not value.strip():
            return
        # Chat and speech block, keep them off the Qt main thread
        run_in_background(lambda: self.assistant.submit_text(value))

    def _set_api_key(self) -> None:
        value, ok = QInputDialog.getText(None, "API Key", "DashScope API Key")
        if not ok:
            return
        self.config_store.set_api_key(value)
        QMessageBox.information(None, "Saved", "API Key saved. Restart app to apply.")

    def _set_hotkey(self) -> None:
        value, ok = QInputDialog.getText(
            None, "Hotkey", "Key or combination, e.g. <f8> or <ctrl>+<alt>+s"
        )
        if not ok or not value:
            return
        self.config_store.set_hotkey(value)
        QMessageBox.information(None, "Saved", "Hotkey saved. Restart app to apply.")

    # ------------------------------------------------------------------
    # Callbacks (called from worker threads → emit signals for UI thread)
    # ------------------------------------------------------------------

    def _on_emergency(self) -> None:
        logger.warning("Emergency alert requested")
        self.ui.event_signal.emit("alert", None)

    def _on_event(self, kind: str, payload: object) -> None:
        self.ui.event_signal.emit(kind, payload)

    # ------------------------------------------------------------------
    # UI thread handlers (safe for Qt)
    # ------------------------------------------------------------------

    def _on_event_ui(self, kind: str, payload: object) -> None:
        if kind == "transcript":
            self.overlay.set_text(str(payload))
        elif kind == "listening":
            if payload:
                self.tray.setIcon(_create_icon(ICON_LISTENING))
                self.tray.setToolTip("Safety Voice — Listening...")
            else:
                self.tray.setIcon(_create_icon(ICON_IDLE))
                self.tray.setToolTip("Safety Voice — Ready")
                self.overlay.hide_with_delay(1500)
        elif kind == "emergency":
            self.tray.setIcon(_create_icon(ICON_EMERGENCY))
            self.overlay.show_emergency(str(payload))
        elif kind == "alert":
            self.tray.showMessage(
                "Emergency Detected",
                "Sending an alert to your emergency contacts.",
                QSystemTrayIcon.Critical,
            )
        elif kind == "reply":
            self.overlay.set_text(str(payload))
            self.overlay.hide_with_delay(8000)
        elif kind == "error":
            self.overlay.show_error(str(payload))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        try:
            self.hotkeys = AssistantHotkeys.from_settings(self.assistant, self.settings)
            self.hotkeys.start()
        except Exception as exc:
            logger.warning("Hotkeys disabled: %s", exc)
            self.overlay.show_error(f"Hotkey disabled: {exc}")
        return self.app.exec()

    def quit(self) -> None:
        if self.hotkeys is not None:
            self.hotkeys.stop()
        self.assistant.close()
        self.app.quit()


def main() -> int:
    app = App()
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
