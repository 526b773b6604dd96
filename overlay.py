"""Overlay window for live transcripts and emergency banners."""

from __future__ import annotations

try:
    from PySide6.QtCore import Qt, QTimer
    from PySide6.QtWidgets import QApplication, QLabel, QWidget, QVBoxLayout
except Exception:  # pragma: no cover
    Qt = None  # type: ignore
    QTimer = None  # type: ignore
    QApplication = None  # type: ignore
    QLabel = object  # type: ignore
    QWidget = object  # type: ignore
    QVBoxLayout = object  # type: ignore

_BASE_STYLE = "font-size: 18px; padding: 16px; border-radius: 12px;"
NORMAL_STYLE = "color: white; background: rgba(0,0,0,190);" + _BASE_STYLE
ERROR_STYLE = "color: #FF6B6B; background: rgba(0,0,0,210);" + _BASE_STYLE
EMERGENCY_STYLE = "color: white; font-weight: bold; background: rgba(200,30,30,230);" + _BASE_STYLE


class OverlayWindow(QWidget):
    def __init__(self) -> None:
        if Qt is None:
            raise RuntimeError("PySide6 is not installed")
        super().__init__()
        self.setWindowFlags(
            Qt.WindowStaysOnTopHint | Qt.FramelessWindowHint | Qt.Tool
        )
        self.setAttribute(Qt.WA_TranslucentBackground, True)
        self.setFixedWidth(600)

        self._label = QLabel("")
        self._label.setWordWrap(True)
        self._label.setStyleSheet(NORMAL_STYLE)

        layout = QVBoxLayout()
        layout.setContentsMargins(0, 0, 0, 0)
        layout.addWidget(self._label)
        self.setLayout(layout)

        self._hide_timer: QTimer | None = None

    def _center_top(self) -> None:
        """Position the window at the top center of the primary screen."""
        if QApplication is None:
            return
        screen = QApplication.primaryScreen()
        if screen is None:
            return
        geom = screen.availableGeometry()
        self.adjustSize()
        x = geom.x() + (geom.width() - self.width()) // 2
        y = geom.y() + 40
        self.move(x, y)

    def set_text(self, text: str) -> None:
        """Show a transcript line at screen top center."""
        self._cancel_hide_timer()
        self._label.setStyleSheet(NORMAL_STYLE)
        self._show(text)

    def show_error(self, text: str, hide_after_ms: int = 3000) -> None:
        self._cancel_hide_timer()
        self._label.setStyleSheet(ERROR_STYLE)
        self._show(f"⚠️ {text}")
        self.hide_with_delay(hide_after_ms)

    def show_emergency(self, phrase: str, hide_after_ms: int = 6000) -> None:
        self._cancel_hide_timer()
        self._label.setStyleSheet(EMERGENCY_STYLE)
        self._show(f'🚨 Emergency detected: "{phrase}". Alerting your contacts.')
        self.hide_with_delay(hide_after_ms)

    def hide_with_delay(self, delay_ms: int = 400) -> None:
        self._cancel_hide_timer()
        if QTimer is not None:
            self._hide_timer = QTimer()
            self._hide_timer.setSingleShot(True)
            self._hide_timer.timeout.connect(self.hide)
            self._hide_timer.start(delay_ms)

    def _show(self, text: str) -> None:
        self._label.setText(text)
        self._center_top()
        self.show()

    def _cancel_hide_timer(self) -> None:
        if self._hide_timer is not None:
            self._hide_timer.stop()
            self._hide_timer = None
