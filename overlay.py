"""Overlay window for dictation status, partial text and download progress."""

from __future__ import annotations

from typing import Optional

try:
    from PySide6.QtCore import Qt, QTimer
    from PySide6.QtWidgets import QApplication, QLabel, QProgressBar, QVBoxLayout, QWidget
except Exception:  # pragma: no cover
    Qt = None  # type: ignore
    QTimer = None  # type: ignore
    QApplication = None  # type: ignore
    QLabel = object  # type: ignore
    QProgressBar = object  # type: ignore
    QWidget = object  # type: ignore
    QVBoxLayout = object  # type: ignore

_TEXT_STYLE = (
    "color: {color}; font-size: 18px; padding: 16px;"
    "background: rgba(0,0,0,{alpha}); border-radius: 12px;"
)


def format_bytes(n: int) -> str:
    value = float(n)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def format_progress(downloaded: int, total: int, speed_bps: Optional[float] = None) -> str:
    text = format_bytes(downloaded)
    if total > 0:
        text += f" / {format_bytes(total)} ({downloaded * 100 // total}%)"
    if speed_bps:
        text += f" at {format_bytes(int(speed_bps))}/s"
    return text


class OverlayWindow(QWidget):
    def __init__(self) -> None:
        if Qt is None:
            raise RuntimeError("PySide6 is not installed")
        super().__init__()
        self.setWindowFlags(Qt.WindowStaysOnTopHint | Qt.FramelessWindowHint | Qt.Tool)
        self.setAttribute(Qt.WA_TranslucentBackground, True)
        self.setFixedWidth(600)

        self._label = QLabel("")
        self._label.setWordWrap(True)
        self._reset_style()

        self._progress = QProgressBar()
        self._progress.setTextVisible(False)
        self._progress.hide()

        layout = QVBoxLayout()
        layout.setContentsMargins(0, 0, 0, 0)
        layout.addWidget(self._label)
        layout.addWidget(self._progress)
        self.setLayout(layout)

        self._hide_timer: QTimer | None = None

    def _center_top(self) -> None:
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
        self._cancel_hide_timer()
        self._label.setText(text)
        self._center_top()
        self.show()

    def show_status(self, text: str) -> None:
        self._reset_style()
        self._progress.hide()
        self.set_text(text)

    def show_progress(self, title: str, downloaded: int, total: int, speed_bps: Optional[float] = None) -> None:
        """Model download progress; an unknown total shows a busy bar."""
        self._reset_style()
        if total > 0:
            self._progress.setRange(0, 1000)
            self._progress.setValue(int(downloaded * 1000 / total))
        else:
            self._progress.setRange(0, 0)
        self._progress.show()
        self.set_text(f"{title}\n{format_progress(downloaded, total, speed_bps)}")

    def hide_with_delay(self, delay_ms: int = 400) -> None:
        self._cancel_hide_timer()
        if QTimer is not None:
            self._hide_timer = QTimer()
            self._hide_timer.setSingleShot(True)
            self._hide_timer.timeout.connect(self.hide)
            self._hide_timer.start(delay_ms)

    def show_error(self, text: str, hide_after_ms: int = 2500) -> None:
        self._progress.hide()
        self._label.setStyleSheet(_TEXT_STYLE.format(color="#FF6B6B", alpha=210))
        self.set_text(f"⚠️ {text}")
        self.hide_with_delay(hide_after_ms)

    def _cancel_hide_timer(self) -> None:
        if self._hide_timer is not None:
            self._hide_timer.stop()
            self._hide_timer = None

    def _reset_style(self) -> None:
        self._label.setStyleSheet(_TEXT_STYLE.format(color="white", alpha=190))
