"""Overlay window for session status and the coach's output level."""

from __future__ import annotations

from typing import Any, Callable, Optional

try:
    from PySide6.QtCore import Qt, QTimer
    from PySide6.QtGui import QColor, QLinearGradient, QPainter
    from PySide6.QtWidgets import QApplication, QLabel, QVBoxLayout, QWidget
except Exception:  # pragma: no cover
    Qt = None  # type: ignore
    QTimer = None  # type: ignore
    QColor = None  # type: ignore
    QLinearGradient = None  # type: ignore
    QPainter = None  # type: ignore
    QApplication = None  # type: ignore
    QLabel = object  # type: ignore
    QVBoxLayout = object  # type: ignore
    QWidget = object  # type: ignore

FrequencySource = Callable[[], Optional[Any]]

_LABEL_STYLE = (
    "color: {color}; font-size: 16px; padding: 12px;"
    "background: rgba(0,0,0,{alpha}); border-radius: 12px;"
)


class LevelMeter(QWidget):
    """Bar graph of byte-scaled frequency bins."""

    def __init__(self) -> None:
        super().__init__()
        self.setFixedHeight(48)
        self._bins: Optional[Any] = None

    def set_bins(self, bins: Optional[Any]) -> None:
        self._bins = bins
        self.update()

    def paintEvent(self, event: Any) -> None:  # noqa: N802
        bins = self._bins
        if bins is None or len(bins) == 0:
            return
        painter = QPainter(self)
        gradient = QLinearGradient(0, self.height(), 0, 0)
        gradient.setColorAt(0, QColor("#059669"))
        gradient.setColorAt(1, QColor("#34d399"))
        bar_width = max(1.0, self.width() / len(bins) * 2.5)
        x = 0.0
        for value in bins:
            if x > self.width():
                break
            bar_height = min(self.height(), int(value) / 255.0 * self.height())
            painter.fillRect(int(x), int(self.height() - bar_height), int(bar_width), int(bar_height), gradient)
            x += bar_width + 1
        painter.end()


class OverlayWindow(QWidget):
    def __init__(self) -> None:
        if Qt is None:
            raise RuntimeError("PySide6 is not installed")
        super().__init__()
        self.setWindowFlags(
            Qt.WindowStaysOnTopHint | Qt.FramelessWindowHint | Qt.Tool
        )
        self.setAttribute(Qt.WA_TranslucentBackground, True)
        self.setFixedWidth(420)

        self._label = QLabel("")
        self._label.setWordWrap(True)
        self._reset_style()
        self._meter = LevelMeter()
        self._meter.hide()

        layout = QVBoxLayout()
        layout.setContentsMargins(0, 0, 0, 0)
        layout.addWidget(self._label)
        layout.addWidget(self._meter)
        self.setLayout(layout)

        self._hide_timer: QTimer | None = None
        self._frame_timer: QTimer | None = None
        self._frequency_source: Optional[FrequencySource] = None

    def _place_top_right(self) -> None:
        if QApplication is None:
            return
        screen = QApplication.primaryScreen()
        if screen is None:
            return
        geom = screen.availableGeometry()
        self.adjustSize()
        self.move(geom.x() + geom.width() - self.width() - 24, geom.y() + 40)

    def set_text(self, text: str) -> None:
        self._cancel_hide_timer()
        self._reset_style()
        self._label.setText(text)
        self._place_top_right()
        self.show()

    def hide_with_delay(self, delay_ms: int = 400) -> None:
        self._cancel_hide_timer()
        if QTimer is not None:
            self._hide_timer = QTimer()
            self._hide_timer.setSingleShot(True)
            self._hide_timer.timeout.connect(self.hide)
            self._hide_timer.start(delay_ms)

    def show_error(self, text: str, hide_after_ms: int = 5000) -> None:
        self._cancel_hide_timer()
        self._label.setStyleSheet(_LABEL_STYLE.format(color="#FF6B6B", alpha=210))
        self._label.setText(f"⚠️ {text}")
        self._place_top_right()
        self.show()
        self.hide_with_delay(hide_after_ms)

    def start_visualizer(self, source: FrequencySource, interval_ms: int = 33) -> None:
        """Poll ``source`` on a frame timer until ``stop_visualizer``."""
        self.stop_visualizer()
        self._frequency_source = source
        self._meter.show()
        self._frame_timer = QTimer()
        self._frame_timer.timeout.connect(self._draw_frame)
        self._frame_timer.start(interval_ms)

    def stop_visualizer(self) -> None:
        if self._frame_timer is not None:
            self._frame_timer.stop()
            self._frame_timer = None
        self._frequency_source = None
        self._meter.set_bins(None)
        self._meter.hide()

    def _draw_frame(self) -> None:
        source = self._frequency_source
        if source is None:
            return
        self._meter.set_bins(source())

    def _cancel_hide_timer(self) -> None:
        if self._hide_timer is not None:
            self._hide_timer.stop()
            self._hide_timer = None

    def _reset_style(self) -> None:
        self._label.setStyleSheet(_LABEL_STYLE.format(color="white", alpha=190))
