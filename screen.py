"""Screen sharing: periodic downscaled JPEG frames from a display grab."""

from __future__ import annotations

import asyncio
import io
import logging
import threading
from typing import Any, Callable, Optional

from PIL import Image

from interfaces import DisplaySource
from models import ScreenFrame

try:
    import mss
except Exception:  # pragma: no cover
    mss = None  # type: ignore

logger = logging.getLogger(__name__)

MAX_FRAME_WIDTH = 1280
FRAME_INTERVAL_S = 0.5
JPEG_QUALITY = 50


def scaled_size(width: int, height: int, max_width: int = MAX_FRAME_WIDTH) -> tuple[int, int]:
    """Fit ``width`` into ``max_width`` keeping aspect ratio; never upscale."""
    if width <= 0 or height <= 0:
        return 0, 0
    scale = min(1.0, max_width / float(width))
    return int(width * scale), int(height * scale)


def encode_jpeg(
    image: Image.Image,
    max_width: int = MAX_FRAME_WIDTH,
    quality: int = JPEG_QUALITY,
) -> ScreenFrame:
    width, height = scaled_size(image.width, image.height, max_width)
    if (width, height) != image.size:
        image = image.resize((width, height), Image.BILINEAR)
    if image.mode != "RGB":
        image = image.convert("RGB")
    buf = io.BytesIO()
    image.save(buf, format="JPEG", quality=quality)
    return ScreenFrame(jpeg_bytes=buf.getvalue(), width=width, height=height)


class MssDisplaySource:
    """Grabs one monitor through mss; a failed grab counts as the display ending."""

    def __init__(self, monitor: int = 1) -> None:
        self.monitor = monitor
        self._sct: Any = None
        self._region: Optional[dict] = None
        self._listeners: list[Callable[[], None]] = []
        self._lock = threading.Lock()

    def open(self) -> None:
        with self._lock:
            if self._sct is not None:
                return
            if mss is None:
                raise RuntimeError("mss is not installed")
            sct = mss.mss()
            monitors = sct.monitors
            if self.monitor >= len(monitors):
                sct.close()
                raise RuntimeError(f"display {self.monitor} not found")
            self._sct = sct
            self._region = monitors[self.monitor]

    def add_ended_listener(self, callback: Callable[[], None]) -> None:
        self._listeners.append(callback)

    def grab(self) -> Optional[Image.Image]:
        sct = self._sct
        if sct is None:
            return None
        try:
            shot = sct.grab(self._region)
        except Exception:
            logger.warning("display grab failed, treating display as ended", exc_info=True)
            self._notify_ended()
            return None
        return Image.frombytes("RGB", shot.size, shot.bgra, "raw", "BGRX")

    def close(self) -> None:
        with self._lock:
            sct = self._sct
            self._sct = None
            self._region = None
            self._listeners = []
        if sct is not None:
            sct.close()

    def _notify_ended(self) -> None:
        for callback in list(self._listeners):
            callback()


class ScreenCapture:
    def __init__(
        self,
        interval_s: float = FRAME_INTERVAL_S,
        max_width: int = MAX_FRAME_WIDTH,
        quality: int = JPEG_QUALITY,
    ) -> None:
        self.interval_s = interval_s
        self.max_width = max_width
        self.quality = quality
        self._source: Optional[DisplaySource] = None
        self._on_frame: Optional[Callable[[ScreenFrame], None]] = None
        self._is_active: Callable[[], bool] = lambda: False
        self._on_stopped: Optional[Callable[[], None]] = None
        self._task: Optional[asyncio.Task] = None
        self._paused = False
        self.last_frame: Optional[ScreenFrame] = None

    @property
    def sharing(self) -> bool:
        return self._source is not None

    @property
    def paused(self) -> bool:
        return self._paused

    def start(
        self,
        source: DisplaySource,
        on_frame: Callable[[ScreenFrame], None],
        is_active: Callable[[], bool],
        on_stopped: Optional[Callable[[], None]] = None,
    ) -> None:
        if self._source is not None:
            self.stop()
        self._source = source
        self._on_frame = on_frame
        self._is_active = is_active
        self._on_stopped = on_stopped
        self._paused = False
        source.add_ended_listener(self._on_source_ended)
        self._start_timer()
        logger.info("screen sharing started (%.1f fps)", 1.0 / self.interval_s)

    def pause(self) -> None:
        if self._source is None or self._paused:
            return
        self._paused = True
        self._cancel_timer()

    def resume(self) -> None:
        if self._source is None or not self._paused:
            return
        self._paused = False
        self._start_timer()

    def stop(self) -> None:
        source = self._source
        if source is None:
            return
        self._source = None
        self._paused = False
        self._on_frame = None
        self.last_frame = None
        self._cancel_timer()
        try:
            source.close()
        finally:
            on_stopped = self._on_stopped
            self._on_stopped = None
            if on_stopped is not None:
                on_stopped()
        logger.info("screen sharing stopped")

    def capture_once(self) -> Optional[ScreenFrame]:
        """Grab, downscale and hand over one frame; a stale tick does nothing."""
        source = self._source
        on_frame = self._on_frame
        if source is None or on_frame is None or not self._is_active():
            return None
        image = source.grab()
        if image is None or image.width == 0 or image.height == 0:
            return None
        frame = encode_jpeg(image, self.max_width, self.quality)
        self.last_frame = frame
        on_frame(frame)
        return frame

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                self.capture_once()
            except Exception:
                logger.warning("screen capture tick failed, retrying next tick", exc_info=True)

    def _start_timer(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run())

    def _cancel_timer(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()

    def _on_source_ended(self) -> None:
        self.stop()
