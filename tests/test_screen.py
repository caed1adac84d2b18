from __future__ import annotations

import asyncio
import io
from unittest.mock import MagicMock, patch

import pytest
from PIL import Image

from models import ScreenFrame
from screen import MssDisplaySource, ScreenCapture, encode_jpeg, scaled_size


class FakeDisplay:
    def __init__(self, size: tuple[int, int] = (1920, 1080)) -> None:
        self.size = size
        self.grabs = 0
        self.closed = False
        self.listeners: list = []

    def open(self) -> None:
        pass

    def grab(self) -> Image.Image:
        self.grabs += 1
        return Image.new("RGB", self.size, (30, 60, 90))

    def add_ended_listener(self, callback) -> None:  # noqa: ANN001
        self.listeners.append(callback)

    def close(self) -> None:
        self.closed = True

    def end(self) -> None:
        for callback in list(self.listeners):
            callback()


def test_scaled_size_caps_width_and_keeps_aspect() -> None:
    assert scaled_size(2560, 1440) == (1280, 720)
    assert scaled_size(1920, 1080) == (1280, 720)


def test_scaled_size_never_upscales() -> None:
    assert scaled_size(1280, 720) == (1280, 720)
    assert scaled_size(640, 480) == (640, 480)


def test_scaled_size_degenerate() -> None:
    assert scaled_size(0, 480) == (0, 0)


def test_encode_jpeg_downscales() -> None:
    frame = encode_jpeg(Image.new("RGBA", (2560, 1440)))

    assert (frame.width, frame.height) == (1280, 720)
    assert frame.mime_type == "image/jpeg"
    decoded = Image.open(io.BytesIO(frame.jpeg_bytes))
    assert decoded.format == "JPEG"
    assert decoded.size == (1280, 720)
    assert frame.to_message()["media"]["mimeType"] == "image/jpeg"


def test_capture_once_emits_frame() -> None:
    async def scenario() -> None:
        frames: list[ScreenFrame] = []
        capture = ScreenCapture(interval_s=60)
        capture.start(FakeDisplay(), on_frame=frames.append, is_active=lambda: True)

        frame = capture.capture_once()

        assert frame is not None
        assert frames == [frame]
        assert capture.last_frame is frame
        capture.stop()

    asyncio.run(scenario())


def test_capture_once_is_noop_when_session_inactive() -> None:
    async def scenario() -> None:
        frames: list[ScreenFrame] = []
        display = FakeDisplay()
        capture = ScreenCapture(interval_s=60)
        capture.start(display, on_frame=frames.append, is_active=lambda: False)

        assert capture.capture_once() is None
        assert display.grabs == 0
        assert frames == []
        capture.stop()

    asyncio.run(scenario())


def test_timer_ticks_until_paused() -> None:
    async def scenario() -> None:
        frames: list[ScreenFrame] = []
        capture = ScreenCapture(interval_s=0.01, max_width=64)
        capture.start(FakeDisplay((128, 64)), on_frame=frames.append, is_active=lambda: True)

        await asyncio.sleep(0.05)
        assert frames
        assert (frames[0].width, frames[0].height) == (64, 32)

        capture.pause()
        assert capture.paused is True
        await asyncio.sleep(0)
        count = len(frames)
        await asyncio.sleep(0.05)
        assert len(frames) == count

        capture.resume()
        await asyncio.sleep(0.05)
        assert len(frames) > count
        capture.stop()

    asyncio.run(scenario())


def test_stop_releases_display_and_notifies_once() -> None:
    async def scenario() -> None:
        stopped: list[bool] = []
        display = FakeDisplay()
        capture = ScreenCapture(interval_s=60)
        capture.start(display, on_frame=lambda f: None, is_active=lambda: True, on_stopped=lambda: stopped.append(True))
        capture.capture_once()

        capture.stop()
        capture.stop()

        assert display.closed is True
        assert stopped == [True]
        assert capture.sharing is False
        assert capture.last_frame is None

    asyncio.run(scenario())


def test_display_ended_stops_capture() -> None:
    async def scenario() -> None:
        stopped: list[bool] = []
        display = FakeDisplay()
        capture = ScreenCapture(interval_s=60)
        capture.start(display, on_frame=lambda f: None, is_active=lambda: True, on_stopped=lambda: stopped.append(True))

        display.end()

        assert capture.sharing is False
        assert display.closed is True
        assert stopped == [True]

    asyncio.run(scenario())


# ---------------------------------------------------------------
# MssDisplaySource
# ---------------------------------------------------------------

@patch("screen.mss")
def test_mss_source_grabs_rgb_image(mock_mss: MagicMock) -> None:
    sct = MagicMock()
    sct.monitors = [{"left": 0}, {"left": 0, "top": 0, "width": 2, "height": 1}]
    shot = MagicMock()
    shot.size = (2, 1)
    shot.bgra = bytes([10, 20, 30, 255, 40, 50, 60, 255])
    sct.grab.return_value = shot
    mock_mss.mss.return_value = sct

    source = MssDisplaySource()
    source.open()
    image = source.grab()

    assert image.size == (2, 1)
    assert image.getpixel((0, 0)) == (30, 20, 10)
    source.close()
    sct.close.assert_called_once()


@patch("screen.mss")
def test_mss_source_missing_monitor(mock_mss: MagicMock) -> None:
    sct = MagicMock()
    sct.monitors = [{"left": 0}]
    mock_mss.mss.return_value = sct

    with pytest.raises(RuntimeError, match="not found"):
        MssDisplaySource(monitor=1).open()
    sct.close.assert_called_once()


@patch("screen.mss")
def test_mss_grab_failure_reports_display_ended(mock_mss: MagicMock) -> None:
    sct = MagicMock()
    sct.monitors = [{}, {}]
    sct.grab.side_effect = OSError("display gone")
    mock_mss.mss.return_value = sct
    ended: list[bool] = []

    source = MssDisplaySource()
    source.open()
    source.add_ended_listener(lambda: ended.append(True))

    assert source.grab() is None
    assert ended == [True]


class FlakyDisplay(FakeDisplay):
    def grab(self) -> Image.Image:
        if self.grabs == 0:
            self.grabs += 1
            raise OSError("display busy")
        return super().grab()


def test_failed_tick_does_not_stop_the_timer() -> None:
    async def scenario() -> None:
        frames: list[ScreenFrame] = []
        display = FlakyDisplay((128, 64))
        capture = ScreenCapture(interval_s=0.01, max_width=64)
        capture.start(display, on_frame=frames.append, is_active=lambda: True)

        await asyncio.sleep(0.1)

        assert display.grabs > 1
        assert frames
        assert capture.sharing is True
        capture.stop()

    asyncio.run(scenario())
