"""Gapless playback scheduling over a sounddevice output clock.

``PlaybackPipeline`` decides *when* each received buffer starts. Every buffer
begins at ``max(next_playback_time, output.current_time)``, so consecutive
buffers butt up against each other and never start in the past, whatever the
network jitter. Scheduled sources stay in the in-flight set until they end or
are stopped by ``interrupt()``.

``SoundDeviceOutput`` is the clock and mixer: a PortAudio output stream whose
callback renders every scheduled source at its start frame.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

import numpy as np

from interfaces import AudioOutput, Dispatcher, ScheduledSource
from models import OUTPUT_SAMPLE_RATE, PlaybackBuffer

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)

FFT_SIZE = 256
MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0


class PlaybackPipeline:
    def __init__(self, output: AudioOutput) -> None:
        self._output = output
        self._next_time = 0.0
        self._in_flight: set[ScheduledSource] = set()

    @property
    def next_playback_time(self) -> float:
        return self._next_time

    @property
    def in_flight(self) -> frozenset:
        return frozenset(self._in_flight)

    def enqueue(self, buffer: PlaybackBuffer) -> float:
        """Schedule ``buffer`` right after the previous one and return its start time."""
        start_time = max(self._next_time, self._output.current_time)
        source = self._output.schedule(buffer, start_time, self._on_source_ended)
        self._in_flight.add(source)
        self._next_time = start_time + buffer.duration
        return start_time

    def interrupt(self) -> int:
        sources = list(self._in_flight)
        self._in_flight.clear()
        for source in sources:
            source.stop()
        self._next_time = 0.0
        if sources:
            logger.info("playback interrupted, stopped %d buffer(s)", len(sources))
        return len(sources)

    def _on_source_ended(self, source: ScheduledSource) -> None:
        self._in_flight.discard(source)


class _Source:
    __slots__ = ("start_frame", "samples", "on_ended", "stopped")

    def __init__(
        self,
        start_frame: int,
        samples: np.ndarray,
        on_ended: Callable[[ScheduledSource], None],
    ) -> None:
        self.start_frame = start_frame
        self.samples = samples
        self.on_ended = on_ended
        self.stopped = False

    @property
    def end_frame(self) -> int:
        return self.start_frame + len(self.samples)

    def stop(self) -> None:
        self.stopped = True


def _call_now(callback: Callable[[], None]) -> None:
    callback()


class SoundDeviceOutput:
    """24 kHz mono output stream acting as the playback clock."""

    def __init__(
        self,
        sample_rate: int = OUTPUT_SAMPLE_RATE,
        gain: float = 1.0,
        device: Optional[Any] = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.gain = gain
        self.device = device
        self._stream: Any = None
        self._lock = threading.Lock()
        self._sources: list[_Source] = []
        self._frames_rendered = 0
        self._last_block = np.zeros(FFT_SIZE, dtype=np.float32)
        self._dispatch: Dispatcher = _call_now

    @property
    def current_time(self) -> float:
        return self._frames_rendered / float(self.sample_rate)

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def open(self, dispatch: Optional[Dispatcher] = None) -> None:
        if self._stream is not None:
            return
        if sd is None:
            raise RuntimeError("sounddevice is not installed")
        self._dispatch = dispatch or _call_now
        with self._lock:
            self._sources = []
            self._frames_rendered = 0
        stream = sd.OutputStream(
            samplerate=self.sample_rate,
            channels=1,
            dtype="float32",
            device=self.device,
            callback=self._on_output,
        )
        stream.start()
        if not stream.active:
            stream.close()
            raise RuntimeError("output stream did not start")
        self._stream = stream
        logger.info("audio output opened at %d Hz", self.sample_rate)

    def schedule(
        self,
        buffer: PlaybackBuffer,
        start_time: float,
        on_ended: Callable[[ScheduledSource], None],
    ) -> ScheduledSource:
        start_frame = int(round(start_time * self.sample_rate))
        source = _Source(start_frame, np.ascontiguousarray(buffer.mono(), dtype=np.float32), on_ended)
        with self._lock:
            self._sources.append(source)
        return source

    def frequency_data(self) -> np.ndarray:
        """Byte-scaled magnitude spectrum of the most recent output block."""
        with self._lock:
            block = self._last_block.copy()
        if len(block) < FFT_SIZE:
            block = np.pad(block, (FFT_SIZE - len(block), 0))
        window = np.blackman(FFT_SIZE).astype(np.float32)
        spectrum = np.abs(np.fft.rfft(block[-FFT_SIZE:] * window))[: FFT_SIZE // 2] / FFT_SIZE
        with np.errstate(divide="ignore"):
            decibels = 20.0 * np.log10(spectrum)
        scaled = (decibels - MIN_DECIBELS) * (255.0 / (MAX_DECIBELS - MIN_DECIBELS))
        return np.clip(np.nan_to_num(scaled, neginf=0.0), 0, 255).astype(np.uint8)

    def close(self) -> None:
        stream = self._stream
        self._stream = None
        with self._lock:
            for source in self._sources:
                source.stopped = True
            self._sources = []
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
        logger.info("audio output closed")

    def _on_output(self, outdata: Any, frames: int, time_info: Any, status: Any) -> None:
        if status:
            logger.debug("output status: %s", status)
        mix = np.zeros(frames, dtype=np.float32)
        finished: list[_Source] = []
        played_out: list[_Source] = []
        with self._lock:
            block_start = self._frames_rendered
            block_end = block_start + frames
            for source in self._sources:
                if source.stopped:
                    # stopped by interrupt() or close(); no end notification
                    finished.append(source)
                    continue
                if source.start_frame >= block_end:
                    continue
                src_from = max(0, block_start - source.start_frame)
                dst_from = max(0, source.start_frame - block_start)
                count = min(frames - dst_from, len(source.samples) - src_from)
                if count > 0:
                    mix[dst_from:dst_from + count] += source.samples[src_from:src_from + count]
                if source.end_frame <= block_end:
                    finished.append(source)
                    played_out.append(source)
            for source in finished:
                self._sources.remove(source)
            self._frames_rendered = block_end
            self._last_block = mix
        outdata[:, 0] = np.clip(mix * self.gain, -1.0, 1.0)
        for source in played_out:
            self._dispatch(lambda s=source: s.on_ended(s))
