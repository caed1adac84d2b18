"""Microphone capture adapter."""

from __future__ import annotations

import io
import logging
import threading
import wave
from typing import Any, Callable, Optional

import numpy as np

from codec import encode_frame
from models import CAPTURE_BLOCK_SIZE, INPUT_SAMPLE_RATE, AudioFrame

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)


class MicrophoneCapture:
    def __init__(
        self,
        sample_rate: int = INPUT_SAMPLE_RATE,
        block_size: int = CAPTURE_BLOCK_SIZE,
        device: Optional[Any] = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.block_size = block_size
        self.device = device
        self._stream: Any = None
        self._running = False
        self._muted = False
        self._lock = threading.Lock()
        self._on_frame: Optional[Callable[[AudioFrame], None]] = None
        self._is_active: Callable[[], bool] = lambda: False
        self.blocks_seen = 0
        self.blocks_dropped = 0

    @property
    def muted(self) -> bool:
        return self._muted

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def open(self) -> None:
        """Acquire the input device without starting the stream."""
        with self._lock:
            if self._stream is not None:
                return
            if sd is None:
                raise RuntimeError("sounddevice is not installed")
            self._stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self.block_size,
                device=self.device,
                callback=self._on_audio,
            )

    def start(
        self,
        on_frame: Callable[[AudioFrame], None],
        is_active: Callable[[], bool],
    ) -> None:
        with self._lock:
            if self._running:
                return
            if self._stream is None:
                raise RuntimeError("microphone is not open")
            self._on_frame = on_frame
            self._is_active = is_active
            self._stream.start()
            if not self._stream.active:
                raise RuntimeError("microphone stream did not start")
            self._running = True
        logger.info("microphone capture started at %d Hz, block=%d", self.sample_rate, self.block_size)

    def mute(self) -> None:
        self._muted = True

    def unmute(self) -> None:
        self._muted = False

    def stop(self) -> None:
        with self._lock:
            stream = self._stream
            self._running = False
            self._stream = None
            self._on_frame = None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
        logger.info(
            "microphone capture stopped (blocks=%d, dropped=%d)",
            self.blocks_seen,
            self.blocks_dropped,
        )

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if status:
            logger.debug("input status: %s", status)
        on_frame = self._on_frame
        if not self._running or on_frame is None:
            return
        self.blocks_seen += 1
        if self._muted or not self._is_active():
            self.blocks_dropped += 1
            return
        on_frame(encode_frame(indata[:, 0]))


def record_clip(
    seconds: float,
    sample_rate: int = INPUT_SAMPLE_RATE,
    device: Optional[Any] = None,
) -> bytes:
    """Block while recording ``seconds`` of mono audio; return it as WAV bytes."""
    if sd is None:
        raise RuntimeError("sounddevice is not installed")
    frames = int(seconds * sample_rate)
    if frames <= 0:
        raise ValueError(f"clip length must be positive, got {seconds}")
    recording = sd.rec(frames, samplerate=sample_rate, channels=1, dtype="int16", device=device)
    sd.wait()
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(np.asarray(recording, dtype="<i2").tobytes())
    logger.info("recorded %.1fs clip for transcription", seconds)
    return buf.getvalue()
