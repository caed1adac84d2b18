"""PCM16 frame codec for the live session wire format.

Outbound microphone audio is float32 in [-1, 1]. It is scaled by 32768,
truncated toward zero and packed as little-endian int16. Inbound model audio
arrives as raw or base64 PCM16, which is unpacked and normalized back to
float32 for playback.
"""

from __future__ import annotations

import base64
import binascii
from typing import Sequence, Union

import numpy as np

from models import AUDIO_MIME_TYPE, OUTPUT_SAMPLE_RATE, AudioFrame, PlaybackBuffer

PCM16_SCALE = 32768.0


class FrameDecodeError(ValueError):
    """Inbound PCM payload could not be turned into samples."""


def encode_frame(samples: Union[Sequence[float], np.ndarray]) -> AudioFrame:
    scaled = np.asarray(samples, dtype=np.float32).reshape(-1) * PCM16_SCALE
    # clip before the cast so out-of-range input saturates instead of wrapping
    clipped = np.clip(scaled, -32768.0, 32767.0)
    pcm = np.trunc(clipped).astype("<i2")
    return AudioFrame(pcm16_bytes=pcm.tobytes(), mime_type=AUDIO_MIME_TYPE)


def decode_frame(data: Union[str, bytes, bytearray, memoryview]) -> np.ndarray:
    """Unpack PCM16. ``str`` input is base64 text, bytes are raw PCM."""
    if isinstance(data, str):
        try:
            raw = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise FrameDecodeError(f"invalid base64 payload: {exc}") from exc
    else:
        raw = bytes(data)
    if len(raw) % 2 != 0:
        raise FrameDecodeError(f"odd PCM16 byte count: {len(raw)}")
    return np.frombuffer(raw, dtype="<i2").astype(np.int16)


def pcm_to_float_buffer(
    ints: Union[Sequence[int], np.ndarray],
    channel_count: int = 1,
    sample_rate: int = OUTPUT_SAMPLE_RATE,
) -> PlaybackBuffer:
    if channel_count < 1:
        raise FrameDecodeError(f"invalid channel count: {channel_count}")
    pcm = np.asarray(ints, dtype=np.int16).reshape(-1)
    if pcm.size % channel_count != 0:
        raise FrameDecodeError(
            f"{pcm.size} samples do not split into {channel_count} channels"
        )
    frames = pcm.reshape(-1, channel_count).T
    samples = (frames.astype(np.float32) / PCM16_SCALE).copy()
    return PlaybackBuffer(samples=samples, sample_rate=sample_rate, channel_count=channel_count)
