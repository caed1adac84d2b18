"""Tests for MicrophoneCapture."""

from __future__ import annotations

import io
import wave
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from capture import MicrophoneCapture, record_clip
from models import AudioFrame


def _block(value: float = 0.25, frames: int = 4096) -> np.ndarray:
    return np.full((frames, 1), value, dtype=np.float32)


def _started(mock_sd: MagicMock, frames: list[AudioFrame], active: list[bool]) -> MicrophoneCapture:
    stream = MagicMock()
    stream.active = True
    mock_sd.InputStream.return_value = stream
    mic = MicrophoneCapture()
    mic.open()
    mic.start(on_frame=frames.append, is_active=lambda: active[0])
    return mic


# ---------------------------------------------------------------
# Open / start / stop
# ---------------------------------------------------------------

@patch("capture.sd")
def test_open_creates_mono_float_stream(mock_sd: MagicMock) -> None:
    mic = MicrophoneCapture()
    mic.open()
    mic.open()  # second call should be no-op

    mock_sd.InputStream.assert_called_once()
    kwargs = mock_sd.InputStream.call_args.kwargs
    assert kwargs["samplerate"] == 16000
    assert kwargs["channels"] == 1
    assert kwargs["dtype"] == "float32"
    assert kwargs["blocksize"] == 4096
    assert mic.is_open is True


@patch("capture.sd")
def test_start_requires_open(mock_sd: MagicMock) -> None:
    mic = MicrophoneCapture()

    with pytest.raises(RuntimeError, match="not open"):
        mic.start(on_frame=lambda f: None, is_active=lambda: True)


@patch("capture.sd")
def test_start_raises_when_stream_does_not_run(mock_sd: MagicMock) -> None:
    stream = MagicMock()
    stream.active = False
    mock_sd.InputStream.return_value = stream
    mic = MicrophoneCapture()
    mic.open()

    with pytest.raises(RuntimeError, match="did not start"):
        mic.start(on_frame=lambda f: None, is_active=lambda: True)


@patch("capture.sd")
def test_stop_is_idempotent(mock_sd: MagicMock) -> None:
    frames: list[AudioFrame] = []
    mic = _started(mock_sd, frames, [True])
    stream = mock_sd.InputStream.return_value

    mic.stop()
    mic.stop()

    stream.stop.assert_called_once()
    stream.close.assert_called_once()
    assert mic.is_open is False


def test_open_raises_without_sounddevice(monkeypatch) -> None:  # noqa: ANN001
    import capture as capture_mod
    monkeypatch.setattr(capture_mod, "sd", None)

    with pytest.raises(RuntimeError, match="sounddevice is not installed"):
        MicrophoneCapture().open()


# ---------------------------------------------------------------
# Audio callback
# ---------------------------------------------------------------

@patch("capture.sd")
def test_callback_encodes_each_block(mock_sd: MagicMock) -> None:
    frames: list[AudioFrame] = []
    mic = _started(mock_sd, frames, [True])

    mic._on_audio(_block(0.5), frames=4096, time_info=None, status=None)

    assert len(frames) == 1
    assert len(frames[0].pcm16_bytes) == 4096 * 2
    assert np.frombuffer(frames[0].pcm16_bytes, dtype="<i2")[0] == 16384
    mic.stop()


@patch("capture.sd")
def test_muted_blocks_are_dropped(mock_sd: MagicMock) -> None:
    frames: list[AudioFrame] = []
    mic = _started(mock_sd, frames, [True])

    mic.mute()
    mic._on_audio(_block(), frames=4096, time_info=None, status=None)
    mic.unmute()
    mic._on_audio(_block(), frames=4096, time_info=None, status=None)

    assert len(frames) == 1
    assert mic.blocks_seen == 2
    assert mic.blocks_dropped == 1
    mic.stop()


@patch("capture.sd")
def test_inactive_session_drops_blocks(mock_sd: MagicMock) -> None:
    frames: list[AudioFrame] = []
    active = [True]
    mic = _started(mock_sd, frames, active)

    active[0] = False
    mic._on_audio(_block(), frames=4096, time_info=None, status=None)

    assert frames == []
    assert mic.blocks_dropped == 1
    mic.stop()


@patch("capture.sd")
def test_callback_after_stop_is_noop(mock_sd: MagicMock) -> None:
    frames: list[AudioFrame] = []
    mic = _started(mock_sd, frames, [True])
    mic.stop()

    mic._on_audio(_block(), frames=4096, time_info=None, status=None)

    assert frames == []


# ---------------------------------------------------------------
# One-shot clip for transcription
# ---------------------------------------------------------------

@patch("capture.sd")
def test_record_clip_returns_mono_wav(mock_sd: MagicMock) -> None:
    mock_sd.rec.side_effect = lambda frames, **kwargs: np.full((frames, 1), 7, dtype=np.int16)

    data = record_clip(0.5)

    assert mock_sd.rec.call_args.kwargs["samplerate"] == 16000
    mock_sd.wait.assert_called_once()
    with wave.open(io.BytesIO(data), "rb") as wav:
        assert wav.getnchannels() == 1
        assert wav.getsampwidth() == 2
        assert wav.getframerate() == 16000
        assert wav.getnframes() == 8000
        assert np.frombuffer(wav.readframes(4), dtype="<i2").tolist() == [7, 7, 7, 7]


@patch("capture.sd")
def test_record_clip_rejects_empty_length(mock_sd: MagicMock) -> None:
    with pytest.raises(ValueError):
        record_clip(0)
    mock_sd.rec.assert_not_called()
