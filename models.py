"""Core data models for the app."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import numpy as np

INPUT_SAMPLE_RATE = 16000
OUTPUT_SAMPLE_RATE = 24000
CAPTURE_BLOCK_SIZE = 4096
AUDIO_MIME_TYPE = "audio/pcm;rate=16000"
IMAGE_MIME_TYPE = "image/jpeg"


class SessionStatus(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class AudioFrame:
    """One captured block as little-endian PCM16."""

    pcm16_bytes: bytes
    mime_type: str = AUDIO_MIME_TYPE

    @property
    def data(self) -> str:
        return base64.b64encode(self.pcm16_bytes).decode("ascii")

    def to_message(self) -> dict[str, Any]:
        return {"media": {"mimeType": self.mime_type, "data": self.data}}


@dataclass(frozen=True)
class ScreenFrame:
    jpeg_bytes: bytes
    width: int
    height: int
    mime_type: str = IMAGE_MIME_TYPE

    @property
    def data(self) -> str:
        return base64.b64encode(self.jpeg_bytes).decode("ascii")

    def to_message(self) -> dict[str, Any]:
        return {"media": {"mimeType": self.mime_type, "data": self.data}}


@dataclass
class PlaybackBuffer:
    """Decoded audio ready for scheduling, shaped (channel_count, frame_count)."""

    samples: np.ndarray
    sample_rate: int = OUTPUT_SAMPLE_RATE
    channel_count: int = 1

    @property
    def frame_count(self) -> int:
        return int(self.samples.shape[-1])

    @property
    def duration(self) -> float:
        return self.frame_count / float(self.sample_rate)

    def mono(self) -> np.ndarray:
        if self.channel_count == 1:
            return self.samples[0]
        return self.samples.mean(axis=0).astype(np.float32)


@dataclass
class CaptureState:
    microphone: bool = False
    screen: bool = False
    screen_paused: bool = False
    playback: bool = False

    def reset(self) -> None:
        self.microphone = False
        self.screen = False
        self.screen_paused = False
        self.playback = False


@dataclass(frozen=True)
class ServerMessage:
    audio: Optional[bytes] = None
    interrupted: bool = False
    turn_complete: bool = False
    malformed: bool = False


@dataclass
class LiveSession:
    """Everything owned by one live connection."""

    session_id: int
    playback: Any
    status: SessionStatus = SessionStatus.CONNECTING
    active: bool = True
    capture: CaptureState = field(default_factory=CaptureState)
    frames_sent: int = 0
    screen_frames_sent: int = 0
    dropped_payloads: int = 0
    # newest screen frame not yet sent; a tick overwrites whatever is waiting
    pending_screen_frame: Optional[ScreenFrame] = None


# ----------------------------------------------------------------------
# Challenge / grading records
# ----------------------------------------------------------------------


class Difficulty(str, Enum):
    LEARNING = "Learning"
    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"
    EXPERT = "Expert"


class ChatMode(str, Enum):
    DEFAULT = "default"
    FAST = "fast"
    THINKING = "thinking"
    SEARCH = "search"


SUPPORTED_LANGUAGES = ("TypeScript", "JavaScript", "Python", "Java", "C", "C++", "Go", "Rust", "R")


@dataclass
class Challenge:
    id: str
    title: str
    description: str
    difficulty: str
    category: str
    language: str
    starter_code: str
    requirements: list[str] = field(default_factory=list)


@dataclass
class SubmissionResult:
    success: bool
    status: str
    mistakes: list[str] = field(default_factory=list)
    feedback: str = ""


@dataclass
class ChatReply:
    text: str
    grounding_metadata: Any = None
