"""Protocol interfaces used by LiveSessionController."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, Protocol

from models import AudioFrame, PlaybackBuffer, ScreenFrame, ServerMessage

Dispatcher = Callable[[Callable[[], None]], None]


class AudioInput(Protocol):
    @property
    def muted(self) -> bool: ...

    def open(self) -> None: ...

    def start(
        self,
        on_frame: Callable[[AudioFrame], None],
        is_active: Callable[[], bool],
    ) -> None: ...

    def mute(self) -> None: ...

    def unmute(self) -> None: ...

    def stop(self) -> None: ...


class ScheduledSource(Protocol):
    def stop(self) -> None: ...


class AudioOutput(Protocol):
    @property
    def current_time(self) -> float: ...

    def open(self, dispatch: Optional[Dispatcher] = None) -> None: ...

    def schedule(
        self,
        buffer: PlaybackBuffer,
        start_time: float,
        on_ended: Callable[[ScheduledSource], None],
    ) -> ScheduledSource: ...

    def frequency_data(self) -> Any: ...

    def close(self) -> None: ...


class DisplaySource(Protocol):
    def open(self) -> None: ...

    def grab(self) -> Any: ...

    def add_ended_listener(self, callback: Callable[[], None]) -> None: ...

    def close(self) -> None: ...


class LiveCallbacks(Protocol):
    def on_open(self) -> None: ...

    def on_message(self, message: ServerMessage) -> None: ...

    def on_close(self, reason: str) -> None: ...

    def on_error(self, error: object) -> None: ...


class LiveTransport(Protocol):
    def connect(self, api_key: str, callbacks: LiveCallbacks) -> Awaitable[None]: ...

    def send_audio(self, frame: AudioFrame) -> Awaitable[None]: ...

    def send_image(self, frame: ScreenFrame) -> Awaitable[None]: ...

    def close(self) -> Awaitable[None]: ...

