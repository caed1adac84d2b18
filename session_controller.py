"""State-machine based live session orchestration.

One ``LiveSession`` exists at a time. Everything that can happen to it
(microphone blocks, server messages, screen ticks, playback completions and
transport lifecycle callbacks) is posted as an event onto a per-session
``asyncio.Queue`` and handled in order by a single pump task. Events carry the
session they belong to, so anything arriving after teardown is dropped.
Screen frames do not queue: the newest one waits in a single slot on the
session and older unsent frames are overwritten.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from codec import FrameDecodeError, decode_frame, pcm_to_float_buffer
from errors import (
    ErrorKind,
    SessionError,
    classify_device_error,
    classify_session_error,
    classify_transport_error,
    make_error,
)
from interfaces import AudioInput, AudioOutput, DisplaySource, LiveTransport
from models import (
    OUTPUT_SAMPLE_RATE,
    AudioFrame,
    CaptureState,
    LiveSession,
    ScreenFrame,
    ServerMessage,
    SessionStatus,
)
from playback import PlaybackPipeline
from screen import ScreenCapture
from transport import is_network_reachable

logger = logging.getLogger(__name__)

StatusCallback = Callable[[SessionStatus, SessionStatus], None]
ErrorCallback = Callable[[SessionError], None]
CaptureCallback = Callable[[CaptureState], None]


@dataclass(frozen=True)
class _Opened:
    pass


@dataclass(frozen=True)
class _Closed:
    reason: str


@dataclass(frozen=True)
class _Failed:
    error: object


@dataclass(frozen=True)
class _Deferred:
    callback: Callable[[], None]


@dataclass(frozen=True)
class _ScreenReady:
    pass


class _SessionCallbacks:
    """Transport callbacks bound to one session."""

    def __init__(self, controller: LiveSessionController, session: LiveSession) -> None:
        self._controller = controller
        self._session = session

    def on_open(self) -> None:
        self._controller._post(self._session, _Opened())

    def on_message(self, message: ServerMessage) -> None:
        self._controller._post(self._session, message)

    def on_close(self, reason: str) -> None:
        self._controller._post(self._session, _Closed(reason))

    def on_error(self, error: object) -> None:
        self._controller._post(self._session, _Failed(error))


class LiveSessionController:
    def __init__(
        self,
        microphone: AudioInput,
        output: AudioOutput,
        transport: LiveTransport,
        display: DisplaySource,
        api_key_provider: Callable[[], str],
        network_check: Callable[[], bool] = is_network_reachable,
        screen_capture: Optional[ScreenCapture] = None,
        on_status_change: Optional[StatusCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_capture_change: Optional[CaptureCallback] = None,
    ) -> None:
        self._microphone = microphone
        self._output = output
        self._transport = transport
        self._display = display
        self._api_key_provider = api_key_provider
        self._network_check = network_check
        self._screen = screen_capture or ScreenCapture()
        self._on_status_change = on_status_change
        self._on_error = on_error
        self._on_capture_change = on_capture_change

        self._status = SessionStatus.IDLE
        self._session: Optional[LiveSession] = None
        self._session_seq = 0
        self._events: Optional[asyncio.Queue] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._muted = False
        self.last_error: Optional[SessionError] = None

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def session(self) -> Optional[LiveSession]:
        return self._session

    @property
    def muted(self) -> bool:
        return self._muted

    @property
    def capture_state(self) -> CaptureState:
        session = self._session
        if session is None:
            return CaptureState()
        return CaptureState(**vars(session.capture))

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> bool:
        if self._session is not None:
            return False
        if not self._network_check():
            self._reject(make_error(ErrorKind.NO_NETWORK))
            return False
        api_key = (self._api_key_provider() or "").strip()
        if not api_key:
            self._reject(make_error(ErrorKind.NO_CREDENTIAL))
            return False

        self._loop = asyncio.get_running_loop()
        self._session_seq += 1
        session = LiveSession(
            session_id=self._session_seq,
            playback=PlaybackPipeline(self._output),
        )
        self._session = session
        self._events = asyncio.Queue()
        self.last_error = None
        self._transition(SessionStatus.CONNECTING)

        try:
            self._output.open(dispatch=lambda callback: self._post(session, _Deferred(callback)))
        except Exception as exc:
            await self._fail(session, classify_device_error(exc, "Speaker"))
            return False
        session.capture.playback = True

        try:
            self._microphone.open()
        except Exception as exc:
            await self._fail(session, classify_device_error(exc, "Microphone"))
            return False

        self._pump_task = self._loop.create_task(self._pump(session, self._events))

        try:
            await self._transport.connect(api_key, _SessionCallbacks(self, session))
        except Exception as exc:
            if session.active:
                logger.error("failed to establish live session: %s", exc)
                await self._fail(session, classify_transport_error(exc))
            return False

        if not session.active:
            # disconnected while the handshake was in flight
            await self._close_transport()
            return False
        return True

    async def disconnect(self) -> None:
        if self._session is not None:
            logger.info("user disconnect")
        await self.teardown(SessionStatus.IDLE)

    async def teardown(self, final_status: SessionStatus = SessionStatus.IDLE) -> None:
        """Release everything the session owns. Safe to call repeatedly."""
        session = self._session
        if session is None:
            return
        session.active = False
        self._session = None
        events = self._events
        self._events = None
        pump = self._pump_task
        self._pump_task = None

        self._safe_call(self._screen.stop, "screen capture")
        self._safe_call(self._microphone.stop, "microphone")
        session.pending_screen_frame = None
        session.playback.interrupt()
        self._safe_call(self._output.close, "audio output")
        session.capture.reset()
        await self._close_transport()

        if pump is not None and pump is not asyncio.current_task():
            pump.cancel()
        if events is not None:
            self._discard_pending(events)

        session.status = final_status
        logger.info(
            "session %d torn down -> %s (audio frames=%d, screen frames=%d, dropped payloads=%d)",
            session.session_id,
            final_status.value,
            session.frames_sent,
            session.screen_frames_sent,
            session.dropped_payloads,
        )
        self._transition(final_status)
        self._emit_capture_change(session.capture)

    async def flush(self) -> None:
        """Wait until every event posted so far has been handled."""
        await asyncio.sleep(0)
        events = self._events
        if events is not None:
            await events.join()

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    def mute(self) -> None:
        self._muted = True
        self._microphone.mute()
        self._emit_capture_change(self.capture_state)

    def unmute(self) -> None:
        self._muted = False
        self._microphone.unmute()
        self._emit_capture_change(self.capture_state)

    def toggle_mute(self) -> bool:
        if self._muted:
            self.unmute()
        else:
            self.mute()
        return self._muted

    async def start_screen_share(self) -> bool:
        session = self._session
        if session is None or session.status != SessionStatus.CONNECTED:
            return False
        if self._screen.sharing:
            return True
        try:
            self._display.open()
        except Exception as exc:
            error = classify_device_error(exc, "Screen")
            logger.warning("screen share failed: %s", error.message)
            self.last_error = error
            self._emit_error(error)
            return False
        self._screen.start(
            self._display,
            on_frame=lambda frame: self._offer_screen_frame(session, frame),
            is_active=lambda: session.active,
            on_stopped=lambda: self._on_screen_stopped(session),
        )
        session.capture.screen = True
        session.capture.screen_paused = False
        self._emit_capture_change(session.capture)
        return True

    def pause_screen_share(self) -> None:
        session = self._session
        if session is None or not self._screen.sharing:
            return
        self._screen.pause()
        session.capture.screen_paused = True
        self._emit_capture_change(session.capture)

    def resume_screen_share(self) -> None:
        session = self._session
        if session is None or not self._screen.sharing:
            return
        self._screen.resume()
        session.capture.screen_paused = False
        self._emit_capture_change(session.capture)

    def toggle_screen_pause(self) -> None:
        if self._screen.paused:
            self.resume_screen_share()
        else:
            self.pause_screen_share()

    def stop_screen_share(self) -> None:
        self._screen.stop()

    def frequency_data(self) -> Any:
        session = self._session
        if session is None or session.status != SessionStatus.CONNECTED:
            return None
        return self._output.frequency_data()

    # ------------------------------------------------------------------
    # Event pump
    # ------------------------------------------------------------------

    def _post(self, session: LiveSession, event: object) -> None:
        """Thread-safe entry point for every event source."""
        loop = self._loop
        if loop is None or not session.active or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._enqueue, session, event)
        except RuntimeError:
            # loop closed after the check above, e.g. during app shutdown
            logger.debug("dropping %s posted to a closed loop", type(event).__name__)

    def _offer_screen_frame(self, session: LiveSession, frame: ScreenFrame) -> None:
        """Keep only the newest frame; wake the pump once per batch of ticks."""
        waiting = session.pending_screen_frame is not None
        session.pending_screen_frame = frame
        if not waiting:
            self._post(session, _ScreenReady())

    async def _send_latest_screen_frame(self, session: LiveSession) -> None:
        frame = session.pending_screen_frame
        session.pending_screen_frame = None
        if frame is None:
            return
        await self._transport.send_image(frame)
        session.screen_frames_sent += 1

    def _enqueue(self, session: LiveSession, event: object) -> None:
        events = self._events
        if events is None or not session.active or session is not self._session:
            return
        events.put_nowait(event)

    async def _pump(self, session: LiveSession, events: asyncio.Queue) -> None:
        while session.active:
            event = await events.get()
            try:
                if session.active:
                    await self._dispatch(session, event)
            except Exception as exc:
                logger.exception("live session event failed")
                await self._fail(session, classify_session_error(exc))
            finally:
                events.task_done()

    async def _dispatch(self, session: LiveSession, event: object) -> None:
        if isinstance(event, AudioFrame):
            await self._transport.send_audio(event)
            session.frames_sent += 1
        elif isinstance(event, _ScreenReady):
            await self._send_latest_screen_frame(session)
        elif isinstance(event, ServerMessage):
            self._handle_server_message(session, event)
        elif isinstance(event, _Deferred):
            event.callback()
        elif isinstance(event, _Opened):
            await self._handle_open(session)
        elif isinstance(event, _Closed):
            logger.info("live session closed by remote: %s", event.reason)
            await self.teardown(SessionStatus.IDLE)
        elif isinstance(event, _Failed):
            await self._fail(session, classify_session_error(event.error))

    async def _handle_open(self, session: LiveSession) -> None:
        if self._muted:
            self._microphone.mute()
        else:
            self._microphone.unmute()
        try:
            self._microphone.start(
                on_frame=lambda frame: self._post(session, frame),
                is_active=lambda: session.active,
            )
        except Exception as exc:
            await self._fail(session, classify_device_error(exc, "Microphone"))
            return
        session.capture.microphone = True
        session.status = SessionStatus.CONNECTED
        logger.info("live session %d connected", session.session_id)
        self._transition(SessionStatus.CONNECTED)
        self._emit_capture_change(session.capture)

    def _handle_server_message(self, session: LiveSession, message: ServerMessage) -> None:
        if message.malformed:
            self._drop_payload(session, "payload is not valid base64")
        elif message.audio:
            try:
                buffer = pcm_to_float_buffer(decode_frame(message.audio), 1, OUTPUT_SAMPLE_RATE)
            except FrameDecodeError as exc:
                self._drop_payload(session, str(exc))
            else:
                session.playback.enqueue(buffer)
        if message.interrupted:
            session.playback.interrupt()

    def _drop_payload(self, session: LiveSession, reason: str) -> None:
        session.dropped_payloads += 1
        logger.warning(
            "dropping malformed audio payload (%s); %d dropped so far",
            reason,
            session.dropped_payloads,
        )

    # ------------------------------------------------------------------
    # Failure paths
    # ------------------------------------------------------------------

    def _reject(self, error: SessionError) -> None:
        logger.warning("connect rejected: %s", error.message)
        self.last_error = error
        self._transition(SessionStatus.ERROR)
        self._emit_error(error)

    async def _fail(self, session: LiveSession, error: SessionError) -> None:
        if session is not self._session:
            return
        logger.error("live session failed [%s]: %s", error.kind.value, error.message)
        self.last_error = error
        await self.teardown(SessionStatus.ERROR)
        self._emit_error(error)

    async def _close_transport(self) -> None:
        try:
            await self._transport.close()
        except Exception:
            # the remote side may already be gone
            logger.debug("ignoring error while closing live session", exc_info=True)

    def _on_screen_stopped(self, session: LiveSession) -> None:
        session.pending_screen_frame = None
        session.capture.screen = False
        session.capture.screen_paused = False
        if session.active:
            self._emit_capture_change(session.capture)

    def _discard_pending(self, events: asyncio.Queue) -> None:
        while True:
            try:
                events.get_nowait()
            except asyncio.QueueEmpty:
                return
            events.task_done()

    def _safe_call(self, func: Callable[[], None], what: str) -> None:
        try:
            func()
        except Exception:
            logger.warning("failed to release %s", what, exc_info=True)

    def _emit_error(self, error: SessionError) -> None:
        if self._on_error:
            self._on_error(error)

    def _emit_capture_change(self, state: CaptureState) -> None:
        if self._on_capture_change:
            self._on_capture_change(CaptureState(**vars(state)))

    def _transition(self, to_status: SessionStatus) -> None:
        from_status = self._status
        if from_status == to_status:
            return
        self._status = to_status
        if self._on_status_change:
            self._on_status_change(from_status, to_status)
