"""Live audio session adapter on top of the google-genai SDK.

The SDK exposes the session as an async context manager plus an async
``receive()`` iterator. This adapter turns it into the callback shape the
controller consumes: ``on_open`` once the handshake finishes, ``on_message``
per server message, then exactly one of ``on_close`` or ``on_error``.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import socket
from typing import Any, Optional

from google import genai
from google.genai import types

from config import DEFAULT_LIVE_MODEL, DEFAULT_VOICE
from interfaces import LiveCallbacks
from models import AudioFrame, ScreenFrame, ServerMessage

logger = logging.getLogger(__name__)

API_HOST = "generativelanguage.googleapis.com"
SYSTEM_INSTRUCTION = (
    "You are an expert polyglot coding mentor. You can see the user's screen when they "
    "share it. Use this visual context to help them debug code, understand their problem, "
    "and guide them. Do NOT just give the answer or solution; help them derive it themselves."
)


def is_network_reachable(host: str = API_HOST, port: int = 443, timeout_s: float = 3.0) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout_s):
            return True
    except OSError:
        return False


def _get(obj: Any, *names: str) -> Any:
    """Read the first present attribute or key out of SDK objects or dicts."""
    if obj is None:
        return None
    for name in names:
        if isinstance(obj, dict):
            if name in obj:
                return obj[name]
        elif hasattr(obj, name):
            return getattr(obj, name)
    return None


def parse_server_message(response: Any) -> ServerMessage:
    """Accept an SDK ``LiveServerMessage`` or the camelCase wire dict."""
    content = _get(response, "server_content", "serverContent")
    if content is None:
        return ServerMessage()
    audio: Optional[bytes] = None
    malformed = False
    turn = _get(content, "model_turn", "modelTurn")
    parts = _get(turn, "parts") or []
    if parts:
        inline = _get(parts[0], "inline_data", "inlineData")
        data = _get(inline, "data")
        if isinstance(data, str):
            # wire dicts carry base64 text, the SDK hands over decoded bytes
            try:
                audio = base64.b64decode(data, validate=True)
            except ValueError:
                malformed = True
        elif data:
            audio = bytes(data)
    return ServerMessage(
        audio=audio,
        interrupted=bool(_get(content, "interrupted")),
        turn_complete=bool(_get(content, "turn_complete", "turnComplete")),
        malformed=malformed,
    )


class GeminiLiveTransport:
    def __init__(
        self,
        model: str = DEFAULT_LIVE_MODEL,
        voice: str = DEFAULT_VOICE,
        system_instruction: str = SYSTEM_INSTRUCTION,
        client_factory: Any = None,
    ) -> None:
        self.model = model
        self.voice = voice
        self.system_instruction = system_instruction
        self._client_factory = client_factory or (lambda api_key: genai.Client(api_key=api_key))
        self._context: Any = None
        self._session: Any = None
        self._receive_task: Optional[asyncio.Task] = None
        self._closing = False

    def build_config(self) -> types.LiveConnectConfig:
        return types.LiveConnectConfig(
            response_modalities=[types.Modality.AUDIO],
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=self.voice)
                )
            ),
            system_instruction=types.Content(parts=[types.Part(text=self.system_instruction)]),
        )

    async def connect(self, api_key: str, callbacks: LiveCallbacks) -> None:
        if self._session is not None:
            raise RuntimeError("live session already open")
        self._closing = False
        client = self._client_factory(api_key)
        context = client.aio.live.connect(model=self.model, config=self.build_config())
        self._session = await context.__aenter__()
        self._context = context
        logger.info("live session connected (model=%s, voice=%s)", self.model, self.voice)
        callbacks.on_open()
        self._receive_task = asyncio.get_running_loop().create_task(self._receive_loop(callbacks))

    async def send_audio(self, frame: AudioFrame) -> None:
        await self._send(frame.pcm16_bytes, frame.mime_type)

    async def send_image(self, frame: ScreenFrame) -> None:
        await self._send(frame.jpeg_bytes, frame.mime_type)

    async def close(self) -> None:
        self._closing = True
        task = self._receive_task
        self._receive_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        context = self._context
        self._context = None
        self._session = None
        if context is not None:
            await context.__aexit__(None, None, None)
            logger.info("live session closed")

    async def _send(self, data: bytes, mime_type: str) -> None:
        session = self._session
        if session is None or self._closing:
            return
        await session.send_realtime_input(media=types.Blob(data=data, mime_type=mime_type))

    async def _receive_loop(self, callbacks: LiveCallbacks) -> None:
        session = self._session
        try:
            while not self._closing:
                # receive() ends after each completed turn; an empty pass means the socket closed
                received = False
                async for response in session.receive():
                    received = True
                    callbacks.on_message(parse_server_message(response))
                if not received and not self._closing:
                    callbacks.on_close("stream ended")
                    return
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if self._closing:
                return
            if type(exc).__name__ == "ConnectionClosedOK":
                callbacks.on_close(str(exc))
            else:
                callbacks.on_error(exc)
