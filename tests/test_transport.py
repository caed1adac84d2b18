from __future__ import annotations

import asyncio
import base64
from types import SimpleNamespace
from typing import Any, Optional

import pytest

from models import AudioFrame, ScreenFrame, ServerMessage
from transport import GeminiLiveTransport, parse_server_message


class ConnectionClosedOK(Exception):
    pass


class FakeLiveSession:
    def __init__(self, turns: list[list[Any]], error: Optional[Exception] = None, block: bool = False) -> None:
        self.turns = list(turns)
        self.error = error
        self.block = block
        self.sent: list[Any] = []

    async def send_realtime_input(self, media: Any = None) -> None:
        self.sent.append(media)

    async def receive(self):  # noqa: ANN201
        if self.turns:
            for message in self.turns.pop(0):
                yield message
            return
        if self.error is not None:
            raise self.error
        if self.block:
            await asyncio.Event().wait()


class FakeContext:
    def __init__(self, session: FakeLiveSession) -> None:
        self.session = session
        self.exited = 0

    async def __aenter__(self) -> FakeLiveSession:
        return self.session

    async def __aexit__(self, *exc: Any) -> None:
        self.exited += 1


class FakeClient:
    def __init__(self, context: FakeContext) -> None:
        self.connect_kwargs: dict = {}
        self.aio = SimpleNamespace(live=SimpleNamespace(connect=self._connect))
        self._context = context

    def _connect(self, **kwargs: Any) -> FakeContext:
        self.connect_kwargs = kwargs
        return self._context


class RecordingCallbacks:
    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []

    def on_open(self) -> None:
        self.events.append(("open", None))

    def on_message(self, message: ServerMessage) -> None:
        self.events.append(("message", message))

    def on_close(self, reason: str) -> None:
        self.events.append(("close", reason))

    def on_error(self, error: object) -> None:
        self.events.append(("error", error))


def _transport(session: FakeLiveSession) -> tuple[GeminiLiveTransport, FakeClient, FakeContext]:
    context = FakeContext(session)
    client = FakeClient(context)
    keys: list[str] = []

    def factory(api_key: str) -> FakeClient:
        keys.append(api_key)
        return client

    return GeminiLiveTransport(model="test-model", voice="Puck", client_factory=factory), client, context


def _audio_response(data: Any) -> dict:
    return {"serverContent": {"modelTurn": {"parts": [{"inlineData": {"data": data}}]}}}


# ---------------------------------------------------------------
# parse_server_message
# ---------------------------------------------------------------

def test_parse_wire_dict_with_base64_audio() -> None:
    message = parse_server_message(_audio_response(base64.b64encode(b"\x01\x00").decode("ascii")))

    assert message.audio == b"\x01\x00"
    assert message.malformed is False


def test_parse_sdk_object_with_raw_audio() -> None:
    response = SimpleNamespace(
        server_content=SimpleNamespace(
            model_turn=SimpleNamespace(parts=[SimpleNamespace(inline_data=SimpleNamespace(data=b"\x02\x00"))]),
            interrupted=False,
            turn_complete=True,
        )
    )

    message = parse_server_message(response)

    assert message.audio == b"\x02\x00"
    assert message.turn_complete is True


def test_parse_interrupted_flag() -> None:
    message = parse_server_message({"serverContent": {"interrupted": True}})

    assert message == ServerMessage(interrupted=True)


def test_parse_bad_base64_is_marked_malformed() -> None:
    message = parse_server_message(_audio_response("%%%"))

    assert message.audio is None
    assert message.malformed is True


def test_parse_message_without_server_content() -> None:
    assert parse_server_message({"setupComplete": {}}) == ServerMessage()
    assert parse_server_message(SimpleNamespace(server_content=None)) == ServerMessage()


# ---------------------------------------------------------------
# GeminiLiveTransport
# ---------------------------------------------------------------

def test_connect_opens_then_delivers_messages_then_closes() -> None:
    async def scenario() -> None:
        session = FakeLiveSession([[_audio_response("AQA="), {"serverContent": {"turnComplete": True}}]])
        transport, client, _ = _transport(session)
        callbacks = RecordingCallbacks()

        await transport.connect("key", callbacks)
        await transport._receive_task

        kinds = [kind for kind, _ in callbacks.events]
        assert kinds == ["open", "message", "message", "close"]
        assert callbacks.events[1][1].audio == b"\x01\x00"
        assert callbacks.events[2][1].turn_complete is True
        assert client.connect_kwargs["model"] == "test-model"

    asyncio.run(scenario())


def test_receive_failure_is_reported_as_error() -> None:
    async def scenario() -> None:
        failure = RuntimeError("1011 internal error")
        transport, _, _ = _transport(FakeLiveSession([], error=failure))
        callbacks = RecordingCallbacks()

        await transport.connect("key", callbacks)
        await transport._receive_task

        assert callbacks.events[-1] == ("error", failure)

    asyncio.run(scenario())


def test_clean_websocket_close_is_reported_as_close() -> None:
    async def scenario() -> None:
        transport, _, _ = _transport(FakeLiveSession([], error=ConnectionClosedOK("1000 bye")))
        callbacks = RecordingCallbacks()

        await transport.connect("key", callbacks)
        await transport._receive_task

        assert callbacks.events[-1] == ("close", "1000 bye")

    asyncio.run(scenario())


def test_send_uses_realtime_input_blobs() -> None:
    async def scenario() -> None:
        session = FakeLiveSession([], block=True)
        transport, _, _ = _transport(session)
        await transport.connect("key", RecordingCallbacks())

        await transport.send_audio(AudioFrame(pcm16_bytes=b"\x00\x00"))
        await transport.send_image(ScreenFrame(jpeg_bytes=b"\xff\xd8", width=1, height=1))

        assert [blob.mime_type for blob in session.sent] == ["audio/pcm;rate=16000", "image/jpeg"]
        assert session.sent[0].data == b"\x00\x00"
        await transport.close()

    asyncio.run(scenario())


def test_close_exits_session_and_silences_callbacks() -> None:
    async def scenario() -> None:
        session = FakeLiveSession([], block=True)
        transport, _, context = _transport(session)
        callbacks = RecordingCallbacks()
        await transport.connect("key", callbacks)

        await transport.close()
        await transport.close()
        await transport.send_audio(AudioFrame(pcm16_bytes=b"\x00\x00"))

        assert context.exited == 1
        assert session.sent == []
        assert callbacks.events == [("open", None)]

    asyncio.run(scenario())


def test_connect_twice_without_close_is_rejected() -> None:
    async def scenario() -> None:
        transport, _, _ = _transport(FakeLiveSession([], block=True))
        await transport.connect("key", RecordingCallbacks())

        with pytest.raises(RuntimeError, match="already open"):
            await transport.connect("key", RecordingCallbacks())
        await transport.close()

    asyncio.run(scenario())


def test_live_config_carries_voice_and_instruction() -> None:
    transport = GeminiLiveTransport(voice="Puck", system_instruction="be helpful", client_factory=lambda k: None)

    config = transport.build_config()

    assert config.speech_config.voice_config.prebuilt_voice_config.voice_name == "Puck"
    assert config.system_instruction.parts[0].text == "be helpful"
