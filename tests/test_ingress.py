import asyncio
from types import SimpleNamespace
from typing import Any

import orjson
import pytest
from aiohttp import WSMsgType

from aiogranolaa.errors import FrameTooLargeError, MissingProducerIdError
from aiogranolaa.models import StreamType, pack_frame
from aiogranolaa.server import (
    IngressState,
    OversizePolicy,
    ProducerStream,
    RelayConfig,
    RelayEvent,
    RelayServer,
    StreamAddedEvent,
    StreamRemovedEvent,
)


class RecordingViewer:
    remote = "recorder"
    closed = False

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    def send_text(self, text: str, *, droppable: bool = True) -> bool:
        self.sent.append(orjson.loads(text))
        return True


def _server(config: RelayConfig | None = None) -> tuple[RelayServer, RecordingViewer]:
    server = RelayServer(asyncio.get_running_loop(), config or RelayConfig(port=3000))
    viewer = RecordingViewer()
    server.broadcaster.add_viewer(viewer)  # type: ignore[arg-type]
    return server, viewer


def test_missing_producer_id_is_rejected_without_registration() -> None:
    async def runner() -> None:
        server, viewer = _server()
        producer = ProducerStream(server, None, StreamType.SCREEN)

        with pytest.raises(MissingProducerIdError):
            producer.open()

        assert producer.state is IngressState.CLOSED
        assert server.registry.snapshot() == []
        assert viewer.sent == []
        producer.close()
        assert viewer.sent == []

    asyncio.run(runner())


def test_lifecycle_registers_relays_and_unregisters_once() -> None:
    async def runner() -> None:
        server, viewer = _server()
        events: list[RelayEvent] = []

        async def on_event(event: RelayEvent) -> None:
            events.append(event)

        _ = server.add_event_listener(on_event)
        producer = ProducerStream(server, "abc123", StreamType.SCREEN)

        producer.open()
        assert producer.state is IngressState.STREAMING
        assert server.registry.is_live("abc123", StreamType.SCREEN)
        assert viewer.sent[-1]["streams"] == [
            {"clientId": "abc123", "hasScreen": True, "hasWebcam": False}
        ]

        data = pack_frame(b"x" * 100) + pack_frame(b"y" * 250)
        assert producer.feed(data[:6]) == 0
        assert producer.feed(data[6:350]) == 1
        assert producer.feed(data[350:]) == 1
        frames = [message for message in viewer.sent if message["type"] == "frame"]
        assert [len(message["data"]) for message in frames] == [136, 336]

        producer.close()
        producer.close()
        assert producer.state is IngressState.CLOSED
        assert producer.decoder is None
        presence = [message for message in viewer.sent if message["type"] == "streams"]
        assert len(presence) == 2
        assert presence[-1]["streams"] == []

        with pytest.raises(RuntimeError):
            producer.feed(b"more")

        await asyncio.sleep(0.01)
        assert events == [
            StreamAddedEvent(producer.key),
            StreamRemovedEvent(producer.key),
        ]

    asyncio.run(runner())


def test_zero_length_frames_are_decoded_but_not_relayed() -> None:
    # A zero-length frame carries no image, viewers only get real JPEGs
    async def runner() -> None:
        server, viewer = _server()
        producer = ProducerStream(server, "p", StreamType.WEBCAM)
        producer.open()

        assert producer.feed(pack_frame(b"") + pack_frame(b"img")) == 1
        assert [message["type"] for message in viewer.sent] == ["streams", "frame"]

    asyncio.run(runner())


def test_close_policy_makes_decoder_strict() -> None:
    async def runner() -> None:
        config = RelayConfig(port=3000, max_frame_size=4, oversize_policy=OversizePolicy.CLOSE)
        server, _ = _server(config)
        producer = ProducerStream(server, "p", StreamType.SCREEN)
        producer.open()

        with pytest.raises(FrameTooLargeError):
            producer.feed(pack_frame(b"too large"))

    asyncio.run(runner())


def test_consume_feeds_every_chunk() -> None:
    async def runner() -> None:
        server, viewer = _server()
        producer = ProducerStream(server, "p", StreamType.SCREEN)
        producer.open()
        data = pack_frame(b"one") + pack_frame(b"two")

        async def chunks():
            for i in range(0, len(data), 5):
                yield data[i : i + 5]

        await producer.consume(chunks())
        assert producer.frames_relayed == 2
        assert [message["type"] for message in viewer.sent] == ["streams", "frame", "frame"]

    asyncio.run(runner())


def test_consume_times_out_on_idle_producer() -> None:
    async def runner() -> None:
        server, _ = _server(RelayConfig(port=3000, idle_timeout=0.05))
        producer = ProducerStream(server, "p", StreamType.SCREEN)
        producer.open()

        async def silent():
            await asyncio.sleep(10)
            yield b""

        with pytest.raises(TimeoutError):
            await producer.consume(silent())

    asyncio.run(runner())


class FailingSocket:
    """WebSocket delivering one binary chunk, then a transport error."""

    closed = False

    def __init__(self, chunk: bytes) -> None:
        self._messages = [
            SimpleNamespace(type=WSMsgType.BINARY, data=chunk),
            SimpleNamespace(type=WSMsgType.ERROR, data=ConnectionResetError("reset by peer")),
        ]
        self.error: BaseException | None = None

    async def receive(self) -> SimpleNamespace:
        msg = self._messages.pop(0)
        if msg.type == WSMsgType.ERROR:
            self.error = msg.data
        return msg

    def exception(self) -> BaseException | None:
        return self.error


def test_websocket_transport_error_unregisters_like_close() -> None:
    async def runner() -> None:
        server, viewer = _server()
        producer = ProducerStream(server, "p", StreamType.WEBCAM)
        producer.open()
        wsock = FailingSocket(pack_frame(b"img") + b"\x00\x00")

        await producer.consume(producer._receive_binary(wsock))  # type: ignore[arg-type]
        producer.close()

        assert producer.frames_relayed == 1
        assert [message["type"] for message in viewer.sent] == ["streams", "frame", "streams"]
        assert viewer.sent[-1]["streams"] == []
        assert server.registry.snapshot() == []

    asyncio.run(runner())
