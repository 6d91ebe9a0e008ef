import asyncio
import base64
from collections.abc import AsyncIterator
from pathlib import Path

import pytest
from aiohttp import ClientResponseError
from aiohttp.test_utils import TestClient, TestServer

from aiogranolaa.client import FrameProducer, directory_frame_source
from aiogranolaa.client.producer import _ingress_url
from aiogranolaa.models import StreamType
from aiogranolaa.server import RelayConfig, RelayServer


def _frames(*frames: bytes):
    async def source() -> AsyncIterator[bytes]:
        for frame in frames:
            yield frame

    return source


def test_ingress_url() -> None:
    assert _ingress_url("wss://relay.example/") == "https://relay.example/stream"
    assert _ingress_url("ws://localhost:3000") == "http://localhost:3000/stream"
    assert _ingress_url("http://localhost:3000/") == "http://localhost:3000/stream"
    assert _ingress_url("http://10.0.0.2:3000/relay/ingest/") == "http://10.0.0.2:3000/relay/ingest"


def test_directory_frame_source_reads_jpegs_in_order(tmp_path: Path) -> None:
    (tmp_path / "b.jpg").write_bytes(b"second")
    (tmp_path / "a.jpeg").write_bytes(b"first")
    (tmp_path / "notes.txt").write_text("skip me")

    async def runner() -> list[bytes]:
        source = directory_frame_source(tmp_path, interval=0, repeat=False)
        return [frame async for frame in source()]

    assert asyncio.run(runner()) == [b"first", b"second"]


def test_directory_frame_source_requires_jpegs(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        directory_frame_source(tmp_path)


def test_producer_streams_frames_to_relay() -> None:
    async def runner() -> None:
        server = RelayServer(asyncio.get_running_loop(), RelayConfig(port=3000))
        async with TestClient(TestServer(server.create_app())) as client:
            viewer = await client.ws_connect("/view")
            assert (await viewer.receive_json(timeout=5))["streams"] == []

            producer = FrameProducer(
                str(client.make_url("/")),
                "producer-1",
                StreamType.WEBCAM,
                _frames(b"", b"jpeg-1", b"jpeg-2"),
                session=client.session,
            )
            assert producer.stream_url.endswith("/stream/webcam")
            assert await producer.stream_once() == 2

            messages = [await viewer.receive_json(timeout=5) for _ in range(4)]
            assert [message["type"] for message in messages] == [
                "streams",
                "frame",
                "frame",
                "streams",
            ]
            assert messages[1]["clientId"] == "producer-1"
            assert base64.b64decode(messages[2]["data"]) == b"jpeg-2"
            await producer.stop()
            await viewer.close()

    asyncio.run(runner())


def test_rejected_stream_raises() -> None:
    async def runner() -> None:
        server = RelayServer(asyncio.get_running_loop(), RelayConfig(port=3000))
        async with TestClient(TestServer(server.create_app())) as client:
            producer = FrameProducer(
                str(client.make_url("/")),
                "",
                StreamType.SCREEN,
                _frames(b"jpeg"),
                session=client.session,
            )
            with pytest.raises(ClientResponseError) as exc_info:
                await producer.stream_once()
            assert exc_info.value.status == 400

    asyncio.run(runner())


def test_start_and_stop_reconnect_loop() -> None:
    async def runner() -> None:
        server = RelayServer(asyncio.get_running_loop(), RelayConfig(port=3000))
        async with TestClient(TestServer(server.create_app())) as client:
            producer = FrameProducer(
                str(client.make_url("/")),
                "looping",
                StreamType.SCREEN,
                _frames(b"jpeg"),
                session=client.session,
                reconnect_delay=0.01,
            )
            producer.start()
            assert producer.running
            async with asyncio.timeout(5):
                while producer.frames_sent < 3:
                    await asyncio.sleep(0.01)
            await producer.stop()
            assert not producer.running

    asyncio.run(runner())
