"""Receives the byte stream of one producer stream and relays its frames."""

import asyncio
import logging
from collections.abc import AsyncIterator
from enum import Enum
from typing import TYPE_CHECKING

from aiohttp import ClientPayloadError, WSCloseCode, WSMsgType, web

from aiogranolaa.errors import (
    FrameTooLargeError,
    MissingProducerIdError,
    UnknownStreamTypeError,
)
from aiogranolaa.models import StreamKey, StreamType

from .config import OversizePolicy
from .decoder import FrameDecoder

logger = logging.getLogger(__name__)

# The cyclic import is not an issue during runtime, so hide it
# pyright: reportImportCycles=none
if TYPE_CHECKING:
    from .server import RelayServer


class IngressState(Enum):
    """Lifecycle of a producer stream connection."""

    REGISTERING = "registering"
    STREAMING = "streaming"
    CLOSED = "closed"


def parse_stream_type(value: str | None) -> StreamType:
    """Return the StreamType named by ``value``."""
    try:
        return StreamType(value)
    except ValueError:
        raise UnknownStreamTypeError(f"Unknown stream type: {value!r}") from None


class ProducerStream:
    """One producer connection carrying frames of a single stream type.

    The stream moves from REGISTERING to STREAMING on ``open()`` and to
    CLOSED on ``close()``. Each connection gets its own FrameDecoder, which
    is discarded on close; nothing carries over to a reconnect.
    """

    _server: "RelayServer"
    producer_id: str | None
    stream_type: StreamType
    remote: str
    state: IngressState
    _decoder: FrameDecoder | None = None
    _request: web.Request | None = None
    _wsock: web.WebSocketResponse | None = None

    def __init__(
        self,
        server: "RelayServer",
        producer_id: str | None,
        stream_type: StreamType,
        remote: str | None = None,
    ) -> None:
        """Initialize a producer stream that is not registered yet."""
        self._server = server
        self.producer_id = producer_id
        self.stream_type = stream_type
        self.remote = remote or "unknown"
        self.state = IngressState.REGISTERING
        self.frames_relayed = 0

    @property
    def key(self) -> StreamKey:
        """The stream this connection carries."""
        # Only valid once open() accepted the producer id
        assert self.producer_id
        return StreamKey(self.producer_id, self.stream_type)

    @property
    def decoder(self) -> FrameDecoder | None:
        """Decoder of the open stream, None unless streaming."""
        return self._decoder

    def open(self) -> None:
        """Register the stream and start accepting data.

        Raises MissingProducerIdError, leaving the registry untouched, if the
        producer did not identify itself.
        """
        if self.state is not IngressState.REGISTERING:
            raise RuntimeError(f"Cannot open producer stream in state {self.state.value}")
        if not self.producer_id:
            self.state = IngressState.CLOSED
            raise MissingProducerIdError("Missing clientId parameter")

        config = self._server.config
        self._decoder = FrameDecoder(
            config.max_frame_size,
            strict=config.oversize_policy is OversizePolicy.CLOSE,
        )
        self.state = IngressState.STREAMING
        logger.info(
            "Producer %s connected %s stream from %s",
            self.producer_id,
            self.stream_type.value,
            self.remote,
        )
        self._server._on_stream_add(self)  # noqa: SLF001

    def feed(self, chunk: bytes) -> int:
        """Decode ``chunk`` and broadcast every frame it completes.

        Returns the number of frames broadcast.
        """
        if self._decoder is None:
            raise RuntimeError(f"Cannot feed producer stream in state {self.state.value}")
        count = 0
        broadcaster = self._server.broadcaster
        for frame in self._decoder.feed(chunk):
            if not frame:
                continue
            _ = broadcaster.broadcast_frame(self.key, frame)
            self.frames_relayed += 1
            count += 1
        return count

    def close(self) -> None:
        """Unregister the stream and drop buffered data. Safe to call repeatedly."""
        if self.state is IngressState.CLOSED:
            return
        was_streaming = self.state is IngressState.STREAMING
        self.state = IngressState.CLOSED
        self._decoder = None
        if was_streaming:
            logger.info(
                "Producer %s disconnected %s stream after %d frames",
                self.producer_id,
                self.stream_type.value,
                self.frames_relayed,
            )
            self._server._on_stream_remove(self)  # noqa: SLF001

    async def consume(self, chunks: AsyncIterator[bytes]) -> None:
        """Feed ``chunks`` until the producer stops sending.

        Raises TimeoutError if an idle timeout is configured and no chunk
        arrives in time.
        """
        idle_timeout = self._server.config.idle_timeout
        while self.state is IngressState.STREAMING:
            try:
                async with asyncio.timeout(idle_timeout):
                    chunk = await anext(chunks)
            except StopAsyncIteration:
                break
            _ = self.feed(chunk)

    async def handle_request(self, request: web.Request) -> web.StreamResponse:
        """Relay a chunked HTTP request body."""
        try:
            self.open()
        except MissingProducerIdError as err:
            logger.warning("Rejecting producer from %s: %s", self.remote, err)
            raise web.HTTPBadRequest(text=str(err)) from None

        self._request = request
        try:
            await self.consume(request.content.iter_any())
        except FrameTooLargeError as err:
            logger.warning("Closing producer stream %s: %s", self.key, err)
            raise web.HTTPRequestEntityTooLarge(
                max_size=err.limit, actual_size=err.declared
            ) from None
        except TimeoutError:
            logger.info("Producer stream %s idle, closing", self.key)
            return web.Response(status=408, text="Idle timeout")
        except (ConnectionResetError, ClientPayloadError) as err:
            logger.info("Producer stream %s transport error: %s", self.key, err)
            return web.Response(status=400, text="Incomplete stream")
        finally:
            self.close()
            self._request = None

        return web.Response(text=f"Received {self.frames_relayed} frames")

    async def handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """Relay the binary messages of a WebSocket connection."""
        wsock = self._wsock = web.WebSocketResponse(heartbeat=55)
        try:
            async with asyncio.timeout(10):
                _ = await wsock.prepare(request)
        except TimeoutError:
            logger.warning("Timeout preparing request from %s", self.remote)
            return wsock

        try:
            self.open()
        except MissingProducerIdError as err:
            logger.warning("Rejecting producer from %s: %s", self.remote, err)
            _ = await wsock.close(code=WSCloseCode.POLICY_VIOLATION, message=str(err).encode())
            return wsock

        try:
            await self.consume(self._receive_binary(wsock))
        except FrameTooLargeError as err:
            logger.warning("Closing producer stream %s: %s", self.key, err)
            _ = await wsock.close(code=WSCloseCode.MESSAGE_TOO_BIG, message=b"Frame too large")
        except TimeoutError:
            logger.info("Producer stream %s idle, closing", self.key)
            _ = await wsock.close(code=WSCloseCode.GOING_AWAY, message=b"Idle timeout")
        except asyncio.CancelledError:
            logger.debug("Connection closed by producer %s", self.key)
            raise
        except Exception:
            logger.exception("Unexpected error inside producer connection")
        finally:
            self.close()
            if not wsock.closed:
                _ = await wsock.close()

        return wsock

    async def disconnect(self) -> None:
        """End the producer connection, unregistering its stream.

        A chunked request body is failed so the pending read returns at once
        instead of waiting for the producer to finish sending.
        """
        if self._request is not None:
            self._request.content.set_exception(ConnectionResetError("Server shutdown"))
        if self._wsock is not None and not self._wsock.closed:
            _ = await self._wsock.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")

    async def _receive_binary(self, wsock: web.WebSocketResponse) -> AsyncIterator[bytes]:
        while not wsock.closed:
            msg = await wsock.receive()
            if msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
                return
            if msg.type == WSMsgType.ERROR:
                logger.info("Producer stream %s transport error: %s", self.key, wsock.exception())
                return
            if msg.type != WSMsgType.BINARY:
                logger.debug("Ignoring non-binary message on producer stream %s", self.key)
                continue
            yield msg.data
