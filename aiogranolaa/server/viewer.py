"""Represents a single viewer connected to the relay."""

import asyncio
import logging
from contextlib import suppress
from typing import TYPE_CHECKING

from aiohttp import WSCloseCode, WSMsgType, web

from aiogranolaa.models import RefreshMessage, ViewerMessage

MAX_PENDING_MSG = 32

logger = logging.getLogger(__name__)

# The cyclic import is not an issue during runtime, so hide it
# pyright: reportImportCycles=none
if TYPE_CHECKING:
    from .server import RelayServer


class ViewerSession:
    """A viewer WebSocket receiving presence and frame events.

    Outgoing messages are queued and written by a dedicated task so that a
    broadcast never waits on a slow viewer. When the queue is full, frame
    events are dropped; a presence snapshot replaces the oldest queued item
    since it supersedes whatever came before it.
    """

    _server: "RelayServer"
    request: web.Request
    wsock: web.WebSocketResponse
    # Task responsible for sending queued messages
    _writer_task: asyncio.Task[None] | None = None
    _to_write: asyncio.Queue[str]
    _open: bool = False
    frames_dropped: int = 0

    def __init__(
        self, server: "RelayServer", request: web.Request, queue_size: int = MAX_PENDING_MSG
    ) -> None:
        """Do not call this constructor.

        Use RelayServer.on_viewer_connect instead.
        """
        self._server = server
        self.request = request
        self.wsock = web.WebSocketResponse(heartbeat=55)
        self._to_write = asyncio.Queue(maxsize=queue_size)

    @property
    def remote(self) -> str:
        """Address of the viewer, for logging."""
        return self.request.remote or "unknown"

    @property
    def closed(self) -> bool:
        """Whether the viewer connection is not open for sending."""
        return not self._open or self.wsock.closed

    def send_text(self, text: str, *, droppable: bool = True) -> bool:
        """Enqueue a serialized message for this viewer.

        Returns False if the message was dropped because the queue is full.
        """
        try:
            self._to_write.put_nowait(text)
        except asyncio.QueueFull:
            if droppable:
                self.frames_dropped += 1
                logger.debug(
                    "Viewer %s is not keeping up, dropped %d frames so far",
                    self.remote,
                    self.frames_dropped,
                )
                return False
            with suppress(asyncio.QueueEmpty):
                _ = self._to_write.get_nowait()
            self._to_write.put_nowait(text)
        return True

    async def handle_client(self) -> web.WebSocketResponse:
        """Handle the websocket connection until the viewer goes away."""
        wsock = self.wsock
        try:
            async with asyncio.timeout(10):
                _ = await wsock.prepare(self.request)
        except TimeoutError:
            logger.warning("Timeout preparing request from %s", self.remote)
            return wsock

        self._open = True
        self._writer_task = self._server.loop.create_task(self._writer())
        self._server._on_viewer_add(self)  # noqa: SLF001

        try:
            while not wsock.closed:
                msg = await wsock.receive()

                if msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
                    break

                if msg.type == WSMsgType.ERROR:
                    logger.debug("Viewer %s connection error: %s", self.remote, wsock.exception())
                    break

                if msg.type != WSMsgType.TEXT:
                    continue

                try:
                    message = ViewerMessage.from_json(msg.data)
                except Exception:  # noqa: BLE001
                    logger.warning("Ignoring unrecognized message from viewer %s", self.remote)
                    continue
                self._handle_message(message)
            logger.debug("wsock was closed for viewer %s", self.remote)

        except asyncio.CancelledError:
            logger.debug("Connection closed by viewer %s", self.remote)
            raise
        except Exception:
            logger.exception("Unexpected error inside viewer connection")
        finally:
            self._server._on_viewer_remove(self)  # noqa: SLF001
            await self._shutdown()

        return wsock

    def _handle_message(self, message: ViewerMessage) -> None:
        """Handle incoming requests from the viewer."""
        match message:
            case RefreshMessage():
                logger.debug("Viewer %s requested a refresh", self.remote)
                _ = self._server.broadcaster.send_presence(self)
            case _:
                logger.debug("Unhandled viewer message %s", type(message).__name__)

    async def disconnect(self) -> None:
        """Close the connection to the viewer."""
        if not self.wsock.closed:
            _ = await self.wsock.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")

    async def _shutdown(self) -> None:
        self._open = False
        if self._writer_task and not self._writer_task.done():
            _ = self._writer_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._writer_task
        if not self.wsock.closed:
            _ = await self.wsock.close()

    async def _writer(self) -> None:
        """Write outgoing messages from the queue."""
        wsock = self.wsock
        while not wsock.closed:
            text = await self._to_write.get()
            try:
                await wsock.send_str(text)
            except (ConnectionResetError, RuntimeError) as err:
                logger.debug("Sending to viewer %s failed: %s", self.remote, err)
