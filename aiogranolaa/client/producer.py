"""Producer side: pushes JPEG frames of one stream to a granolaa relay."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import suppress
from pathlib import Path
from urllib.parse import urlsplit

from aiohttp import ClientError, ClientSession, ClientTimeout

from aiogranolaa.models import INGRESS_PATH, StreamType, pack_frame

logger = logging.getLogger(__name__)

FrameSource = Callable[[], AsyncIterator[bytes]]
"""Factory returning a fresh iterator of JPEG frames for every connection."""

DEFAULT_FRAME_INTERVAL = 0.1
JPEG_SUFFIXES = frozenset({".jpg", ".jpeg"})


def _ingress_url(url: str) -> str:
    """Return the HTTP ingress URL for a relay or ingress URL.

    WebSocket schemes map to their HTTP counterpart. A URL without a path
    gets INGRESS_PATH appended.
    """
    if url.startswith("wss://"):
        url = "https://" + url.removeprefix("wss://")
    elif url.startswith("ws://"):
        url = "http://" + url.removeprefix("ws://")
    url = url.rstrip("/")
    if not urlsplit(url).path:
        url += INGRESS_PATH
    return url


def directory_frame_source(
    path: Path, *, interval: float = DEFAULT_FRAME_INTERVAL, repeat: bool = True
) -> FrameSource:
    """Return a frame source cycling over the JPEG files in ``path``.

    Files are sent in name order, one every ``interval`` seconds.
    """
    files = sorted(p for p in path.iterdir() if p.suffix.lower() in JPEG_SUFFIXES)
    if not files:
        raise ValueError(f"No JPEG files found in {path}")

    async def _frames() -> AsyncIterator[bytes]:
        loop = asyncio.get_running_loop()
        while True:
            for file in files:
                yield await loop.run_in_executor(None, file.read_bytes)
                await asyncio.sleep(interval)
            if not repeat:
                return

    return _frames


class FrameProducer:
    """Streams frames to a relay as one chunked HTTP request per connection.

    Every frame is sent as a 4 byte big-endian length followed by the JPEG
    bytes. When the connection drops, the producer reconnects with an
    exponential backoff until stopped.
    """

    def __init__(
        self,
        url: str,
        client_id: str,
        stream_type: StreamType,
        frame_source: FrameSource,
        *,
        session: ClientSession | None = None,
        reconnect_delay: float = 2.0,
        max_reconnect_delay: float = 60.0,
    ) -> None:
        """Create a producer for one stream of ``client_id``."""
        self._ingress_url = _ingress_url(url)
        self._client_id = client_id
        self._stream_type = stream_type
        self._frame_source = frame_source
        self._session = session
        self._owns_session = session is None
        self._reconnect_delay = reconnect_delay
        self._max_reconnect_delay = max_reconnect_delay
        self._task: asyncio.Task[None] | None = None
        self.frames_sent = 0

    @property
    def stream_url(self) -> str:
        """URL of the ingress endpoint for this stream."""
        return f"{self._ingress_url}/{self._stream_type.value}"

    @property
    def running(self) -> bool:
        """Return True while the reconnect loop is active."""
        return self._task is not None and not self._task.done()

    async def stream_once(self) -> int:
        """Open one connection and send frames until the source is exhausted.

        Returns the number of frames sent on this connection.
        Raises aiohttp.ClientError if the relay rejects or drops the stream.
        """
        if self._session is None:
            self._session = ClientSession()
        sent_before = self.frames_sent
        logger.info("Connecting %s stream to %s", self._stream_type.value, self.stream_url)
        async with self._session.post(
            self.stream_url,
            params={"clientId": self._client_id},
            data=self._body(),
            headers={"Content-Type": "application/octet-stream"},
            timeout=ClientTimeout(total=None, sock_connect=10),
        ) as response:
            response.raise_for_status()
        sent = self.frames_sent - sent_before
        logger.info("%s stream ended normally after %d frames", self._stream_type.value, sent)
        return sent

    def start(self) -> None:
        """Start streaming in the background, reconnecting until stop() is called."""
        if self.running:
            logger.debug("Producer for %s is already running", self.stream_url)
            return
        self._task = asyncio.get_running_loop().create_task(self.run())

    async def stop(self) -> None:
        """Stop streaming and release the HTTP session if we own it."""
        if self._task is not None and not self._task.done():
            _ = self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def run(self) -> None:
        """Stream forever, reconnecting after errors with exponential backoff."""
        backoff = self._reconnect_delay
        while True:
            try:
                _ = await self.stream_once()
                backoff = self._reconnect_delay
            except asyncio.CancelledError:
                logger.debug("Producer task for %s was cancelled", self.stream_url)
                raise
            except TimeoutError:
                logger.warning("%s stream timed out", self._stream_type.value)
            except ClientError as err:
                logger.warning("%s stream error: %s", self._stream_type.value, err)

            sleep_time = min(backoff, self._max_reconnect_delay)
            logger.info(
                "%s stream reconnecting in %.1fs", self._stream_type.value, sleep_time
            )
            await asyncio.sleep(sleep_time)
            backoff = backoff * 2

    async def _body(self) -> AsyncIterator[bytes]:
        async for frame in self._frame_source():
            if not frame:
                continue
            yield pack_frame(frame)
            self.frames_sent += 1
            if self.frames_sent % 50 == 1:
                logger.debug("[%s] sent frame #%d", self._stream_type.value, self.frames_sent)
