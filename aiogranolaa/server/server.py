"""Granolaa relay server connecting producers to viewers."""

import asyncio
import logging
import socket
from collections.abc import Callable, Coroutine
from dataclasses import dataclass

from aiohttp import WSCloseCode, web
from zeroconf.asyncio import AsyncServiceInfo, AsyncZeroconf

from aiogranolaa.errors import UnknownStreamTypeError
from aiogranolaa.models import INGRESS_PATH, SERVICE_TYPE, StreamKey

from .broadcast import Broadcaster
from .config import RelayConfig
from .ingress import ProducerStream, parse_stream_type
from .registry import StreamRegistry
from .viewer import ViewerSession

logger = logging.getLogger(__name__)

VIEW_PATH = "/view"


class RelayEvent:
    """Base event type used by RelayServer.add_event_listener()."""


@dataclass
class StreamAddedEvent(RelayEvent):
    """A producer stream went live."""

    key: StreamKey


@dataclass
class StreamRemovedEvent(RelayEvent):
    """A producer stream went away."""

    key: StreamKey


@dataclass
class ViewerAddedEvent(RelayEvent):
    """A viewer connected."""

    remote: str


@dataclass
class ViewerRemovedEvent(RelayEvent):
    """A viewer disconnected."""

    remote: str


def _local_ip() -> str:
    """Best guess of the address other hosts reach this machine on."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        try:
            # No packet is sent, connect only selects the outgoing interface
            sock.connect(("10.255.255.255", 1))
            return str(sock.getsockname()[0])
        except OSError:
            return "127.0.0.1"


class RelayServer:
    """Relay pushing producer frames and stream presence to every viewer.

    The server owns the stream registry and the broadcaster; all handlers run
    on ``loop`` and reach shared state only through this object.
    """

    loop: asyncio.AbstractEventLoop
    config: RelayConfig
    _registry: StreamRegistry
    _broadcaster: Broadcaster
    _producers: set[ProducerStream]
    _event_cbs: list[Callable[[RelayEvent], Coroutine[None, None, None]]]
    _runner: web.AppRunner | None = None
    _zeroconf: AsyncZeroconf | None = None
    _service_info: AsyncServiceInfo | None = None

    def __init__(self, loop: asyncio.AbstractEventLoop, config: RelayConfig | None = None) -> None:
        """Initialize a new relay server."""
        self.loop = loop
        self.config = config or RelayConfig()
        self._registry = StreamRegistry()
        self._broadcaster = Broadcaster(self._registry)
        self._producers = set()
        self._event_cbs = []
        logger.debug("RelayServer initialized: %s", self.config)

    @property
    def registry(self) -> StreamRegistry:
        """Registry of live producer streams."""
        return self._registry

    @property
    def broadcaster(self) -> Broadcaster:
        """Broadcaster owning the connected viewers."""
        return self._broadcaster

    @property
    def producers(self) -> set[ProducerStream]:
        """Get the set of open producer connections."""
        return self._producers

    def create_app(self) -> web.Application:
        """Build the aiohttp application serving producers and viewers."""
        app = web.Application()
        app.router.add_post(INGRESS_PATH + "/{stream_type}", self.on_producer_post)
        app.router.add_get(INGRESS_PATH, self.on_producer_connect)
        app.router.add_get(VIEW_PATH, self.on_viewer_connect)
        static_dir = self.config.static_dir
        if static_dir is not None:
            index = static_dir / "index.html"

            async def _index(_request: web.Request) -> web.FileResponse:
                return web.FileResponse(index)

            app.router.add_get("/", _index)
            # Registered last so the relay endpoints take precedence
            app.router.add_static("/", static_dir)
        app.on_shutdown.append(self._on_app_shutdown)
        return app

    async def start(self) -> None:
        """Start listening for producers and viewers."""
        if self._runner is not None:
            raise RuntimeError("RelayServer is already running")
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await site.start()
        logger.info("Granolaa relay running on http://%s:%d", self.config.host, self.config.port)
        logger.info("Producer endpoint: %s/{screen,webcam}?clientId=<id>", INGRESS_PATH)
        logger.info("Viewer endpoint: %s", VIEW_PATH)
        if self.config.advertise:
            await self._start_advertising()

    async def stop(self) -> None:
        """Close every connection and stop listening."""
        await self._stop_advertising()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        self._registry.clear()
        logger.info("Granolaa relay stopped")

    async def _on_app_shutdown(self, _app: web.Application) -> None:
        await asyncio.gather(
            *(viewer.disconnect() for viewer in list(self._broadcaster.viewers)),
            *(producer.disconnect() for producer in list(self._producers)),
        )

    async def on_viewer_connect(self, request: web.Request) -> web.WebSocketResponse:
        """Handle an incoming WebSocket connection from a viewer."""
        logger.debug("Incoming viewer connection from %s", request.remote)
        viewer = ViewerSession(self, request, self.config.viewer_queue_size)
        return await viewer.handle_client()

    async def on_producer_post(self, request: web.Request) -> web.StreamResponse:
        """Handle a producer streaming frames in a chunked HTTP request body."""
        try:
            stream_type = parse_stream_type(request.match_info["stream_type"])
        except UnknownStreamTypeError as err:
            raise web.HTTPBadRequest(text=str(err)) from None
        producer = ProducerStream(self, request.query.get("clientId"), stream_type, request.remote)
        self._producers.add(producer)
        try:
            return await producer.handle_request(request)
        finally:
            self._producers.discard(producer)

    async def on_producer_connect(self, request: web.Request) -> web.StreamResponse:
        """Handle a producer streaming frames over a WebSocket."""
        try:
            stream_type = parse_stream_type(request.query.get("type"))
        except UnknownStreamTypeError as err:
            logger.warning("Rejecting producer from %s: %s", request.remote, err)
            wsock = web.WebSocketResponse()
            _ = await wsock.prepare(request)
            _ = await wsock.close(
                code=WSCloseCode.POLICY_VIOLATION, message=str(err).encode()
            )
            return wsock
        producer = ProducerStream(self, request.query.get("clientId"), stream_type, request.remote)
        self._producers.add(producer)
        try:
            return await producer.handle_websocket(request)
        finally:
            self._producers.discard(producer)

    def add_event_listener(
        self, callback: Callable[[RelayEvent], Coroutine[None, None, None]]
    ) -> Callable[[], None]:
        """Register a callback to listen for state changes of the relay.

        State changes include:
        - A producer stream went live or away
        - A viewer connected or disconnected

        Returns a function to remove the listener.
        """
        self._event_cbs.append(callback)
        return lambda: self._event_cbs.remove(callback)

    def _signal_event(self, event: RelayEvent) -> None:
        for cb in self._event_cbs:
            _ = self.loop.create_task(cb(event))

    def _on_stream_add(self, producer: ProducerStream) -> None:
        """Register a producer stream and announce it to the viewers."""
        key = producer.key
        self._registry.register(key.producer_id, key.stream_type, owner=producer)
        _ = self._broadcaster.broadcast_presence()
        self._signal_event(StreamAddedEvent(key))

    def _on_stream_remove(self, producer: ProducerStream) -> None:
        """Unregister a producer stream and announce it to the viewers."""
        key = producer.key
        if not self._registry.unregister(key.producer_id, key.stream_type, owner=producer):
            # Replaced by a newer connection for the same stream, presence is unchanged
            return
        _ = self._broadcaster.broadcast_presence()
        self._signal_event(StreamRemovedEvent(key))

    def _on_viewer_add(self, viewer: ViewerSession) -> None:
        """Add a viewer and send it the current presence snapshot."""
        self._broadcaster.add_viewer(viewer)
        _ = self._broadcaster.send_presence(viewer)
        self._signal_event(ViewerAddedEvent(viewer.remote))

    def _on_viewer_remove(self, viewer: ViewerSession) -> None:
        if viewer not in self._broadcaster.viewers:
            return
        self._broadcaster.remove_viewer(viewer)
        self._signal_event(ViewerRemovedEvent(viewer.remote))

    async def _start_advertising(self) -> None:
        """Announce the relay over mDNS."""
        host = self.config.host
        if host in ("0.0.0.0", "::", ""):  # noqa: S104
            host = _local_ip()
        self._service_info = AsyncServiceInfo(
            SERVICE_TYPE,
            f"Granolaa relay {socket.gethostname()}.{SERVICE_TYPE}",
            parsed_addresses=[host],
            port=self.config.port,
            properties={"path": INGRESS_PATH},
        )
        self._zeroconf = AsyncZeroconf()
        await self._zeroconf.async_register_service(self._service_info)
        logger.info("Advertising relay at %s:%d via mDNS", host, self.config.port)

    async def _stop_advertising(self) -> None:
        if self._zeroconf is None:
            return
        if self._service_info is not None:
            await self._zeroconf.async_unregister_service(self._service_info)
            self._service_info = None
        await self._zeroconf.async_close()
        self._zeroconf = None
