"""Discovery of granolaa relays advertised via mDNS."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, cast

from zeroconf.asyncio import AsyncServiceBrowser, AsyncZeroconf

from aiogranolaa.models import INGRESS_PATH, SERVICE_TYPE

if TYPE_CHECKING:
    from zeroconf import ServiceListener

logger = logging.getLogger(__name__)


def build_service_url(
    host: str, port: int, properties: Mapping[bytes, bytes | None] | None = None
) -> str:
    """Construct the ingress URL of a relay from its mDNS service info.

    The ``path`` TXT property names the ingress path; relays that do not
    advertise one use INGRESS_PATH.
    """
    path_raw = (properties or {}).get(b"path")
    path = path_raw.decode("utf-8", "ignore") if isinstance(path_raw, bytes) else ""
    path = "/" + path.strip("/") if path.strip("/") else INGRESS_PATH
    host_fmt = f"[{host}]" if ":" in host else host
    return f"http://{host_fmt}:{port}{path}"


class _RelayListener:
    """Keeps the ingress URL of every relay currently on the network."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._relays: dict[str, str] = {}
        self._first_relay: asyncio.Future[str] = loop.create_future()
        self.tasks: set[asyncio.Task[None]] = set()

    @property
    def relays(self) -> dict[str, str]:
        """Ingress URLs keyed by mDNS service name."""
        return self._relays

    @property
    def current_url(self) -> str | None:
        """The most recently announced relay still online."""
        if not self._relays:
            return None
        return next(reversed(self._relays.values()))

    async def wait_for_first(self) -> str:
        return await self._first_relay

    async def _resolve(self, zeroconf: AsyncZeroconf, service_type: str, name: str) -> None:
        info = await zeroconf.async_get_service_info(service_type, name)
        if info is None or info.port is None:
            logger.debug("Could not resolve relay %s", name)
            return
        addresses = info.parsed_addresses()
        if not addresses:
            return
        url = build_service_url(addresses[0], info.port, info.properties)
        # Re-insert so an updated relay becomes the current one
        self._relays.pop(name, None)
        self._relays[name] = url
        logger.info("Relay %s available at %s", name, url)
        if not self._first_relay.done():
            self._first_relay.set_result(url)

    def _schedule(self, zeroconf: AsyncZeroconf, service_type: str, name: str) -> None:
        task = self._loop.create_task(self._resolve(zeroconf, service_type, name))
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)

    def add_service(self, zeroconf: AsyncZeroconf, service_type: str, name: str) -> None:
        self._schedule(zeroconf, service_type, name)

    def update_service(self, zeroconf: AsyncZeroconf, service_type: str, name: str) -> None:
        self._schedule(zeroconf, service_type, name)

    def remove_service(self, _zeroconf: AsyncZeroconf, _service_type: str, name: str) -> None:
        if self._relays.pop(name, None) is not None:
            logger.info("Relay %s went away", name)


class ServiceDiscovery:
    """Browses the local network for granolaa relays."""

    def __init__(self) -> None:
        self._listener: _RelayListener | None = None
        self._browser: AsyncServiceBrowser | None = None
        self._zeroconf: AsyncZeroconf | None = None

    async def start(self) -> None:
        """Start browsing; keeps running until stop() is called."""
        self._listener = _RelayListener(asyncio.get_running_loop())
        self._zeroconf = AsyncZeroconf()
        try:
            self._browser = AsyncServiceBrowser(
                self._zeroconf.zeroconf, SERVICE_TYPE, cast("ServiceListener", self._listener)
            )
        except Exception:
            await self.stop()
            raise

    async def wait_for_first_relay(self) -> str:
        """Wait for a relay and return its ingress URL."""
        if self._listener is None:
            raise RuntimeError("Discovery not started. Call start() first.")
        return await self._listener.wait_for_first()

    def current_url(self) -> str | None:
        """Ingress URL of a relay that is online, or None."""
        return self._listener.current_url if self._listener else None

    async def stop(self) -> None:
        if self._browser:
            await self._browser.async_cancel()
            self._browser = None
        if self._zeroconf:
            await self._zeroconf.async_close()
            self._zeroconf = None
        self._listener = None
