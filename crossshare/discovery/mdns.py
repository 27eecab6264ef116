"""
mDNS / DNS-SD discovery backend built on zeroconf.

Service types are configured without the domain (``_fileshare._tcp``); the
``local.`` domain is appended here. Instance names handed to the browser are
the bare names (``Mac-studio``), not the fully qualified ones.
"""

import asyncio
import logging
import socket

from zeroconf import IPVersion, ServiceListener, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from crossshare.config import APP_NAME, SERVICE_DOMAIN
from crossshare.discovery.interfaces import BrowseListener, DiscoveryBackend
from crossshare.discovery.models import ResolvedService

logger = logging.getLogger(__name__)


def get_local_ip() -> str:
    """Best guess at the address other hosts on the LAN can reach us on."""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # no packet is sent; this just picks the outbound interface
        s.connect(("10.255.255.255", 1))
        return s.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        s.close()


def qualify(service_type: str, domain: str = SERVICE_DOMAIN) -> str:
    service_type = service_type.rstrip(".")
    if service_type.endswith("." + domain.rstrip(".")):
        return service_type + "."
    return f"{service_type}.{domain}"


def instance_name(full_name: str, full_type: str) -> str:
    suffix = "." + full_type
    if full_name.endswith(suffix):
        return full_name[: -len(suffix)]
    return full_name


class _ListenerBridge(ServiceListener):
    """Forwards zeroconf callbacks onto the event loop that owns the browser."""

    def __init__(
        self, loop: asyncio.AbstractEventLoop, full_type: str, listener: BrowseListener
    ) -> None:
        self._loop = loop
        self._full_type = full_type
        self._listener = listener

    def add_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        self._loop.call_soon_threadsafe(
            self._listener.found, instance_name(name, self._full_type)
        )

    def remove_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        self._loop.call_soon_threadsafe(
            self._listener.removed, instance_name(name, self._full_type)
        )

    def update_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        pass


class ZeroconfBackend(DiscoveryBackend):
    """DiscoveryBackend over multicast DNS, IPv4 only."""

    def __init__(self, address: str | None = None) -> None:
        self._address = address
        self._aiozc: AsyncZeroconf | None = None
        self._info: AsyncServiceInfo | None = None
        self._browsers: dict[BrowseListener, AsyncServiceBrowser] = {}

    def _zeroconf(self) -> AsyncZeroconf:
        if self._aiozc is None:
            self._aiozc = AsyncZeroconf(ip_version=IPVersion.V4Only)
        return self._aiozc

    async def advertise(self, name: str, service_type: str, port: int) -> None:
        aiozc = self._zeroconf()
        full_type = qualify(service_type)
        address = self._address or get_local_ip()
        host = socket.gethostname().split(".")[0]

        info = AsyncServiceInfo(
            full_type,
            f"{name}.{full_type}",
            addresses=[socket.inet_aton(address)],
            port=port,
            properties={"app": APP_NAME},
            server=f"{host}.local.",
        )
        # raises NonUniqueNameException on a name collision
        registration = await aiozc.async_register_service(info)
        await registration
        self._info = info
        logger.debug(f"Registered {info.name} at {address}:{port}")

    async def unadvertise(self) -> None:
        if self._aiozc is None or self._info is None:
            return
        info, self._info = self._info, None
        unregistration = await self._aiozc.async_unregister_service(info)
        await unregistration

    async def browse(self, service_type: str, listener: BrowseListener) -> None:
        aiozc = self._zeroconf()
        full_type = qualify(service_type)
        if listener in self._browsers:
            return
        bridge = _ListenerBridge(asyncio.get_running_loop(), full_type, listener)
        self._browsers[listener] = AsyncServiceBrowser(
            aiozc.zeroconf, [full_type], listener=bridge
        )

    async def stop_browse(self, listener: BrowseListener) -> None:
        browser = self._browsers.pop(listener, None)
        if browser is not None:
            await browser.async_cancel()

    async def resolve(
        self, service_type: str, name: str, timeout: float
    ) -> ResolvedService | None:
        aiozc = self._zeroconf()
        full_type = qualify(service_type)
        info = AsyncServiceInfo(full_type, f"{name}.{full_type}")
        if not await info.async_request(aiozc.zeroconf, int(timeout * 1000)):
            return None
        return ResolvedService(
            name=name,
            addresses=info.parsed_addresses(IPVersion.V4Only),
            port=info.port or 0,
        )

    async def close(self) -> None:
        for listener in list(self._browsers):
            await self.stop_browse(listener)
        try:
            await self.unadvertise()
        finally:
            if self._aiozc is not None:
                await self._aiozc.async_close()
                self._aiozc = None
