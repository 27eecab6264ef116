"""
CrossShare node: the one object a UI shell talks to.

Owns the advertiser, the browser with its registry, and the transfer
engine. The entry point constructs it, starts it, and stops it; nothing in
the package keeps process-wide instances.
"""

import logging

from crossshare.config import (
    DEFAULT_SAVE_DIR,
    DEVICE_NAME,
    DEVICE_ROLE_TAG,
    LISTEN_HOST,
    RESOLVE_TIMEOUT,
    SERVICE_PORT,
    SERVICE_TYPE,
)
from crossshare.discovery.advertiser import Advertiser
from crossshare.discovery.browser import PeerBrowser
from crossshare.discovery.interfaces import DiscoveryBackend
from crossshare.discovery.models import PeerRecord
from crossshare.discovery.registry import PeerRegistry
from crossshare.transfer.manager import TransferEngine
from crossshare.transfer.models import TransferSession
from crossshare.transfer.progress import ProgressSink

logger = logging.getLogger(__name__)


class PeerNotFoundError(LookupError):
    """Raised when sending to a peer name that isn't resolved."""


class CrossShareNode:
    """Discovery plus transfer for one host."""

    def __init__(
        self,
        backend: DiscoveryBackend | None = None,
        sink: ProgressSink | None = None,
        device_name: str = DEVICE_NAME,
        role_tag: str = DEVICE_ROLE_TAG,
        service_type: str = SERVICE_TYPE,
        host: str = LISTEN_HOST,
        port: int = SERVICE_PORT,
        save_dir: str = DEFAULT_SAVE_DIR,
        resolve_timeout: float = RESOLVE_TIMEOUT,
        **engine_options,
    ) -> None:
        if backend is None:
            from crossshare.discovery.mdns import ZeroconfBackend
            backend = ZeroconfBackend()
        self.backend = backend
        self.service_type = service_type
        self.device_name = device_name

        self.registry = PeerRegistry()
        self.engine = TransferEngine(
            sink=sink, host=host, port=port, save_dir=save_dir, **engine_options
        )
        self.advertiser = Advertiser(backend, device_name, service_type, port)
        self.browser = PeerBrowser(
            backend,
            self.registry,
            own_name=device_name,
            own_prefix=f"{role_tag}-" if role_tag else "",
            resolve_timeout=resolve_timeout,
        )

    async def start(self, advertise: bool = True, browse: bool = True) -> None:
        """Bind the listener (fatal on failure), then join discovery."""
        await self.engine.start()
        if advertise:
            await self.start_advertising()
        if browse:
            await self.start_browsing()

    async def stop(self) -> None:
        await self.engine.stop()
        await self.browser.stop()
        await self.advertiser.unpublish()
        try:
            await self.backend.close()
        except Exception as e:
            logger.warning(f"Error closing discovery backend: {e}")

    async def start_advertising(self) -> bool:
        # advertise the port actually bound, which differs when configured as 0
        self.advertiser.port = self.engine.port
        return await self.advertiser.publish()

    async def start_browsing(self) -> bool:
        try:
            await self.browser.start_browsing(self.service_type)
        except Exception as e:
            logger.warning(f"Could not start browsing for {self.service_type}: {e}")
            return False
        return True

    def get_peers(self) -> list[PeerRecord]:
        return self.registry.snapshot()

    def send_file(self, peer_address: str, port: int, file_path: str) -> TransferSession:
        return self.engine.send_file(peer_address, port, file_path)

    def send_to_peer(self, peer_name: str, file_path: str) -> TransferSession:
        record = self.registry.get(peer_name)
        if record is None or record.primary_address is None:
            raise PeerNotFoundError(peer_name)
        return self.engine.send_file(record.primary_address, record.port, file_path)
