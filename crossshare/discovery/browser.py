"""
Peer browser.

Turns the backend's found/removed stream into resolved entries in a
``PeerRegistry`` and tells observers about peers coming and going.
"""

import asyncio
import logging

from crossshare.config import DEVICE_NAME, DEVICE_ROLE_TAG, RESOLVE_TIMEOUT, SERVICE_TYPE
from crossshare.discovery.interfaces import BrowseListener, DiscoveryBackend
from crossshare.discovery.models import PeerRecord
from crossshare.discovery.registry import PeerRegistry

logger = logging.getLogger(__name__)


class PeerBrowser(BrowseListener):
    """Maintains the registry from discovery events."""

    def __init__(
        self,
        backend: DiscoveryBackend,
        registry: PeerRegistry | None = None,
        own_name: str = DEVICE_NAME,
        own_prefix: str = f"{DEVICE_ROLE_TAG}-",
        resolve_timeout: float = RESOLVE_TIMEOUT,
    ) -> None:
        self._backend = backend
        self.registry = registry if registry is not None else PeerRegistry()
        self._own_name = own_name
        self._own_prefix = own_prefix
        self._resolve_timeout = resolve_timeout
        self._service_type = SERVICE_TYPE
        self._resolving: dict[str, asyncio.Task] = {}
        self._on_peer_change: list = []  # callbacks: async def fn(event, peer)
        self._browsing = False

    @property
    def browsing(self) -> bool:
        return self._browsing

    def on_peer_change(self, callback) -> None:
        """Register a callback for peer discovered/lost events."""
        self._on_peer_change.append(callback)

    def get_peers(self) -> list[PeerRecord]:
        return self.registry.snapshot()

    def is_self(self, name: str) -> bool:
        if name == self._own_name:
            return True
        return bool(self._own_prefix) and name.startswith(self._own_prefix)

    async def start_browsing(self, service_type: str = SERVICE_TYPE) -> None:
        if self._browsing:
            return
        self._service_type = service_type
        logger.info(f"Browsing for {service_type}")
        # events can arrive before browse() returns
        self._browsing = True
        try:
            await self._backend.browse(service_type, self)
        except Exception:
            self._browsing = False
            raise

    async def stop(self) -> None:
        """Detach from the backend and abandon in-flight resolutions."""
        if self._browsing:
            self._browsing = False
            await self._backend.stop_browse(self)
        pending = dict(self._resolving)
        self._resolving.clear()
        for name, task in pending.items():
            task.cancel()
            self.registry.discard(name)
        tasks = list(pending.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # --- BrowseListener ---

    def found(self, name: str) -> None:
        if not self._browsing:
            return
        if self.is_self(name):
            logger.debug(f"Ignoring our own record {name}")
            return
        if not self.registry.begin(name):
            return

        logger.info(f"Found {name}, resolving...")
        self._resolving[name] = asyncio.ensure_future(self._resolve(name))

    def removed(self, name: str) -> None:
        if not self._browsing:
            return
        task = self._resolving.pop(name, None)
        if task:
            task.cancel()

        record = self.registry.remove(name)
        if record:
            logger.info(f"Peer lost: {name}")
            asyncio.ensure_future(self._emit("peer_lost", record))

    # --- internals ---

    async def _resolve(self, name: str) -> None:
        try:
            try:
                result = await asyncio.wait_for(
                    self._backend.resolve(self._service_type, name, self._resolve_timeout),
                    self._resolve_timeout,
                )
            except asyncio.TimeoutError:
                result = None
            except Exception as e:
                logger.warning(f"Resolving {name} failed: {e}")
                result = None

            if result is None or not result.addresses:
                logger.warning(f"Could not resolve {name}")
                self.registry.discard(name)
                return

            record = self.registry.mark_resolved(name, result.addresses, result.port)
            if record is None:
                return

            logger.info(
                f"Discovered peer: {name} ({record.primary_address}:{record.port})"
            )
            await self._emit("peer_discovered", record)
        finally:
            if self._resolving.get(name) is asyncio.current_task():
                del self._resolving[name]

    async def _emit(self, event: str, peer: PeerRecord) -> None:
        for cb in self._on_peer_change:
            try:
                await cb(event, peer)
            except Exception as e:
                logger.error(f"Peer change callback error: {e}")
