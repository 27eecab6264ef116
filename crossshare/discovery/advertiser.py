"""Publishes this host's record under the CrossShare service type."""

import logging

from crossshare.config import DEVICE_NAME, SERVICE_PORT, SERVICE_TYPE
from crossshare.discovery.interfaces import DiscoveryBackend

logger = logging.getLogger(__name__)


class Advertiser:
    """
    One published record per instance.

    A failed publish is logged and reported to ``on_event`` callbacks once;
    it is never retried here.
    """

    def __init__(
        self,
        backend: DiscoveryBackend,
        name: str = DEVICE_NAME,
        service_type: str = SERVICE_TYPE,
        port: int = SERVICE_PORT,
    ) -> None:
        self._backend = backend
        self.name = name
        self.service_type = service_type
        self.port = port
        self._published = False
        self._callbacks: list = []  # async fn(event, data)
        self.last_error: Exception | None = None

    @property
    def published(self) -> bool:
        return self._published

    def on_event(self, callback) -> None:
        """Register callback: async fn(event_type: str, data: dict)."""
        self._callbacks.append(callback)

    async def _emit(self, event_type: str, data: dict) -> None:
        for cb in self._callbacks:
            try:
                await cb(event_type, data)
            except Exception as e:
                logger.error(f"Advertiser callback error: {e}")

    async def publish(self) -> bool:
        if self._published:
            return True
        logger.info(f"Publishing {self.name} ({self.service_type}) on port {self.port}")
        try:
            await self._backend.advertise(self.name, self.service_type, self.port)
        except Exception as e:
            self.last_error = e
            logger.warning(f"Failed to publish {self.name}: {e}")
            await self._emit(
                "publish_failed", {"name": self.name, "reason": str(e)}
            )
            return False

        self._published = True
        self.last_error = None
        logger.info(f"Service published: {self.name}")
        await self._emit("published", {"name": self.name, "port": self.port})
        return True

    async def unpublish(self) -> None:
        if not self._published:
            return
        self._published = False
        try:
            await self._backend.unadvertise()
        except Exception as e:
            logger.warning(f"Failed to unpublish {self.name}: {e}")
        else:
            logger.info(f"Service unpublished: {self.name}")
