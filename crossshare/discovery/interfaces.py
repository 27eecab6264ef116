"""Interfaces between the discovery core and the platform's service discovery."""

from abc import ABC, abstractmethod

from crossshare.discovery.models import ResolvedService


class BrowseListener(ABC):
    """Receives the raw event stream for one service type."""

    @abstractmethod
    def found(self, name: str) -> None:
        pass

    @abstractmethod
    def removed(self, name: str) -> None:
        pass


class DiscoveryBackend(ABC):
    """Publishes a named, typed, ported record and observes others."""

    @abstractmethod
    async def advertise(self, name: str, service_type: str, port: int) -> None:
        """
        Publish our record.
        Raises on failure (name collision, permission denial, ...).
        """

    @abstractmethod
    async def unadvertise(self) -> None:
        pass

    @abstractmethod
    async def browse(self, service_type: str, listener: BrowseListener) -> None:
        """Start delivering found/removed events for ``service_type``."""

    @abstractmethod
    async def stop_browse(self, listener: BrowseListener) -> None:
        """Stop delivering events to ``listener``; unknown listeners are ignored."""

    @abstractmethod
    async def resolve(
        self, service_type: str, name: str, timeout: float
    ) -> ResolvedService | None:
        """Resolve a found name to addresses; None if it didn't resolve in time."""

    @abstractmethod
    async def close(self) -> None:
        pass
