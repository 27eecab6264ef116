"""In-memory registry of known peers."""

import logging
import threading

from crossshare.discovery.models import PeerRecord

logger = logging.getLogger(__name__)


class PeerRegistry:
    """
    Ordered name -> PeerRecord mapping.

    Insertion order is display order. A record exists from the moment its name
    is found; it only becomes visible through ``snapshot()`` once resolved.
    Every method takes the same lock, so readers never see a half-applied
    update.
    """

    def __init__(self) -> None:
        self._records: dict[str, PeerRecord] = {}
        self._lock = threading.Lock()

    def begin(self, name: str) -> bool:
        """Track a newly found name. False if it is already resolving or resolved."""
        with self._lock:
            if name in self._records:
                logger.debug(f"Ignoring duplicate announcement of {name}")
                return False
            self._records[name] = PeerRecord(name=name)
            return True

    def mark_resolved(
        self, name: str, addresses, port: int
    ) -> PeerRecord | None:
        """Fill in a tracked record. None if the name was removed meanwhile."""
        with self._lock:
            record = self._records.get(name)
            if record is None:
                return None
            updated = PeerRecord(
                name=name, addresses=set(addresses), port=port, resolved=True
            )
            self._records[name] = updated
            return updated.model_copy(deep=True)

    def discard(self, name: str) -> None:
        """Drop a record whose resolution failed so a later announcement can retry."""
        with self._lock:
            record = self._records.get(name)
            if record is not None and not record.resolved:
                del self._records[name]

    def remove(self, name: str) -> PeerRecord | None:
        """Forget a name entirely. Returns the record if it had been resolved."""
        with self._lock:
            record = self._records.pop(name, None)
        if record is not None and record.resolved:
            return record
        return None

    def is_tracking(self, name: str) -> bool:
        with self._lock:
            return name in self._records

    def get(self, name: str) -> PeerRecord | None:
        """A resolved record by name."""
        with self._lock:
            record = self._records.get(name)
            if record is None or not record.resolved:
                return None
            return record.model_copy(deep=True)

    def snapshot(self) -> list[PeerRecord]:
        """Copies of all resolved records, in discovery order."""
        with self._lock:
            return [
                record.model_copy(deep=True)
                for record in self._records.values()
                if record.resolved
            ]

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for record in self._records.values() if record.resolved)
