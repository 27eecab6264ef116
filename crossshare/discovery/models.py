"""Pydantic models for peer discovery."""

from pydantic import BaseModel, Field


class PeerRecord(BaseModel):
    """A device announcing itself under our service type."""
    name: str
    addresses: set[str] = Field(default_factory=set)
    port: int = Field(default=0, ge=0, le=65535)
    resolved: bool = False

    @property
    def primary_address(self) -> str | None:
        """A stable pick among the resolved addresses, IPv4 first."""
        if not self.addresses:
            return None
        return sorted(self.addresses, key=lambda a: (":" in a, a))[0]


class ResolvedService(BaseModel):
    """What resolving a discovered name yields."""
    name: str
    addresses: list[str]
    port: int = Field(ge=0, le=65535)
