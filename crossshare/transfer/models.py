"""Pydantic models for file transfer."""

import uuid
from enum import Enum

from pydantic import BaseModel, Field

from crossshare.transfer.errors import ErrorKind


class TransferState(str, Enum):
    """States of the send and receive state machines."""
    IDLE = "idle"
    # send side
    CONNECTING = "connecting"
    SENDING_HEADER = "sending_header"
    SENDING_METADATA = "sending_metadata"
    SENDING_CHUNKS = "sending_chunks"
    # receive side
    AWAITING_HEADER = "awaiting_header"
    AWAITING_METADATA = "awaiting_metadata"
    RECEIVING_PAYLOAD = "receiving_payload"
    # terminal
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = (TransferState.COMPLETED, TransferState.FAILED)


class TransferDirection(str, Enum):
    SEND = "send"
    RECEIVE = "receive"


class TransferSession(BaseModel):
    """State of a single connection's transfer, owned by the engine."""
    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    direction: TransferDirection
    peer_address: str
    peer_port: int = 0
    file_name: str = ""
    file_size: int = 0
    bytes_transferred: int = 0
    state: TransferState = TransferState.IDLE
    error: ErrorKind | None = None
    error_message: str | None = None

    @property
    def progress(self) -> float:
        if self.file_size > 0:
            return min(self.bytes_transferred / self.file_size, 1.0)
        return 1.0 if self.state == TransferState.COMPLETED else 0.0

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES


class SendRequest(BaseModel):
    """API body for initiating a transfer."""
    file_path: str
    peer_name: str | None = None
    peer_address: str | None = None
    peer_port: int | None = None
