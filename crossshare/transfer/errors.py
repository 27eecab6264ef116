"""Error taxonomy shared by the send and receive state machines."""

from enum import Enum


class ErrorKind(str, Enum):
    """Every way a transfer session can end badly."""
    INVALID_METADATA = "invalidMetadata"
    FILE_READ_ERROR = "fileReadError"
    FILE_WRITE_ERROR = "fileWriteError"
    NETWORK_ERROR = "networkError"
    CONNECTION_FAILED = "connectionFailed"
    SERVER_ERROR = "serverError"
    INVALID_IP_ADDRESS = "invalidIPAddress"
    INVALID_PORT = "invalidPort"
    UNKNOWN_ERROR = "unknownError"


_DESCRIPTIONS = {
    ErrorKind.INVALID_METADATA: "Invalid file metadata received",
    ErrorKind.FILE_READ_ERROR: "Failed to read file",
    ErrorKind.FILE_WRITE_ERROR: "Failed to write file",
    ErrorKind.NETWORK_ERROR: "Network error occurred",
    ErrorKind.CONNECTION_FAILED: "Connection failed",
    ErrorKind.SERVER_ERROR: "Server error",
    ErrorKind.INVALID_IP_ADDRESS: "Invalid IP address",
    ErrorKind.INVALID_PORT: "Invalid port number",
    ErrorKind.UNKNOWN_ERROR: "An unknown error occurred",
}


class FileTransferError(Exception):
    """
    Terminal failure of a single transfer session.

    ``kind`` is what gets reported to the progress sink; ``cause`` keeps the
    underlying exception (if any) for logging.
    """

    def __init__(self, kind: ErrorKind, cause: BaseException | str | None = None):
        self.kind = kind
        self.cause = cause
        super().__init__(self.describe())

    def describe(self) -> str:
        text = _DESCRIPTIONS[self.kind]
        if self.cause:
            return f"{text}: {self.cause}"
        return text

