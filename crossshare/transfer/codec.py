"""
Frame codec for the transfer wire format.

    [4 bytes]        metadata length L, big-endian unsigned 32-bit
    [L bytes]        UTF-8 "<fileName><delimiter><fileSizeDecimal>"
    [fileSize bytes] raw payload

The payload itself is never buffered here; the state machines stream it.
"""

import asyncio
import logging
import struct

from crossshare.config import METADATA_DELIMITER
from crossshare.transfer.errors import ErrorKind, FileTransferError

logger = logging.getLogger(__name__)

HEADER_FORMAT = "!I"
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)
MAX_METADATA_LENGTH = 0xFFFFFFFF


def encode_metadata(
    file_name: str, file_size: int, delimiter: str = METADATA_DELIMITER
) -> bytes:
    if file_size < 0:
        raise ValueError(f"file size must be non-negative, got {file_size}")
    metadata = f"{file_name}{delimiter}{file_size}".encode("utf-8")
    if len(metadata) > MAX_METADATA_LENGTH:
        raise ValueError("metadata too long for a 32-bit length header")
    return metadata


def encode_header(metadata_length: int) -> bytes:
    return struct.pack(HEADER_FORMAT, metadata_length)


def encode_frame_head(
    file_name: str, file_size: int, delimiter: str = METADATA_DELIMITER
) -> tuple[bytes, bytes]:
    """Return ``(header, metadata)``; they are sent as two separate writes."""
    metadata = encode_metadata(file_name, file_size, delimiter)
    return encode_header(len(metadata)), metadata


def decode_header(data: bytes) -> int:
    if len(data) != HEADER_SIZE:
        raise FileTransferError(
            ErrorKind.INVALID_METADATA,
            f"expected {HEADER_SIZE} header bytes, got {len(data)}",
        )
    (length,) = struct.unpack(HEADER_FORMAT, data)
    return length


def parse_file_size(text: str) -> int:
    """Parse the size field; anything that isn't a non-negative integer is 0."""
    if text.isascii() and text.isdigit():
        return int(text)
    logger.warning(f"Malformed file size {text!r} in metadata, treating as 0")
    return 0


def decode_metadata(
    data: bytes, delimiter: str = METADATA_DELIMITER
) -> tuple[str, int]:
    """Split metadata on the first delimiter into ``(file_name, file_size)``."""
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise FileTransferError(ErrorKind.INVALID_METADATA, e) from e

    file_name, sep, size_text = text.partition(delimiter)
    if not sep:
        raise FileTransferError(
            ErrorKind.INVALID_METADATA, f"delimiter {delimiter!r} not found"
        )
    return file_name, parse_file_size(size_text)


async def read_header(
    reader: asyncio.StreamReader, timeout: float | None = None
) -> int:
    return decode_header(await _read_exactly(reader, HEADER_SIZE, timeout))


async def read_metadata(
    reader: asyncio.StreamReader,
    length: int,
    delimiter: str = METADATA_DELIMITER,
    timeout: float | None = None,
) -> tuple[str, int]:
    return decode_metadata(await _read_exactly(reader, length, timeout), delimiter)


async def read_frame_head(
    reader: asyncio.StreamReader,
    delimiter: str = METADATA_DELIMITER,
    timeout: float | None = None,
) -> tuple[str, int]:
    """
    Read the header and metadata off a stream.

    A short read at either stage is ``invalidMetadata``; transport errors are
    ``networkError``. Returns ``(file_name, file_size)``.
    """
    length = await read_header(reader, timeout)
    return await read_metadata(reader, length, delimiter, timeout)


async def _read_exactly(
    reader: asyncio.StreamReader, n: int, timeout: float | None
) -> bytes:
    try:
        return await asyncio.wait_for(reader.readexactly(n), timeout)
    except asyncio.IncompleteReadError as e:
        raise FileTransferError(
            ErrorKind.INVALID_METADATA,
            f"stream closed after {len(e.partial)} of {n} bytes",
        ) from e
    except (OSError, asyncio.TimeoutError) as e:
        raise FileTransferError(ErrorKind.NETWORK_ERROR, e) from e
