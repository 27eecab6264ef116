"""
TCP-based file transfer service.

Drives the send and receive state machines for a single connection:
length-prefixed metadata followed by the raw payload, written one chunk at
a time with each write drained before the next one starts.
"""

import asyncio
import logging
import os
from pathlib import Path

from crossshare.config import (
    CHUNK_SIZE,
    CONNECT_TIMEOUT,
    METADATA_DELIMITER,
    TRANSFER_TIMEOUT,
    is_valid_ip_address,
    is_valid_port,
)
from crossshare.transfer.codec import encode_frame_head, read_header, read_metadata
from crossshare.transfer.errors import ErrorKind, FileTransferError
from crossshare.transfer.models import TransferSession, TransferState
from crossshare.transfer.progress import ProgressSink, SessionReporter

logger = logging.getLogger(__name__)


# --- Stream helpers ---

async def _write(
    writer: asyncio.StreamWriter, data: bytes, timeout: float | None
) -> None:
    """Write and wait until the transport has taken the bytes."""
    try:
        writer.write(data)
        await asyncio.wait_for(writer.drain(), timeout)
    except (OSError, asyncio.TimeoutError) as e:
        raise FileTransferError(ErrorKind.NETWORK_ERROR, e) from e


async def _close(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await writer.wait_closed()
    except Exception:
        pass


def validate_destination(address: str, port: int) -> None:
    """Pre-flight checks run before any socket is opened."""
    if not is_valid_ip_address(address):
        raise FileTransferError(ErrorKind.INVALID_IP_ADDRESS, repr(address))
    if not is_valid_port(port):
        raise FileTransferError(ErrorKind.INVALID_PORT, repr(port))


async def _connect(
    address: str, port: int, timeout: float | None
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(address, port), timeout
        )
    except (OSError, asyncio.TimeoutError) as e:
        raise FileTransferError(ErrorKind.CONNECTION_FAILED, e) from e

    # drain() only returns once the buffer is empty, so every chunk is
    # handed to the kernel before the next one is read from disk
    transport = getattr(writer, "transport", None)
    if transport is not None:
        transport.set_write_buffer_limits(high=0)
    return reader, writer


def persist_file(save_dir: str | os.PathLike, file_name: str, data: bytes) -> Path:
    """Write a received file into ``save_dir`` under its base name."""
    name = os.path.basename(file_name.replace("\\", "/"))
    if name in ("", ".", ".."):
        raise FileTransferError(
            ErrorKind.FILE_WRITE_ERROR, f"unusable file name {file_name!r}"
        )
    directory = Path(save_dir)
    try:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        path.write_bytes(data)
    except OSError as e:
        raise FileTransferError(ErrorKind.FILE_WRITE_ERROR, e) from e
    return path


# --- Send ---

async def send_file(
    session: TransferSession,
    file_path: str,
    sink: ProgressSink | None = None,
    chunk_size: int = CHUNK_SIZE,
    delimiter: str = METADATA_DELIMITER,
    connect_timeout: float | None = CONNECT_TIMEOUT,
    transfer_timeout: float | None = TRANSFER_TIMEOUT,
) -> TransferSession:
    """
    Send a single file to a peer.

    Args:
        session: TransferSession for this send (mutated in-place).
        file_path: Local path of the file to send.
        sink: ProgressSink notified of start, progress and completion.
        chunk_size: Maximum bytes per payload write.

    Never raises for transfer failures; the outcome is on ``session`` and has
    been reported to ``sink`` exactly once. Cancellation is reported as a
    network error and then propagates.
    """
    reporter = SessionReporter(session, sink)
    writer: asyncio.StreamWriter | None = None
    if not session.file_name:
        session.file_name = os.path.basename(file_path)

    try:
        validate_destination(session.peer_address, session.peer_port)

        session.state = TransferState.CONNECTING
        logger.info(
            f"Connecting to {session.peer_address}:{session.peer_port} "
            f"to send '{session.file_name}'"
        )
        _, writer = await _connect(
            session.peer_address, session.peer_port, connect_timeout
        )

        try:
            file_size = os.stat(file_path).st_size
            f = open(file_path, "rb")
        except OSError as e:
            raise FileTransferError(ErrorKind.FILE_READ_ERROR, e) from e

        with f:
            reporter.start(session.file_name, file_size)
            header, metadata = encode_frame_head(session.file_name, file_size, delimiter)

            session.state = TransferState.SENDING_HEADER
            await _write(writer, header, transfer_timeout)

            session.state = TransferState.SENDING_METADATA
            await _write(writer, metadata, transfer_timeout)

            session.state = TransferState.SENDING_CHUNKS
            remaining = file_size
            while remaining > 0:
                try:
                    chunk = await asyncio.to_thread(f.read, min(chunk_size, remaining))
                except OSError as e:
                    raise FileTransferError(ErrorKind.FILE_READ_ERROR, e) from e
                if not chunk:
                    raise FileTransferError(
                        ErrorKind.FILE_READ_ERROR,
                        f"file ended {remaining} bytes early",
                    )
                await _write(writer, chunk, transfer_timeout)
                remaining -= len(chunk)
                reporter.advance(len(chunk))

        await _close(writer)
        writer = None
        reporter.complete()

    except FileTransferError as e:
        reporter.complete(e)
    except asyncio.CancelledError:
        reporter.complete(FileTransferError(ErrorKind.NETWORK_ERROR, "transfer cancelled"))
        raise
    except Exception as e:
        logger.error(f"Send error for {session.file_name}: {e}", exc_info=True)
        reporter.complete(FileTransferError(ErrorKind.UNKNOWN_ERROR, e))
    finally:
        if writer:
            await _close(writer)

    return session


# --- Receive ---

async def receive_file(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    session: TransferSession,
    save_dir: str | os.PathLike,
    sink: ProgressSink | None = None,
    chunk_size: int = CHUNK_SIZE,
    delimiter: str = METADATA_DELIMITER,
    transfer_timeout: float | None = TRANSFER_TIMEOUT,
) -> TransferSession:
    """
    Handle an incoming file transfer connection.

    Reads the frame head, accumulates ``file_size`` payload bytes (or whatever
    arrives before the peer closes the stream) and writes them into
    ``save_dir``. Always closes ``writer``.
    """
    reporter = SessionReporter(session, sink)

    try:
        session.state = TransferState.AWAITING_HEADER
        length = await read_header(reader, transfer_timeout)

        session.state = TransferState.AWAITING_METADATA
        file_name, file_size = await read_metadata(
            reader, length, delimiter, transfer_timeout
        )
        reporter.start(file_name, file_size)

        session.state = TransferState.RECEIVING_PAYLOAD
        received = bytearray()
        while len(received) < file_size:
            want = min(chunk_size, file_size - len(received))
            try:
                data = await asyncio.wait_for(reader.read(want), transfer_timeout)
            except (OSError, asyncio.TimeoutError) as e:
                raise FileTransferError(ErrorKind.NETWORK_ERROR, e) from e
            if not data:
                logger.warning(
                    f"Peer closed the stream after {len(received)} of "
                    f"{file_size} bytes of '{file_name}'"
                )
                break
            received += data
            reporter.advance(len(data))

        path = await asyncio.to_thread(persist_file, save_dir, file_name, bytes(received))
        logger.info(f"Saved '{file_name}' to {path}")
        reporter.complete()

    except FileTransferError as e:
        reporter.complete(e)
    except asyncio.CancelledError:
        reporter.complete(FileTransferError(ErrorKind.NETWORK_ERROR, "transfer cancelled"))
        raise
    except Exception as e:
        logger.error(f"Receive error: {e}", exc_info=True)
        reporter.complete(FileTransferError(ErrorKind.UNKNOWN_ERROR, e))
    finally:
        await _close(writer)

    return session
