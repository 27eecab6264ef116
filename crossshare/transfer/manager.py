"""
Transfer Engine: owns the listening socket and every live session.

The accept loop hands each inbound connection to its own task running the
receive state machine; each outbound send runs in its own task as well.
"""

import asyncio
import logging
import os
from collections import deque

from crossshare.config import (
    CHUNK_SIZE,
    CONNECT_TIMEOUT,
    DEFAULT_SAVE_DIR,
    LISTEN_HOST,
    METADATA_DELIMITER,
    SERVICE_PORT,
    SESSION_HISTORY,
    TRANSFER_TIMEOUT,
)
from crossshare.transfer.errors import ErrorKind, FileTransferError
from crossshare.transfer.models import TransferDirection, TransferSession
from crossshare.transfer.progress import ProgressSink
from crossshare.transfer.service import receive_file, send_file

logger = logging.getLogger(__name__)


class TransferEngine:
    """Runs the transfer listener and all send/receive sessions."""

    def __init__(
        self,
        sink: ProgressSink | None = None,
        host: str = LISTEN_HOST,
        port: int = SERVICE_PORT,
        save_dir: str = DEFAULT_SAVE_DIR,
        chunk_size: int = CHUNK_SIZE,
        delimiter: str = METADATA_DELIMITER,
        connect_timeout: float | None = CONNECT_TIMEOUT,
        transfer_timeout: float | None = TRANSFER_TIMEOUT,
        history: int = SESSION_HISTORY,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.sink = sink or ProgressSink()
        self._host = host
        self._port = port
        self._save_dir = save_dir
        self._chunk_size = chunk_size
        self._delimiter = delimiter
        self._connect_timeout = connect_timeout
        self._transfer_timeout = transfer_timeout
        # live sessions only; finished ones move to the bounded history
        self._sessions: dict[str, TransferSession] = {}
        self._history: deque[TransferSession] = deque(maxlen=history)
        self._tasks: dict[str, asyncio.Task] = {}
        self._server: asyncio.Server | None = None

    @property
    def save_dir(self) -> str:
        return self._save_dir

    @save_dir.setter
    def save_dir(self, path: str) -> None:
        os.makedirs(path, exist_ok=True)
        self._save_dir = path

    @property
    def port(self) -> int:
        """The bound listener port (the configured one until started)."""
        if self._server and self._server.sockets:
            return self._server.sockets[0].getsockname()[1]
        return self._port

    @property
    def running(self) -> bool:
        return self._server is not None

    async def start(self) -> None:
        """Bind the listener. Failing to bind is fatal and propagates."""
        if self._server:
            return
        try:
            self._server = await asyncio.start_server(
                self._handle_incoming_connection, self._host, self._port
            )
        except OSError as e:
            logger.error(f"Could not bind transfer listener to {self._host}:{self._port}: {e}")
            raise FileTransferError(ErrorKind.SERVER_ERROR, e) from e
        logger.info(f"Transfer receiver listening on {self._host}:{self.port}")

    async def stop(self) -> None:
        """Stop the listener and abort every live session."""
        server, self._server = self._server, None
        if server:
            server.close()

        # live handlers keep wait_closed() pending, so abort them first
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        if server:
            await server.wait_closed()

        logger.info("Transfer engine stopped")

    def get_sessions(self) -> list[TransferSession]:
        """Sessions still in flight."""
        return list(self._sessions.values())

    def recent_sessions(self) -> list[TransferSession]:
        """The most recently finished sessions, oldest first."""
        return list(self._history)

    def get_session(self, session_id: str) -> TransferSession | None:
        session = self._sessions.get(session_id)
        if session is None:
            session = next((s for s in self._history if s.session_id == session_id), None)
        return session

    def send_file(self, address: str, port: int, file_path: str) -> TransferSession:
        """
        Start sending ``file_path`` to ``address:port`` in the background.

        Returns the new session right away; validation failures are reported
        through the sink like any other failure.
        """
        session = TransferSession(
            direction=TransferDirection.SEND,
            peer_address=address,
            peer_port=port,
            file_name=os.path.basename(file_path),
        )
        self._spawn(
            session,
            send_file(
                session,
                file_path,
                sink=self.sink,
                chunk_size=self._chunk_size,
                delimiter=self._delimiter,
                connect_timeout=self._connect_timeout,
                transfer_timeout=self._transfer_timeout,
            ),
        )
        return session

    async def wait(self, session_id: str) -> TransferSession | None:
        """Wait for a session to finish and return it."""
        session = self.get_session(session_id)
        task = self._tasks.get(session_id)
        if task:
            await asyncio.gather(task, return_exceptions=True)
        return session

    async def wait_all(self) -> None:
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def cancel(self, session_id: str) -> bool:
        """Abort a live session; it reports its own completion."""
        task = self._tasks.get(session_id)
        if not task or task.done():
            return False
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return True

    def _spawn(self, session: TransferSession, coro) -> asyncio.Task:
        self._sessions[session.session_id] = session
        task = asyncio.create_task(coro)
        self._tasks[session.session_id] = task
        task.add_done_callback(lambda _: self._retire(session))
        return task

    def _retire(self, session: TransferSession) -> None:
        self._tasks.pop(session.session_id, None)
        if self._sessions.pop(session.session_id, None) is not None:
            self._history.append(session)

    async def _handle_incoming_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Handle a new incoming TCP connection for file reception."""
        peer = writer.get_extra_info("peername") or ("", 0)
        logger.info(f"New connection from {peer[0]}:{peer[1]}")
        session = TransferSession(
            direction=TransferDirection.RECEIVE,
            peer_address=peer[0],
            peer_port=peer[1],
        )
        task = self._spawn(
            session,
            receive_file(
                reader,
                writer,
                session,
                self._save_dir,
                sink=self.sink,
                chunk_size=self._chunk_size,
                delimiter=self._delimiter,
                transfer_timeout=self._transfer_timeout,
            ),
        )
        await asyncio.gather(task, return_exceptions=True)
