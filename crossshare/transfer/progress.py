"""
Progress reporting.

The UI shell supplies a ``ProgressSink``. The state machines never talk to it
directly; each session goes through a ``SessionReporter`` which keeps the
reported progress monotonic and guarantees exactly one completion.
"""

import asyncio
import logging

from crossshare.transfer.errors import FileTransferError
from crossshare.transfer.models import TransferSession, TransferState

logger = logging.getLogger(__name__)


class ProgressSink:
    """Observer for transfer lifecycle events. Override what you need."""

    def on_start(self, file_name: str, file_size: int) -> None:
        pass

    def on_progress(self, file_name: str, fraction: float) -> None:
        pass

    def on_complete(self, file_name: str, error: FileTransferError | None) -> None:
        pass


class SessionReporter:
    """Funnels one session's events into a sink."""

    def __init__(self, session: TransferSession, sink: ProgressSink | None) -> None:
        self.session = session
        self._sink = sink or ProgressSink()
        self._started = False
        self._completed = False
        self._last_fraction = 0.0

    @property
    def completed(self) -> bool:
        return self._completed

    def start(self, file_name: str, file_size: int) -> None:
        self.session.file_name = file_name
        self.session.file_size = file_size
        if self._started or self._completed:
            return
        self._started = True
        self._notify(self._sink.on_start, file_name, file_size)

    def advance(self, byte_count: int) -> None:
        """Record ``byte_count`` more bytes moved and report the new fraction."""
        if self._completed or byte_count <= 0:
            return
        session = self.session
        session.bytes_transferred += byte_count
        fraction = session.progress
        if fraction < self._last_fraction:
            fraction = self._last_fraction
        self._last_fraction = fraction
        self._notify(self._sink.on_progress, session.file_name, fraction)

    def complete(self, error: FileTransferError | None = None) -> bool:
        """Report the terminal event. Returns False if already reported."""
        if self._completed:
            logger.debug(
                f"Ignoring second completion for session {self.session.session_id}"
            )
            return False
        self._completed = True

        session = self.session
        if error is None:
            session.state = TransferState.COMPLETED
            logger.info(
                f"Transfer of '{session.file_name}' ({session.direction.value}) completed"
            )
        else:
            session.state = TransferState.FAILED
            session.error = error.kind
            session.error_message = str(error)
            logger.error(
                f"Transfer of '{session.file_name}' ({session.direction.value}) "
                f"with {session.peer_address} failed: {error}"
            )
        self._notify(self._sink.on_complete, session.file_name, error)
        return True

    def _notify(self, method, *args) -> None:
        try:
            method(*args)
        except Exception as e:
            logger.error(f"Progress sink error: {e}", exc_info=True)


class QueuedProgressSink(ProgressSink):
    """
    Marshals notifications from any session onto one queue.

    A single consumer task drains the queue and hands each event to
    ``handler(event_type, data)``, so the handler never runs concurrently
    with itself.
    """

    def __init__(self, handler) -> None:
        self._handler = handler
        self._queue: asyncio.Queue[tuple[str, dict]] = asyncio.Queue()
        self._task: asyncio.Task | None = None

    def on_start(self, file_name: str, file_size: int) -> None:
        self._queue.put_nowait(
            ("transfer_start", {"file_name": file_name, "file_size": file_size})
        )

    def on_progress(self, file_name: str, fraction: float) -> None:
        self._queue.put_nowait(
            ("transfer_progress", {"file_name": file_name, "progress": fraction})
        )

    def on_complete(self, file_name: str, error: FileTransferError | None) -> None:
        self._queue.put_nowait(
            (
                "transfer_complete",
                {
                    "file_name": file_name,
                    "error": error.kind.value if error else None,
                    "error_message": str(error) if error else None,
                },
            )
        )

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._pump())

    async def stop(self, drain_timeout: float = 1.0) -> None:
        """Deliver what is already queued (up to ``drain_timeout``), then stop."""
        if self._task:
            if not self._task.done():
                try:
                    await asyncio.wait_for(self.join(), drain_timeout)
                except asyncio.TimeoutError:
                    logger.warning(
                        f"Dropping {self._queue.qsize()} undelivered transfer events"
                    )
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def join(self) -> None:
        """Wait until every queued event has been handled."""
        await self._queue.join()

    async def _pump(self) -> None:
        while True:
            event_type, data = await self._queue.get()
            try:
                await self._handler(event_type, data)
            except Exception as e:
                logger.error(f"Event handler error: {e}")
            finally:
                self._queue.task_done()
