import asyncio
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, patch

from crossshare.transfer.codec import encode_frame_head, encode_header
from crossshare.transfer.errors import ErrorKind, FileTransferError
from crossshare.transfer.models import TransferDirection, TransferSession, TransferState
from crossshare.transfer.service import persist_file, receive_file, send_file

from fakes import BrokenReader, FakeWriter, RecordingSink, make_reader


def outbound(address="192.168.1.20", port=8080) -> TransferSession:
    return TransferSession(direction=TransferDirection.SEND, peer_address=address, peer_port=port)


def inbound() -> TransferSession:
    return TransferSession(direction=TransferDirection.RECEIVE, peer_address="192.168.1.30")


class TransferTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.save_dir = self.tmp / "received"

    def tearDown(self):
        self._tmp.cleanup()

    def make_file(self, name: str, size: int) -> Path:
        path = self.tmp / name
        path.write_bytes(os.urandom(size))
        return path

    def connect_to(self, writer):
        return patch.object(
            asyncio, "open_connection", AsyncMock(return_value=(make_reader(b""), writer))
        )


class SendFileTest(TransferTestCase):

    async def test_photo_is_sent_as_header_metadata_and_three_chunks(self):
        source = self.make_file("photo.jpg", 10_000)
        writer = FakeWriter()
        sink = RecordingSink()

        with self.connect_to(writer):
            session = await send_file(outbound(), str(source), sink, chunk_size=4096)

        self.assertEqual(
            [len(w) for w in writer.writes], [4, len(b"photo.jpg|10000"), 4096, 4096, 1808]
        )
        self.assertEqual(writer.writes[1], b"photo.jpg|10000")
        self.assertTrue(writer.closed)
        self.assertEqual(session.state, TransferState.COMPLETED)
        self.assertEqual(session.bytes_transferred, 10_000)
        self.assertEqual(sink.starts, [("start", "photo.jpg", 10_000)])
        self.assertEqual(sink.progress, [0.4096, 0.8192, 1.0])
        self.assertEqual(sink.completions, [("complete", "photo.jpg", None)])

        # the receiver rebuilds the same bytes from what went over the wire
        receive_sink = RecordingSink()
        received = await receive_file(
            make_reader(writer.data), FakeWriter(), inbound(), self.save_dir, receive_sink
        )
        self.assertEqual(received.state, TransferState.COMPLETED)
        self.assertEqual((self.save_dir / "photo.jpg").read_bytes(), source.read_bytes())
        self.assertEqual(receive_sink.completions, [("complete", "photo.jpg", None)])

    async def test_invalid_ip_fails_before_any_socket(self):
        source = self.make_file("a.txt", 10)
        sink = RecordingSink()
        opener = AsyncMock()
        with patch.object(asyncio, "open_connection", opener):
            session = await send_file(outbound(address="not-an-ip"), str(source), sink)

        opener.assert_not_called()
        self.assertEqual(session.error, ErrorKind.INVALID_IP_ADDRESS)
        self.assertEqual(len(sink.completions), 1)
        self.assertEqual(sink.completions[0][2].kind, ErrorKind.INVALID_IP_ADDRESS)
        self.assertEqual(sink.starts, [])

    async def test_port_out_of_range(self):
        source = self.make_file("a.txt", 10)
        for port in (0, 65536):
            sink = RecordingSink()
            opener = AsyncMock()
            with patch.object(asyncio, "open_connection", opener):
                session = await send_file(outbound(port=port), str(source), sink)
            opener.assert_not_called()
            self.assertEqual(session.error, ErrorKind.INVALID_PORT)
            self.assertEqual(len(sink.completions), 1)

    async def test_connection_refused(self):
        source = self.make_file("a.txt", 10)
        sink = RecordingSink()
        opener = AsyncMock(side_effect=ConnectionRefusedError("refused"))
        with patch.object(asyncio, "open_connection", opener):
            session = await send_file(outbound(), str(source), sink)

        self.assertEqual(session.state, TransferState.FAILED)
        self.assertEqual(session.error, ErrorKind.CONNECTION_FAILED)
        self.assertEqual(len(sink.completions), 1)
        self.assertEqual(sink.starts, [])

    async def test_missing_file_is_read_error(self):
        writer = FakeWriter()
        sink = RecordingSink()
        with self.connect_to(writer):
            session = await send_file(outbound(), str(self.tmp / "nope.bin"), sink)

        self.assertEqual(session.error, ErrorKind.FILE_READ_ERROR)
        self.assertEqual(writer.writes, [])
        self.assertTrue(writer.closed)
        self.assertEqual(sink.completions_for("nope.bin")[0][2].kind, ErrorKind.FILE_READ_ERROR)

    async def test_chunk_write_failure(self):
        source = self.make_file("big.bin", 10_000)
        writer = FakeWriter(fail_on_write=3)  # header, metadata, first chunk succeed
        sink = RecordingSink()
        with self.connect_to(writer):
            session = await send_file(outbound(), str(source), sink, chunk_size=4096)

        self.assertEqual(session.error, ErrorKind.NETWORK_ERROR)
        self.assertEqual(sink.progress, [0.4096])
        self.assertEqual(len(sink.completions), 1)
        self.assertTrue(writer.closed)

    async def test_empty_file(self):
        source = self.make_file("empty.txt", 0)
        writer = FakeWriter()
        sink = RecordingSink()
        with self.connect_to(writer):
            session = await send_file(outbound(), str(source), sink)

        self.assertEqual(writer.writes, [encode_header(len(b"empty.txt|0")), b"empty.txt|0"])
        self.assertEqual(session.state, TransferState.COMPLETED)
        self.assertEqual(sink.progress, [])
        self.assertEqual(sink.completions, [("complete", "empty.txt", None)])

    async def test_cancel_mid_transfer_completes_once(self):
        source = self.make_file("slow.bin", 10_000)
        writer = FakeWriter(block_drain=True)
        sink = RecordingSink()
        session = outbound()
        with self.connect_to(writer):
            task = asyncio.create_task(send_file(session, str(source), sink))
            while not writer.writes:
                await asyncio.sleep(0)
            task.cancel()
            with self.assertRaises(asyncio.CancelledError):
                await task

        self.assertEqual(session.error, ErrorKind.NETWORK_ERROR)
        self.assertEqual(len(sink.completions), 1)
        self.assertTrue(writer.closed)


class ReceiveFileTest(TransferTestCase):

    def frame(self, name: str, payload: bytes) -> bytes:
        header, metadata = encode_frame_head(name, len(payload))
        return header + metadata + payload

    async def test_receives_and_persists(self):
        payload = os.urandom(5000)
        sink = RecordingSink()
        writer = FakeWriter()
        session = await receive_file(
            make_reader(self.frame("doc.pdf", payload)), writer, inbound(), self.save_dir, sink,
            chunk_size=4096,
        )

        self.assertEqual(session.state, TransferState.COMPLETED)
        self.assertEqual((self.save_dir / "doc.pdf").read_bytes(), payload)
        self.assertEqual(sink.starts, [("start", "doc.pdf", 5000)])
        self.assertEqual(sink.progress[-1], 1.0)
        self.assertEqual(sink.progress, sorted(sink.progress))
        self.assertTrue(writer.closed)

    async def test_empty_payload(self):
        sink = RecordingSink()
        session = await receive_file(
            make_reader(self.frame("empty.txt", b"")), FakeWriter(), inbound(), self.save_dir, sink
        )
        self.assertEqual(session.state, TransferState.COMPLETED)
        self.assertEqual((self.save_dir / "empty.txt").read_bytes(), b"")
        self.assertEqual(sink.progress, [])
        self.assertEqual(sink.completions, [("complete", "empty.txt", None)])

    async def test_ignores_bytes_past_declared_size(self):
        header, metadata = encode_frame_head("a.txt", 3)
        session = await receive_file(
            make_reader(header + metadata + b"abcdef"), FakeWriter(), inbound(), self.save_dir
        )
        self.assertEqual(session.state, TransferState.COMPLETED)
        self.assertEqual((self.save_dir / "a.txt").read_bytes(), b"abc")

    async def test_short_header(self):
        sink = RecordingSink()
        session = await receive_file(
            make_reader(b"\x00\x00"), FakeWriter(), inbound(), self.save_dir, sink
        )
        self.assertEqual(session.error, ErrorKind.INVALID_METADATA)
        self.assertEqual(len(sink.completions), 1)
        self.assertEqual(sink.starts, [])

    async def test_metadata_without_delimiter(self):
        sink = RecordingSink()
        metadata = b"report.pdf999"
        session = await receive_file(
            make_reader(encode_header(len(metadata)) + metadata),
            FakeWriter(), inbound(), self.save_dir, sink,
        )
        self.assertEqual(session.error, ErrorKind.INVALID_METADATA)
        self.assertEqual(len(sink.completions), 1)
        self.assertFalse(self.save_dir.exists())

    async def test_read_failure_mid_payload(self):
        reader = BrokenReader()
        header, metadata = encode_frame_head("movie.mp4", 100)
        reader.feed_data(header + metadata)
        sink = RecordingSink()

        session = await receive_file(reader, FakeWriter(), inbound(), self.save_dir, sink)

        self.assertEqual(session.error, ErrorKind.NETWORK_ERROR)
        self.assertEqual(sink.starts, [("start", "movie.mp4", 100)])
        self.assertEqual(sink.completions_for("movie.mp4")[0][2].kind, ErrorKind.NETWORK_ERROR)
        self.assertEqual(len(sink.completions), 1)

    async def test_stream_closed_before_full_payload_keeps_what_arrived(self):
        header, metadata = encode_frame_head("part.bin", 100)
        sink = RecordingSink()
        with self.assertLogs("crossshare.transfer.service", level="WARNING"):
            session = await receive_file(
                make_reader(header + metadata + b"x" * 40),
                FakeWriter(), inbound(), self.save_dir, sink,
            )
        self.assertEqual(session.state, TransferState.COMPLETED)
        self.assertEqual((self.save_dir / "part.bin").read_bytes(), b"x" * 40)
        self.assertEqual(len(sink.completions), 1)

    async def test_cancel_mid_receive_completes_once_and_propagates(self):
        header, metadata = encode_frame_head("movie.mp4", 1000)
        reader = make_reader(header + metadata + b"x" * 10, eof=False)
        writer = FakeWriter()
        sink = RecordingSink()
        session = inbound()

        task = asyncio.create_task(
            receive_file(reader, writer, session, self.save_dir, sink)
        )
        while session.bytes_transferred < 10:
            await asyncio.sleep(0)
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task

        self.assertEqual(session.error, ErrorKind.NETWORK_ERROR)
        self.assertEqual(len(sink.completions), 1)
        self.assertTrue(writer.closed)
        self.assertFalse(self.save_dir.exists())

    async def test_path_components_are_stripped(self):
        session = await receive_file(
            make_reader(self.frame("../../etc/evil.txt", b"hi")),
            FakeWriter(), inbound(), self.save_dir,
        )
        self.assertEqual(session.state, TransferState.COMPLETED)
        self.assertEqual((self.save_dir / "evil.txt").read_bytes(), b"hi")

    async def test_unwritable_destination(self):
        blocker = self.tmp / "not-a-dir"
        blocker.write_bytes(b"")
        sink = RecordingSink()
        session = await receive_file(
            make_reader(self.frame("a.txt", b"abc")), FakeWriter(), inbound(), blocker, sink
        )
        self.assertEqual(session.error, ErrorKind.FILE_WRITE_ERROR)
        self.assertEqual(len(sink.completions), 1)


class PersistFileTest(unittest.TestCase):

    def test_rejects_unusable_names(self):
        with tempfile.TemporaryDirectory() as tmp:
            for name in ("", "..", "dir/"):
                with self.assertRaises(FileTransferError):
                    persist_file(tmp, name, b"x")


if __name__ == "__main__":
    unittest.main()
