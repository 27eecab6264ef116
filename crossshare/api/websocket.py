"""
WebSocket event stream for the UI shell.

Transfer events arrive from ``QueuedProgressSink`` and peer events from
``PeerBrowser``; both are fanned out to every connected client as
``{"event": ..., "data": ...}`` JSON text frames.
"""

import asyncio
import json
import logging

from fastapi import WebSocket, WebSocketDisconnect

from crossshare.discovery.models import PeerRecord

logger = logging.getLogger(__name__)


def _client_label(websocket: WebSocket) -> str:
    client = getattr(websocket, "client", None)
    if client is None:
        return "unknown client"
    return f"{client.host}:{client.port}"


class ConnectionManager:
    """Tracks UI clients and fans events out to them."""

    def __init__(self) -> None:
        self._connections: list[WebSocket] = []
        self._lock = asyncio.Lock()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections.append(websocket)
        logger.info(
            f"UI client {_client_label(websocket)} connected. Total: {self.connection_count}"
        )

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            if websocket in self._connections:
                self._connections.remove(websocket)
        logger.info(
            f"UI client {_client_label(websocket)} disconnected. Total: {self.connection_count}"
        )

    async def serve(self, websocket: WebSocket) -> None:
        """Hold one client connection open until it goes away."""
        await self.connect(websocket)
        try:
            while True:
                # clients only listen; anything they send is discarded
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            await self.disconnect(websocket)

    async def broadcast(self, event: str, data: dict) -> None:
        message = json.dumps({"event": event, "data": data})
        async with self._lock:
            alive: list[WebSocket] = []
            for ws in self._connections:
                try:
                    await ws.send_text(message)
                except Exception as e:
                    logger.warning(
                        f"Dropping UI client {_client_label(ws)} after failed "
                        f"'{event}' delivery: {e}"
                    )
                    continue
                alive.append(ws)
            self._connections = alive

    async def handle_event(self, event_type: str, data: dict) -> None:
        """Handler for QueuedProgressSink and Advertiser events."""
        await self.broadcast(event_type, data)

    async def handle_peer_event(self, event_type: str, peer: PeerRecord) -> None:
        """Handler compatible with PeerBrowser.on_peer_change()."""
        await self.broadcast(event_type, peer.model_dump(mode="json"))
