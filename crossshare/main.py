"""
CrossShare FastAPI application entry point.

Constructs the node, starts the transfer listener and discovery on startup,
serves the REST API and the WebSocket event stream for the UI shell.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket

from crossshare.api.routes import router
from crossshare.api.websocket import ConnectionManager
from crossshare.config import API_HOST, API_PORT, APP_NAME
from crossshare.node import CrossShareNode
from crossshare.transfer.progress import QueuedProgressSink

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def default_node(sink: QueuedProgressSink) -> CrossShareNode:
    return CrossShareNode(sink=sink)


def create_app(node_factory=default_node) -> FastAPI:
    """Build the app; ``node_factory(sink)`` supplies the node at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start/stop the node."""
        logger.info(f"Starting {APP_NAME} services...")

        ws_manager = ConnectionManager()
        sink = QueuedProgressSink(ws_manager.handle_event)
        node = node_factory(sink)
        app.state.ws_manager = ws_manager
        app.state.sink = sink
        app.state.node = node

        try:
            sink.start()
            node.browser.on_peer_change(ws_manager.handle_peer_event)
            node.advertiser.on_event(ws_manager.handle_event)
            await node.start()
        except Exception as e:
            logger.error(f"Startup failed: {e}", exc_info=True)
            await node.stop()
            await sink.stop()
            raise

        logger.info(
            f"{APP_NAME} ready: "
            f"API: {API_HOST}:{API_PORT}, "
            f"Receiver port: {node.engine.port}"
        )
        try:
            yield
        finally:
            logger.info(f"Shutting down {APP_NAME} services...")
            await node.stop()
            await sink.stop()

    app = FastAPI(title=APP_NAME, version="1.0.0", lifespan=lifespan)
    app.include_router(router)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        ws_manager: ConnectionManager = websocket.app.state.ws_manager
        await ws_manager.serve(websocket)

    return app


app = create_app()


def main() -> None:
    import uvicorn

    uvicorn.run(
        app,
        host=API_HOST,
        port=API_PORT,
        log_level="info",
    )


if __name__ == "__main__":
    main()
