"""REST API routes for CrossShare."""

import logging
import os

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from crossshare.config import is_valid_ip_address, is_valid_port
from crossshare.node import CrossShareNode, PeerNotFoundError
from crossshare.transfer.models import SendRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def get_node(request: Request) -> CrossShareNode:
    return request.app.state.node


# --- Device Discovery ---

@router.get("/devices")
async def list_devices(node: CrossShareNode = Depends(get_node)):
    """Return list of resolved peers."""
    return {"devices": [p.model_dump(mode="json") for p in node.get_peers()]}


@router.post("/advertise")
async def start_advertising(node: CrossShareNode = Depends(get_node)):
    published = await node.start_advertising()
    if not published:
        raise HTTPException(
            status_code=503, detail=f"Could not publish: {node.advertiser.last_error}"
        )
    return {"status": "published", "name": node.advertiser.name}


@router.post("/browse")
async def start_browsing(node: CrossShareNode = Depends(get_node)):
    if not await node.start_browsing():
        raise HTTPException(status_code=503, detail="Could not start browsing")
    return {"status": "browsing"}


# --- Transfers ---

@router.get("/transfers")
async def list_transfers(node: CrossShareNode = Depends(get_node)):
    """Return transfers in flight followed by the recently finished ones."""
    sessions = node.engine.get_sessions() + node.engine.recent_sessions()
    return {"transfers": [s.model_dump(mode="json") for s in sessions]}


@router.post("/transfers")
async def create_transfer(body: SendRequest, node: CrossShareNode = Depends(get_node)):
    """Send a local file to a discovered peer or an explicit address and port.

    No file upload is required; the backend reads the file directly from disk.
    """
    if not os.path.isfile(body.file_path):
        raise HTTPException(status_code=400, detail="File not found")

    if body.peer_name:
        try:
            session = node.send_to_peer(body.peer_name, body.file_path)
        except PeerNotFoundError:
            raise HTTPException(status_code=404, detail="Peer not found")
    else:
        if body.peer_address is None or not is_valid_ip_address(body.peer_address):
            raise HTTPException(status_code=400, detail="Invalid IP address")
        if body.peer_port is None or not is_valid_port(body.peer_port):
            raise HTTPException(status_code=400, detail="Invalid port number")
        session = node.send_file(body.peer_address, body.peer_port, body.file_path)

    return {"transfer": session.model_dump(mode="json")}


@router.post("/transfers/{session_id}/cancel")
async def cancel_transfer(session_id: str, node: CrossShareNode = Depends(get_node)):
    if node.engine.get_session(session_id) is None:
        raise HTTPException(status_code=404, detail="Transfer not found")
    cancelled = await node.engine.cancel(session_id)
    return {"status": "cancelled" if cancelled else "finished"}


# --- Settings ---

class SettingsBody(BaseModel):
    save_dir: str | None = None


@router.get("/settings")
async def get_settings(node: CrossShareNode = Depends(get_node)):
    return {
        "device_name": node.device_name,
        "port": node.engine.port,
        "save_dir": node.engine.save_dir,
    }


@router.put("/settings")
async def update_settings(body: SettingsBody, node: CrossShareNode = Depends(get_node)):
    if body.save_dir is not None:
        try:
            node.engine.save_dir = body.save_dir
        except OSError as e:
            raise HTTPException(status_code=400, detail=f"Invalid directory: {e}")
    return {"status": "updated"}
