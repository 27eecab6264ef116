"""Application-wide configuration constants."""

import ipaddress
import platform
from pathlib import Path

APP_NAME = "CrossShare"

# --- Discovery ---
SERVICE_TYPE = "_fileshare._tcp"
SERVICE_DOMAIN = "local."
RESOLVE_TIMEOUT = 5  # seconds

# Advertised names carry a role tag so peers can tell our records from theirs
DEVICE_ROLE_TAG = "Mac"

# --- Networking ---
API_HOST = "127.0.0.1"
API_PORT = 8765
LISTEN_HOST = "0.0.0.0"
SERVICE_PORT = 8080

CONNECT_TIMEOUT = 30  # seconds
TRANSFER_TIMEOUT = 300  # seconds without progress before a session is dropped
SESSION_HISTORY = 100  # finished sessions kept for listing

# --- Transfer ---
CHUNK_SIZE = 4096
METADATA_DELIMITER = "|"

# --- Storage ---
DEFAULT_SAVE_DIR = str(Path.home() / "Downloads" / APP_NAME)


def generate_device_name(role_tag: str = DEVICE_ROLE_TAG) -> str:
    """Name this host advertises under, e.g. ``Mac-studio``."""
    host = platform.node() or "localhost"
    return f"{role_tag}-{host.split('.')[0]}"


DEVICE_NAME = generate_device_name()


def is_valid_ip_address(address: str) -> bool:
    try:
        ipaddress.ip_address(address)
    except ValueError:
        return False
    return True


def is_valid_port(port: int) -> bool:
    return isinstance(port, int) and not isinstance(port, bool) and 1 <= port <= 65535
