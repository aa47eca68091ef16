import os
from dataclasses import dataclass

PEER_ID_LEN_BYTES = 20
# Azureus-style client prefix, the rest of the peer id is random.
PEER_ID_PREFIX = b'-TW0001-'

DEFAULT_LISTEN_PORT = 6881
DEFAULT_HANDSHAKE_TIMEOUT = 30.0


@dataclass(frozen=True)
class ClientConfig:
    """
    Settings the caller supplies to the tracker client and the handshake engine.

    tracker_timeout=None means wait as long as requests does by default (forever).
    """
    listen_port: int = DEFAULT_LISTEN_PORT
    handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT
    tracker_timeout: float | None = None


def generate_peer_id() -> bytes:
    """
    This is the peer id of my machine for one run of the client.
    Create it once and pass it to the tracker and handshake calls.
    """
    return PEER_ID_PREFIX + os.urandom(PEER_ID_LEN_BYTES - len(PEER_ID_PREFIX))
