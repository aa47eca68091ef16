"""
Peer handshake.

The handshake is a message consisting of the following parts as described in the peer protocol:

-length of the protocol string (BitTorrent protocol) which is 19 (1 byte)
-the string BitTorrent protocol (19 bytes)
-eight reserved bytes, which are all set to zero (8 bytes)
-sha1 infohash (20 bytes) (NOT the hexadecimal representation, which is 40 bytes long)
-peer id (20 bytes)

The peer answers with a message of the same shape.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass

from torwire.config import DEFAULT_HANDSHAKE_TIMEOUT, PEER_ID_LEN_BYTES
from torwire.errors import (HandshakeTimeoutError, NetworkError, PeerClosedError,
                            ProtocolViolationError)
from torwire.torrent import Torrent

PROTOCOL_STRING = b'BitTorrent protocol'
PROTOCOL_STRING_LEN = len(PROTOCOL_STRING)
RESERVED_LEN_BYTES = 8
HANDSHAKE_LEN_BYTES = 1 + PROTOCOL_STRING_LEN + RESERVED_LEN_BYTES + 2 * PEER_ID_LEN_BYTES


class HandshakeState(enum.Enum):
    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    SENDING = 'sending'
    AWAITING_REPLY = 'awaiting_reply'
    VERIFIED = 'verified'
    FAILED = 'failed'


@dataclass(frozen=True)
class PeerHandshake:
    reserved: bytes
    info_hash: bytes
    peer_id: bytes


def build_handshake(info_hash: bytes, peer_id: bytes) -> bytes:
    if len(info_hash) != PEER_ID_LEN_BYTES:
        raise ValueError(f"info_hash must be {PEER_ID_LEN_BYTES} bytes, got {len(info_hash)}")
    if len(peer_id) != PEER_ID_LEN_BYTES:
        raise ValueError(f"peer_id must be {PEER_ID_LEN_BYTES} bytes, got {len(peer_id)}")

    message = PROTOCOL_STRING_LEN.to_bytes(1, byteorder='big')
    message += PROTOCOL_STRING
    message += bytes(RESERVED_LEN_BYTES)
    message += info_hash
    message += peer_id
    return message


def parse_handshake(data: bytes) -> PeerHandshake:
    """
    Only the length byte and the protocol string are checked.
    Reserved bits are extension flags and the ids are returned as sent.
    """
    if len(data) != HANDSHAKE_LEN_BYTES:
        raise ProtocolViolationError(f"Invalid handshake response: expected {HANDSHAKE_LEN_BYTES} bytes, got {len(data)}")
    if data[0] != PROTOCOL_STRING_LEN or data[1:1 + PROTOCOL_STRING_LEN] != PROTOCOL_STRING:
        raise ProtocolViolationError("Invalid handshake response")

    reserved_start = 1 + PROTOCOL_STRING_LEN
    info_hash_start = reserved_start + RESERVED_LEN_BYTES
    peer_id_start = info_hash_start + PEER_ID_LEN_BYTES
    return PeerHandshake(
        reserved=data[reserved_start:info_hash_start],
        info_hash=data[info_hash_start:peer_id_start],
        peer_id=data[peer_id_start:],
    )


class PeerConnection:
    """
    One TCP stream to one peer, used for exactly one handshake.

    Create it with `await PeerConnection.open(...)`. Closing the stream is the
    caller's job, also after a timeout; use `async with` to have it done for you.
    """

    def __init__(self, ip: str, port: int, info_hash: bytes, peer_id: bytes):
        self.ip = ip
        self.port = port
        self.info_hash = info_hash
        self.peer_id = peer_id
        self.reader: asyncio.StreamReader | None = None
        self.writer: asyncio.StreamWriter | None = None
        self.state = HandshakeState.CONNECTING

    @property
    def peer_addr(self) -> str:
        return f'{self.ip}:{self.port}'

    @classmethod
    async def open(cls, ip: str, port: int, info_hash: bytes, peer_id: bytes) -> 'PeerConnection':
        conn = cls(ip, port, info_hash, peer_id)
        await conn.connect()
        return conn

    async def connect(self):
        logging.info(f"Attempting to connect to peer: {self.peer_addr}")
        try:
            self.reader, self.writer = await asyncio.open_connection(self.ip, self.port)
        except OSError as e:
            # Refused, unreachable and DNS failures all end up here.
            self.state = HandshakeState.FAILED
            raise NetworkError(f"Could not connect to {self.peer_addr}: {e}") from e
        self.state = HandshakeState.CONNECTED
        logging.info(f"Peer connection established: {self.peer_addr}")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        if self.writer is None:
            return
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except OSError as e:
            logging.debug(f"error while closing connection to {self.peer_addr}: {e}")

    async def _send_handshake(self):
        self.state = HandshakeState.SENDING
        try:
            self.writer.write(build_handshake(self.info_hash, self.peer_id))
            await self.writer.drain()
        except OSError as e:
            raise NetworkError(f"Error writing handshake to {self.peer_addr}: {e}") from e
        logging.info("Handshake sent")

    async def _recv_handshake(self) -> bytes:
        # Due to TCP chunking the reply may come in several pieces, loop until we have all of it.
        self.state = HandshakeState.AWAITING_REPLY
        response = b''
        while len(response) < HANDSHAKE_LEN_BYTES:
            try:
                chunk = await self.reader.read(HANDSHAKE_LEN_BYTES - len(response))
            except OSError as e:
                raise NetworkError(f"Error reading from {self.peer_addr}: {e}") from e
            if not chunk:
                raise PeerClosedError(
                    f"Connection closed by peer {self.peer_addr} after {len(response)} of {HANDSHAKE_LEN_BYTES} bytes")
            response += chunk
            logging.info(f"Read {len(chunk)} bytes, total: {len(response)}")
        return response

    async def _exchange(self, check_info_hash: bool) -> PeerHandshake:
        await self._send_handshake()
        peer_handshake = parse_handshake(await self._recv_handshake())
        if check_info_hash and peer_handshake.info_hash != self.info_hash:
            raise ProtocolViolationError(
                f"Info hash mismatch. Expected {self.info_hash.hex()}, got {peer_handshake.info_hash.hex()}")
        return peer_handshake

    async def handshake(self, timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
                        check_info_hash: bool = False) -> PeerHandshake:
        """
        Send our handshake and read the peer's, all within `timeout` seconds.

        The peer's echoed info hash is only compared with ours when check_info_hash is set.
        """
        if self.state is not HandshakeState.CONNECTED:
            raise RuntimeError(f"cannot handshake, connection is {self.state.value}")

        logging.info(f"Starting handshake with {self.peer_addr}")
        try:
            peer_handshake = await asyncio.wait_for(self._exchange(check_info_hash), timeout=timeout)
        except asyncio.TimeoutError as e:
            self.state = HandshakeState.FAILED
            raise HandshakeTimeoutError(f"Handshake with {self.peer_addr} timed out after {timeout}s") from e
        except Exception:
            self.state = HandshakeState.FAILED
            raise

        self.state = HandshakeState.VERIFIED
        # Log the remote peer id as hexadecimal.
        logging.info(f"Handshake successful. Peer ID: {peer_handshake.peer_id.hex()}")
        return peer_handshake


async def handshake_with_peer(peer, torrent: Torrent, peer_id: bytes,
                              timeout: float = DEFAULT_HANDSHAKE_TIMEOUT) -> PeerHandshake:
    """Open a connection to `peer` (anything with .ip and .port), handshake, and close it again."""
    conn = await PeerConnection.open(peer.ip, peer.port, torrent.info_hash, peer_id)
    async with conn:
        return await conn.handshake(timeout=timeout)
