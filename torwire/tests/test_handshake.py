import asyncio

import pytest

from torwire.errors import HandshakeTimeoutError, NetworkError, PeerClosedError, ProtocolViolationError
from torwire.handshake import (HANDSHAKE_LEN_BYTES, HandshakeState, PeerConnection, build_handshake,
                               handshake_with_peer, parse_handshake)
from torwire.torrent import Torrent
from torwire.tracker import Peer

INFO_HASH = bytes(range(20))
PEER_ID = b"-TW0001-abcdefghijkl"
REMOTE_PEER_ID = b"R" * 20


def peer_reply(info_hash=INFO_HASH, reserved=bytes(8), label=b"BitTorrent protocol", length_byte=19):
    return bytes([length_byte]) + label + reserved + info_hash + REMOTE_PEER_ID


async def with_fake_peer(reply_chunks, client, received=None, close_after_reply=False):
    """
    Serve one fake peer on localhost.

    It reads our 68-byte greeting, writes `reply_chunks` one by one, then waits
    for us to hang up.
    """
    async def handle(reader, writer):
        greeting = await reader.readexactly(HANDSHAKE_LEN_BYTES)
        if received is not None:
            received.append(greeting)
        for chunk in reply_chunks:
            writer.write(chunk)
            await writer.drain()
            await asyncio.sleep(0.01)
        if close_after_reply:
            writer.write_eof()
        await reader.read()
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        return await client(port)
    finally:
        server.close()
        await server.wait_closed()


def run_handshake(reply_chunks, timeout=5.0, check_info_hash=False, received=None, close_after_reply=False,
                  connections=None):
    async def client(port):
        conn = await PeerConnection.open("127.0.0.1", port, INFO_HASH, PEER_ID)
        if connections is not None:
            connections.append(conn)
        async with conn:
            return conn, await conn.handshake(timeout=timeout, check_info_hash=check_info_hash)

    return asyncio.run(with_fake_peer(reply_chunks, client, received, close_after_reply))


def test_build_handshake():
    message = build_handshake(INFO_HASH, PEER_ID)
    assert len(message) == 68
    assert message[0] == 19
    assert message[1:20] == b"BitTorrent protocol"
    assert message[20:28] == bytes(8)
    assert message[28:48] == INFO_HASH
    assert message[48:] == PEER_ID


def test_build_handshake_rejects_bad_ids():
    with pytest.raises(ValueError):
        build_handshake(INFO_HASH[:19], PEER_ID)
    with pytest.raises(ValueError):
        build_handshake(INFO_HASH, PEER_ID + b"x")


def test_parse_handshake():
    parsed = parse_handshake(peer_reply(reserved=b"\x00" * 5 + b"\x10\x00\x05"))
    assert parsed.reserved == b"\x00" * 5 + b"\x10\x00\x05"
    assert parsed.info_hash == INFO_HASH
    assert parsed.peer_id == REMOTE_PEER_ID


@pytest.mark.parametrize("data", [
    peer_reply(length_byte=18),
    peer_reply(label=b"BitTorrent protocoL"),
    peer_reply()[:67],
])
def test_parse_handshake_invalid(data):
    with pytest.raises(ProtocolViolationError):
        parse_handshake(data)


def test_handshake_success():
    received = []
    conn, parsed = run_handshake([peer_reply()], received=received)
    assert received == [build_handshake(INFO_HASH, PEER_ID)]
    assert parsed.peer_id == REMOTE_PEER_ID
    assert parsed.info_hash == INFO_HASH
    assert conn.state is HandshakeState.VERIFIED


def test_handshake_reply_in_pieces():
    reply = peer_reply()
    conn, parsed = run_handshake([reply[:1], reply[1:30], reply[30:67], reply[67:]])
    assert parsed.peer_id == REMOTE_PEER_ID
    assert conn.state is HandshakeState.VERIFIED


def test_handshake_ignores_reserved_bytes():
    conn, parsed = run_handshake([peer_reply(reserved=b"\xff" * 8)])
    assert parsed.reserved == b"\xff" * 8
    assert conn.state is HandshakeState.VERIFIED


def test_handshake_peer_closes_early():
    connections = []
    with pytest.raises(PeerClosedError):
        run_handshake([peer_reply()[:40]], close_after_reply=True, connections=connections)
    assert connections[0].state is HandshakeState.FAILED


def test_handshake_invalid_label():
    with pytest.raises(ProtocolViolationError, match="Invalid handshake"):
        run_handshake([peer_reply(label=b"BitTorrent protocoX")])


def test_handshake_timeout():
    connections = []
    with pytest.raises(HandshakeTimeoutError):
        run_handshake([peer_reply()[:10]], timeout=0.2, connections=connections)
    assert connections[0].state is HandshakeState.FAILED


def test_echoed_info_hash_not_checked_by_default():
    other_hash = b"\xaa" * 20
    _, parsed = run_handshake([peer_reply(info_hash=other_hash)])
    assert parsed.info_hash == other_hash


def test_echoed_info_hash_checked_on_request():
    with pytest.raises(ProtocolViolationError, match="Info hash mismatch"):
        run_handshake([peer_reply(info_hash=b"\xaa" * 20)], check_info_hash=True)


def test_handshake_only_once():
    conn, _ = run_handshake([peer_reply()])
    with pytest.raises(RuntimeError):
        asyncio.run(conn.handshake())


def test_connect_refused():
    async def scenario():
        # Grab a free port, then stop listening on it.
        server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        server.close()
        await server.wait_closed()

        conn = PeerConnection("127.0.0.1", port, INFO_HASH, PEER_ID)
        assert conn.state is HandshakeState.CONNECTING
        with pytest.raises(NetworkError):
            await conn.connect()
        assert conn.state is HandshakeState.FAILED

    asyncio.run(scenario())


def test_handshake_with_peer():
    torrent = Torrent(announce="http://tracker.test/", url_list=(), name="abc", piece_length=16384,
                      pieces=(b"A" * 20,), length=0, info_hash=INFO_HASH)

    async def client(port):
        return await handshake_with_peer(Peer("127.0.0.1", port), torrent, PEER_ID, timeout=5.0)

    parsed = asyncio.run(with_fake_peer([peer_reply()], client))
    assert parsed.peer_id == REMOTE_PEER_ID
