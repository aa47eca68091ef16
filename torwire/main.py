import asyncio
import json
import logging
import sys

from torwire.bencode import decode_bencode
from torwire.config import ClientConfig, generate_peer_id
from torwire.errors import TorwireError
from torwire.handshake import handshake_with_peer
from torwire.torrent import parse_torrent
from torwire.tracker import Peer, get_peers

USAGE = """usage:
    torwire decode <bencoded value>
    torwire info <tor file>
    torwire peers <tor file>
    torwire handshake <tor file> <peer_ip>:<peer_port>"""


def _read_tor_file(tor_file_path):
    with open(tor_file_path, 'rb') as tor_file:
        bencoded_value = tor_file.read()
    logging.info(f'read {len(bencoded_value)} bytes from {tor_file_path}')
    return bencoded_value


def bytes_to_str(data):
    """
    json.dumps() can't handle bytes, but bencoded "strings" need to be
    bytestrings since they might contain non utf-8 characters.
    Convert them to str for printing to the console.
    """
    if isinstance(data, bytes):
        return data.decode('utf-8', errors='replace')
    if isinstance(data, list):
        return [bytes_to_str(elem) for elem in data]
    if isinstance(data, dict):
        return {bytes_to_str(k): bytes_to_str(v) for k, v in data.items()}
    if isinstance(data, int):
        return data

    raise TypeError(f"Type not serializable: {type(data)}")


def _parse_peer_arg(peer_info: str) -> Peer:
    peer_ip, _, peer_port = peer_info.rpartition(':')
    if not peer_ip or not peer_port.isdigit():
        raise ValueError(f"peer must be given as <ip>:<port>, got {peer_info!r}")
    return Peer(ip=peer_ip, port=int(peer_port))


def run(argv, config: ClientConfig | None = None):
    config = config or ClientConfig()
    if not argv:
        print(USAGE, file=sys.stderr)
        return 2
    command, args = argv[0], argv[1:]

    if command == 'decode' and len(args) == 1:
        print(json.dumps(bytes_to_str(decode_bencode(args[0].encode()))))
    elif command == 'info' and len(args) == 1:
        torrent = parse_torrent(_read_tor_file(args[0]))
        print(f'Tracker URL: {torrent.tracker_url}')
        print(f'Name: {torrent.name}')
        print(f'Length: {torrent.length}')
        print(f'Info Hash: {torrent.info_hash_hex}')
        print(f'Piece Length: {torrent.piece_length}')
        print('Piece Hashes:')
        print('\n'.join(torrent.piece_hashes_hex()))
    elif command == 'peers' and len(args) == 1:
        torrent = parse_torrent(_read_tor_file(args[0]))
        tracker_response = get_peers(torrent, generate_peer_id(), config)
        for peer in tracker_response.peers:
            print(peer)
    elif command == 'handshake' and len(args) == 2:
        torrent = parse_torrent(_read_tor_file(args[0]))
        peer = _parse_peer_arg(args[1])
        peer_handshake = asyncio.run(
            handshake_with_peer(peer, torrent, generate_peer_id(), timeout=config.handshake_timeout))
        print(f"Peer ID: {peer_handshake.peer_id.hex()}")
    else:
        print(USAGE, file=sys.stderr)
        return 2
    return 0


def main():
    logging.basicConfig(level=logging.INFO)
    try:
        sys.exit(run(sys.argv[1:]))
    except (TorwireError, ValueError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
