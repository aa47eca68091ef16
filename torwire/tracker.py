import asyncio
import logging
from dataclasses import dataclass, field
from urllib.parse import urlsplit, urlunsplit

import requests

from torwire.bencode import decode_bencode
from torwire.config import ClientConfig
from torwire.errors import (DirectoryFailure, MalformedReplyError, NetworkError,
                            ProtocolViolationError, SchemeError)
from torwire.torrent import Torrent

MAX_PORT = 0xFFFF


@dataclass
class Peer:
    # Not necessarily a literal IP, trackers may hand out hostnames.
    ip: str
    port: int

    def __str__(self):
        return f'{self.ip}:{self.port}'


@dataclass
class TrackerResponse:
    interval: int
    peers: list[Peer] = field(default_factory=list)
    min_interval: int | None = None
    complete: int | None = None
    incomplete: int | None = None
    warning_message: str | None = None


def percent_encode_bytes(data: bytes) -> str:
    """
    URL encode every byte as %XX, printable ones included.

    requests would leave unreserved characters as they are, which some trackers
    reject for info_hash and peer_id, so the query is built by hand.
    """
    return ''.join(f'%{b:02X}' for b in data)


def build_tracker_url(torrent: Torrent, peer_id: bytes, port: int = 6881) -> str:
    base = torrent.tracker_url
    query = (
        f"info_hash={percent_encode_bytes(torrent.info_hash)}"
        f"&peer_id={percent_encode_bytes(peer_id)}"
        f"&port={port}"
        # I haven't uploaded anything
        f"&uploaded=0"
        # you haven't downloaded anything yet
        f"&downloaded=0"
        # Set this to the total file size
        f"&left={torrent.length}"
    )
    # Any query already on the announce url is replaced.
    scheme, netloc, path, _, fragment = urlsplit(base)
    return urlunsplit((scheme, netloc, path, query, fragment))


def _optional_int(decoded: dict, key: bytes) -> int | None:
    value = decoded.get(key)
    return value if isinstance(value, int) else None


def _parse_peer_dicts(peers: list) -> list[Peer]:
    # Entries we can't make sense of are dropped, they are not an error.
    result = []
    for peer in peers:
        if not isinstance(peer, dict):
            continue
        ip, port = peer.get(b'ip'), peer.get(b'port')
        if not isinstance(ip, bytes) or not isinstance(port, int) or not 0 <= port <= MAX_PORT:
            logging.debug(f"skipping malformed peer entry: {peer}")
            continue
        result.append(Peer(ip=ip.decode('utf-8', errors='replace'), port=port))
    return result


def parse_tracker_response(bencoded_response_content: bytes) -> TrackerResponse:
    """
    Tracker response:

    The response is a bencoded dictionary. It will have either:

    failure reason: human readable text, nothing else in the reply is meaningful.

    or:

    interval: seconds to wait before announcing again.
    peers:  A list of dictionaries, each with 'ip' and 'port'.
            The compact (6-byte chunk) form is not supported.
    """
    decoded_content = decode_bencode(bencoded_response_content)
    logging.info(f"decoded tracker response: {decoded_content}")
    if not isinstance(decoded_content, dict):
        raise ProtocolViolationError("Invalid tracker response structure: not a dictionary")

    failure_reason = decoded_content.get(b'failure reason')
    if isinstance(failure_reason, bytes):
        raise DirectoryFailure(failure_reason.decode('utf-8', errors='replace'))

    interval = decoded_content.get(b'interval')
    if not isinstance(interval, int):
        raise MalformedReplyError("Missing or invalid 'interval' field")

    peers = decoded_content.get(b'peers')
    if not isinstance(peers, list):
        raise MalformedReplyError("Missing or invalid 'peers' field")

    warning_message = decoded_content.get(b'warning message')
    if isinstance(warning_message, bytes):
        warning_message = warning_message.decode('utf-8', errors='replace')
        logging.warning(f"tracker warning: {warning_message}")
    else:
        warning_message = None

    return TrackerResponse(
        interval=interval,
        peers=_parse_peer_dicts(peers),
        min_interval=_optional_int(decoded_content, b'min interval'),
        complete=_optional_int(decoded_content, b'complete'),
        incomplete=_optional_int(decoded_content, b'incomplete'),
        warning_message=warning_message,
    )


def _send_get_request_to_tracker(tracker_url: str, timeout: float | None) -> requests.Response:
    # Single attempt. Retrying is up to whoever calls us.
    try:
        response = requests.get(tracker_url, timeout=timeout)
    except requests.RequestException as e:
        raise NetworkError(f"Tracker request failed: {e}") from e
    logging.info(f"response status code: {response.status_code}")
    return response


def get_peers(torrent: Torrent, peer_id: bytes, config: ClientConfig | None = None) -> TrackerResponse:
    """
    Send a GET request with the tor file data.
    The tracker, which is a central node, gives back the list of peers for the torrent.
    """
    config = config or ClientConfig()
    tracker_url = build_tracker_url(torrent, peer_id, port=config.listen_port)
    logging.info(f"Requesting tracker URL: {tracker_url}")

    if urlsplit(tracker_url).scheme not in ('http', 'https'):
        raise SchemeError(f"Invalid URL scheme for tracker: {tracker_url}")

    response = _send_get_request_to_tracker(tracker_url, config.tracker_timeout)
    return parse_tracker_response(response.content)


async def fetch_peers(torrent: Torrent, peer_id: bytes, config: ClientConfig | None = None) -> TrackerResponse:
    """Same as get_peers, without blocking the event loop while the request is in flight."""
    return await asyncio.to_thread(get_peers, torrent, peer_id, config)
