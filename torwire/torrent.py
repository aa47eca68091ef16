"""
Tor file (metainfo) model.

Tor file format

contains a bencoded dictionary with the following keys and values:

announce:
    URL to a "tracker", which is a central server that keeps track of peers
    participating in the sharing of a torrent.
url-list:
    Alternate locations for the content. Either this or announce must be present.
info:
    A dictionary with keys:
    - length: size of the file in bytes, for single-file torrents
    - name: suggested name to save the file / directory as
    - piece length: number of bytes in each piece
    - pieces: concatenated SHA-1 hashes of each piece as a string.
              Each hash is 20 bytes long.
"""
import hashlib
import logging
from dataclasses import dataclass

from torwire.bencode import bencode_data, decode_bencode
from torwire.errors import ConsistencyError, MissingFieldError, TextEncodingError

PIECE_HASH_LEN_BYTES = 20


def _to_text(raw: bytes, field: str) -> str:
    try:
        return raw.decode('utf-8')
    except UnicodeDecodeError as e:
        raise TextEncodingError(f"'{field}' is not valid UTF-8: {e}") from e


def _require(mapping: dict, key: bytes, expected_type: type):
    value = mapping.get(key)
    # bool never comes out of the decoder, but keep int checks exact.
    if not isinstance(value, expected_type) or isinstance(value, bool):
        raise MissingFieldError(f"Missing or invalid '{key.decode()}' field")
    return value


def get_info_sha_hash(info: dict, as_hexadecimal=False):
    bencoded_info = bencode_data(info)
    if as_hexadecimal:
        # 40 hexdigits, as 1 hexdigit is 4 bits.
        return hashlib.sha1(bencoded_info).hexdigest()
    # Return as bytes (20 bytes)
    return hashlib.sha1(bencoded_info).digest()


def split_piece_hashes(concat_hashes: bytes) -> tuple[bytes, ...]:
    if len(concat_hashes) % PIECE_HASH_LEN_BYTES:
        raise MissingFieldError(
            f"Invalid 'pieces' field: length {len(concat_hashes)} is not a multiple of {PIECE_HASH_LEN_BYTES}")
    return tuple(concat_hashes[i:i + PIECE_HASH_LEN_BYTES]
                 for i in range(0, len(concat_hashes), PIECE_HASH_LEN_BYTES))


def _url_list(raw) -> tuple[str, ...]:
    # A single url may be given as a plain byte string instead of a list.
    if isinstance(raw, bytes):
        raw = [raw]
    if not isinstance(raw, list):
        return ()
    return tuple(_to_text(url, 'url-list') for url in raw if isinstance(url, bytes))


@dataclass(frozen=True)
class Torrent:
    announce: str
    url_list: tuple[str, ...]
    name: str
    piece_length: int
    pieces: tuple[bytes, ...]
    # 0 when the tor file has no 'length' (multi-file layouts are not supported).
    length: int
    info_hash: bytes

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Torrent':
        return parse_torrent(data)

    @property
    def info_hash_hex(self) -> str:
        return self.info_hash.hex()

    @property
    def tracker_url(self) -> str:
        """announce if set, otherwise the first alternate location."""
        if self.announce:
            return self.announce
        if self.url_list:
            return self.url_list[0]
        raise MissingFieldError("Missing 'announce' or 'url-list' field")

    def piece_hashes_hex(self) -> list[str]:
        return [piece.hex() for piece in self.pieces]


def parse_torrent(bencoded_tor_file: bytes) -> Torrent:
    decoded_tor_file = decode_bencode(bencoded_tor_file)
    if not isinstance(decoded_tor_file, dict):
        raise MissingFieldError("Invalid torrent file structure: top level value is not a dictionary")

    # Check x = f(inverse_f(x)). The info hash is only right if we can reproduce the exact bytes.
    if bencode_data(decoded_tor_file) != bencoded_tor_file:
        raise ConsistencyError("Re-encoded tor file does not match the original bytes")

    announce = decoded_tor_file.get(b'announce')
    announce = _to_text(announce, 'announce') if isinstance(announce, bytes) else ''
    url_list = _url_list(decoded_tor_file.get(b'url-list'))
    if not announce and not url_list:
        raise MissingFieldError("Missing 'announce' or 'url-list' field")

    info = _require(decoded_tor_file, b'info', dict)
    name = _to_text(_require(info, b'name', bytes), 'name')
    piece_length = _require(info, b'piece length', int)
    pieces = split_piece_hashes(_require(info, b'pieces', bytes))

    length = info.get(b'length')
    if not isinstance(length, int) or isinstance(length, bool):
        length = 0

    torrent = Torrent(
        announce=announce,
        url_list=url_list,
        name=name,
        piece_length=piece_length,
        pieces=pieces,
        length=length,
        info_hash=get_info_sha_hash(info),
    )
    logging.info(f"parsed tor file {name!r}: {len(pieces)} pieces, info hash {torrent.info_hash_hex}")
    return torrent
