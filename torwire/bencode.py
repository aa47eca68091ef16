import logging
import re
from typing import Any

from torwire.errors import FormatError

INT64_MIN = -2 ** 63
INT64_MAX = 2 ** 63 - 1

_INT_RE = re.compile(rb'-?\d+')
_LENGTH_RE = re.compile(rb'\d+')


def bencode_data(my_data: Any) -> bytes:
    """
    Binary encode data.

    Dict keys are always written sorted by their raw bytes, whatever order the
    dict was filled in. This is the canonical form the info hash is computed over.
    """
    if isinstance(my_data, dict):
        sub_results = []
        for k in sorted(my_data):
            if not isinstance(k, bytes):
                raise TypeError(f"Dictionary keys must be bytes, got {k!r} of type {type(k)}")
            sub_results.extend([bencode_data(k), bencode_data(my_data[k])])

        return b'd' + b''.join(sub_results) + b'e'

    if isinstance(my_data, list):
        return b'l' + b''.join(bencode_data(item) for item in my_data) + b'e'

    # bool is a subclass of int but has no bencoded form.
    if isinstance(my_data, int) and not isinstance(my_data, bool):
        return b'i' + str(my_data).encode() + b'e'

    # Strings in the tor file are bytes. Return them in format "length:content"
    if isinstance(my_data, bytes):
        return str(len(my_data)).encode() + b':' + my_data

    raise TypeError(f"Unexpected type of param: {my_data!r} of type {type(my_data)}")


def _find_terminator(data: bytes, start: int, terminator: bytes, what: str) -> int:
    idx = data.find(terminator, start)
    if idx == -1:
        raise FormatError(f"Invalid encoded value: {what} not terminated")
    return idx


def _decode_int(data: bytes, idx: int) -> tuple[int, int]:
    # data[idx] is the b'i'
    end_idx = _find_terminator(data, idx + 1, b'e', "Integer")
    digits = data[idx + 1:end_idx]
    if not _INT_RE.fullmatch(digits):
        raise FormatError(f"Invalid encoded value: Invalid integer format {digits!r}")
    value = int(digits)
    if not INT64_MIN <= value <= INT64_MAX:
        raise FormatError(f"Invalid encoded value: Integer {value} does not fit in 64 bits")
    return value, end_idx + 1


def _decode_bytes(data: bytes, idx: int) -> tuple[bytes, int]:
    # eg: 12:sjdfhsldkfjghfd  => the length prefix runs up to the colon.
    colon_idx = _find_terminator(data, idx, b':', "Byte string length")
    length_prefix = data[idx:colon_idx]
    if not _LENGTH_RE.fullmatch(length_prefix):
        raise FormatError(f"Invalid encoded value: Invalid byte string length {length_prefix!r}")

    length_of_elem = int(length_prefix)
    content_start_idx = colon_idx + 1
    content_end_idx = content_start_idx + length_of_elem
    if content_end_idx > len(data):
        raise FormatError("Invalid encoded value: Byte string content too short")
    return data[content_start_idx:content_end_idx], content_end_idx


def _decode_list(data: bytes, idx: int) -> tuple[list, int]:
    result = []
    idx += 1
    while idx < len(data) and data[idx:idx + 1] != b'e':
        elem, idx = _decode_value(data, idx)
        result.append(elem)

    if idx >= len(data):
        raise FormatError("Invalid encoded value: List not terminated")
    return result, idx + 1


def _decode_dict(data: bytes, idx: int) -> tuple[dict, int]:
    # Keys are neither required to be sorted nor unique here. A repeated key
    # keeps its last value. The canonical check happens on re-encode.
    result = {}
    idx += 1
    while idx < len(data) and data[idx:idx + 1] != b'e':
        if not data[idx:idx + 1].isdigit():
            raise FormatError("Invalid encoded value: Dictionary key must be a byte string")
        key, idx = _decode_bytes(data, idx)
        result[key], idx = _decode_value(data, idx)

    if idx >= len(data):
        raise FormatError("Invalid encoded value: Dictionary not terminated")
    return result, idx + 1


def _decode_value(data: bytes, idx: int) -> tuple[Any, int]:
    first = data[idx:idx + 1]
    if first.isdigit():  # Case: String (starts with a digit)
        return _decode_bytes(data, idx)
    if first == b'i':
        return _decode_int(data, idx)
    if first == b'l':
        return _decode_list(data, idx)
    if first == b'd':
        return _decode_dict(data, idx)

    logging.debug(f"Unrecognized bencode prefix {first!r} at offset {idx}")
    raise FormatError("Invalid encoded value: Unrecognized format")


def decode_bencode_partial(bencoded_value: bytes) -> tuple[Any, bytes]:
    """
    Decodes one bencoded value from the front of the input.
    Supports strings, integers, lists, and dictionaries.

    Returns the value and whatever bytes follow it.

    Example Inputs:
        b'4:pear' => (b'pear', b'')
        b'i52eXYZ' => (52, b'XYZ')
        b'li777e4:peare' => ([777, b'pear'], b'')
        b'd5:helloi52ee' => ({b'hello': 52}, b'')

    Note:
        Bencoded strings are not actually strings, they are bytes of specified length.
        They can contain \\x00 and need not be valid UTF-8, so they are returned as bytes.
    """
    try:
        value, end_idx = _decode_value(bencoded_value, 0)
    except RecursionError as e:
        raise FormatError("Invalid encoded value: Lists or dictionaries nested too deeply") from e
    logging.debug(f"decoded {end_idx} bytes, {len(bencoded_value) - end_idx} bytes remaining")
    return value, bencoded_value[end_idx:]


def decode_bencode(bencoded_value: bytes) -> Any:
    return decode_bencode_partial(bencoded_value)[0]
