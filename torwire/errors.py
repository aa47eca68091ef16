"""
Exceptions raised by torwire.

Every error derives from TorwireError so callers can catch the whole family,
and also from the closest builtin so existing `except ValueError` /
`except OSError` handlers keep working.
"""


class TorwireError(Exception):
    pass


class FormatError(TorwireError, ValueError):
    """Malformed bencoded input."""


class MissingFieldError(TorwireError, ValueError):
    """A required key is absent or has the wrong shape."""


class ConsistencyError(TorwireError, ValueError):
    """Re-encoding the decoded metainfo did not reproduce the input bytes."""


class TextEncodingError(TorwireError, ValueError):
    """A byte string that must be human readable is not valid UTF-8."""


class SchemeError(TorwireError, ValueError):
    """Tracker URL uses something other than http or https."""


class NetworkError(TorwireError, OSError):
    pass


class ProtocolViolationError(TorwireError, ValueError):
    pass


class MalformedReplyError(MissingFieldError, ProtocolViolationError):
    """Tracker reply is missing `interval` or `peers`, or has them in the wrong shape."""


class DirectoryFailure(TorwireError):
    """The tracker answered with a `failure reason`."""

    def __init__(self, reason: str):
        super().__init__(f"Tracker returned failure: {reason}")
        self.reason = reason


class HandshakeTimeoutError(TorwireError, TimeoutError):
    pass


class PeerClosedError(TorwireError, ConnectionError):
    """The peer closed the stream before sending a full handshake."""
