"""Error taxonomy for the relay."""

from typing import Optional


class RelayError(Exception):
    """Base error for relay failures."""

    def __init__(self, message: str, session_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.session_id = session_id


class UpstreamFailure(RelayError):
    """The completion source raised or disconnected mid-stream."""


class StoreUnavailable(RelayError):
    """The session store's backing medium is unreachable or timed out."""


class MalformedMarker(RelayError):
    """A complete marker span could not be split into ``name:value``."""

    def __init__(self, message: str, span: str = ""):
        super().__init__(message)
        self.span = span


class ChannelClosed(RelayError):
    """The client push channel is gone."""
