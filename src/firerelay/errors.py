"""Relay error hierarchy.

Learn: Each error class maps to one failure domain and one handling policy.
Only ConfigurationError ever reaches the operator; the rest are caught at
the boundary of the unit of work that raised them (one stream, one send,
one client command) and show up in logs only.
"""


class RelayError(Exception):
    """Base error for all relay operations."""


class ConfigurationError(RelayError):
    """Required credentials missing or Firebase could not be initialized."""

    def __init__(self, message: str, missing: tuple[str, ...] = ()):
        self.missing = missing
        super().__init__(message)


class StreamError(RelayError):
    """One upstream change stream failed. Triggers that stream's backoff."""

    def __init__(self, stream: str, reason: str):
        self.stream = stream
        self.reason = reason
        super().__init__(f"stream '{stream}' failed: {reason}")


class SendError(RelayError):
    """Delivery to one connection failed or timed out."""

    def __init__(self, connection_id: str, reason: str):
        self.connection_id = connection_id
        self.reason = reason
        super().__init__(f"send to {connection_id} failed: {reason}")


class ProtocolError(RelayError):
    """A client command could not be parsed or is not allowed."""
