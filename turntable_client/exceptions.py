"""
Turntable client error taxonomy.
"""

from typing import Optional


class TurntableError(Exception):
    """Base class for all client errors."""

    pass


class TransportError(TurntableError):
    """Connection never opened, write failed, or socket closed unexpectedly."""

    pass


class ConnectionClosedError(TransportError):
    """Raised into every pending request when the connection is torn down."""

    def __init__(self, message: str = "Connection closed"):
        super().__init__(message)


class ProtocolFailure(TurntableError):
    """Server answered a request with success=false."""

    def __init__(self, err: str, verb: str = ""):
        super().__init__(f"{verb} failed: {err}" if verb else err)
        self.err = err
        self.verb = verb


class HandshakeFailure(TurntableError):
    """One of the handshake steps failed."""

    def __init__(self, step: str, cause: Optional[BaseException] = None):
        super().__init__(f"Handshake failed at {step}: {cause}")
        self.step = step
        self.cause = cause


class SearchTimeoutError(TurntableError):
    """No search results arrived within the wait budget."""

    def __init__(self, query: str, timeout: float):
        super().__init__(f"Timed out after {timeout:.2f}s waiting for song results for {query!r}")
        self.query = query
        self.timeout = timeout
