"""Feed session contract and feed error hierarchy.

A feed session owns exactly one live streaming connection. The
:class:`~core.supervisor.ReconnectSupervisor` creates sessions through a
:data:`SessionFactory`, pulls events one at a time, and discards the
session on the first failure.

Exception hierarchy::

    FeedError
    ├── ConnectError     handshake or network failure while opening
    ├── StallTimeout     no message within the stall window
    ├── StreamEnded      the peer closed the stream cleanly
    └── TransportError   anything else that makes the connection unusable

All of them are recoverable: the supervisor logs them and reconnects.
"""

from typing import Any, Callable, Protocol

from core.events import FeedEvent, KeepaliveRequest


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class FeedError(Exception):
    """Base exception for feed session failures."""

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.details: dict[str, Any] = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        text: str = super().__str__()
        if self.details:
            return f"{text} [details={self.details}]"
        return text


class ConnectError(FeedError):
    """Raised when a session cannot be opened."""


class StallTimeout(FeedError):
    """Raised when no message arrived within the stall window."""


class StreamEnded(FeedError):
    """Raised when the peer closed the stream."""


class TransportError(FeedError):
    """Raised when the connection failed while receiving or sending."""


# ---------------------------------------------------------------------------
# Session contract
# ---------------------------------------------------------------------------


class FeedSession(Protocol):
    """One live streaming connection.

    Not thread-safe except for :meth:`close`, which may be called from
    another thread to interrupt a blocked :meth:`next_event`.
    """

    def next_event(self, timeout: float) -> FeedEvent:
        """Block until the next event arrives.

        Args:
            timeout: Maximum silence in seconds before giving up.

        Raises:
            StallTimeout: Nothing arrived within ``timeout``.
            StreamEnded: The stream was closed.
            TransportError: The connection failed.
        """
        ...

    def acknowledge_keepalive(self, request: KeepaliveRequest) -> None:
        """Send the reply owed for ``request``.

        Raises:
            TransportError: The reply could not be sent.
        """
        ...

    def close(self) -> None:
        """Close the connection. Idempotent."""
        ...


SessionFactory = Callable[[], FeedSession]
"""Opens a new subscribed session. Raises :class:`ConnectError` on failure."""
