"""Error taxonomy for storecheck.

Every failure the core can produce is one of these types. Nothing below the
CLI terminates the process; errors propagate up to the command boundary where
they are logged and mapped to an exit code.

Categories:
- ConnectivityError: transient transport trouble, reconnect and move on
- ApplicationError: a service answered with a non-success status
- NotFoundError: a named thing (edge type) does not exist
- LeaderUnavailableError: no leader could be determined within the bound
"""

import asyncio
from enum import Enum


class StoreCheckError(Exception):
    """Base class for all storecheck errors."""


class ConnectivityError(StoreCheckError):
    """Transient transport failure (timeout, reset, framing, EOF)."""


class PeerConnectionError(ConnectivityError):
    """Could not open a connection to host:port."""

    def __init__(self, host: str, port: int, reason: str):
        self.host = host
        self.port = port
        self.reason = reason
        super().__init__(f"failed connecting to {host}:{port}: {reason}")


class FramingError(ConnectivityError):
    """Frame header or length was invalid."""


class ProtocolVersionError(ConnectivityError):
    """Peer answered with an unexpected protocol version."""


class OutOfSequenceError(ConnectivityError):
    """Response sequence id did not match the request."""


class RpcTimeoutError(ConnectivityError):
    """A single RPC call exceeded its timeout."""


class ScanInterruptedError(ConnectivityError):
    """Connection lost mid-pagination; the scan session cannot be resumed."""

    def __init__(self, peer_id: str, rows_yielded: int, cause: Exception):
        self.peer_id = peer_id
        self.rows_yielded = rows_yielded
        self.cause = cause
        super().__init__(
            f"scan on {peer_id} interrupted after {rows_yielded} rows: {cause}"
        )


class ApplicationError(StoreCheckError):
    """A service responded with a non-success status code."""

    def __init__(self, code: str, detail: str = ""):
        self.code = code
        self.detail = detail
        msg = f"application error {code}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class NotFoundError(StoreCheckError):
    """A named entity does not exist."""


class EdgeTypeNotFoundError(NotFoundError):
    """Edge type name is not defined in the space."""

    def __init__(self, edge_name: str, space_id: int):
        self.edge_name = edge_name
        self.space_id = space_id
        super().__init__(f"edge type '{edge_name}' not found in space {space_id}")


class LeaderUnavailableError(StoreCheckError, TimeoutError):
    """No raft leader could be determined within the wait bound."""

    def __init__(self, space_id: int, part_id: int, waited: float):
        self.space_id = space_id
        self.part_id = part_id
        self.waited = waited
        super().__init__(
            f"no leader for space {space_id} part {part_id} after {waited:.2f}s"
        )


class RowDecodeError(StoreCheckError):
    """A scanned row had a missing or mistyped column."""


class ErrorCategory(str, Enum):
    """How the caller should treat a failure."""

    TRANSIENT = "transient"
    APPLICATION = "application"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    FATAL = "fatal"


# Fallback for errors that carry no structure, matched against the
# lowercased message. Order matters: first match wins.
TRANSIENT_ERROR_PATTERNS: tuple[tuple[str, ErrorCategory], ...] = (
    ("i/o timeout", ErrorCategory.TRANSIENT),
    ("invalid data length", ErrorCategory.TRANSIENT),
    ("not enough frame size", ErrorCategory.TRANSIENT),
    ("out of sequence response", ErrorCategory.TRANSIENT),
    ("bad version in", ErrorCategory.TRANSIENT),
    ("broken pipe", ErrorCategory.TRANSIENT),
    ("connection reset", ErrorCategory.TRANSIENT),
    ("eof", ErrorCategory.TRANSIENT),
)


def classify_error(exc: BaseException) -> ErrorCategory:
    """Map an exception to an ErrorCategory.

    Structured types are checked first; the pattern table is only consulted
    for exceptions we know nothing about.
    """
    if isinstance(exc, LeaderUnavailableError):
        return ErrorCategory.TIMEOUT
    if isinstance(exc, ConnectivityError):
        return ErrorCategory.TRANSIENT
    if isinstance(exc, ApplicationError):
        return ErrorCategory.APPLICATION
    if isinstance(exc, NotFoundError):
        return ErrorCategory.NOT_FOUND
    if isinstance(exc, (asyncio.TimeoutError, asyncio.IncompleteReadError, ConnectionError)):
        return ErrorCategory.TRANSIENT

    message = str(exc).lower()
    for pattern, category in TRANSIENT_ERROR_PATTERNS:
        if pattern in message:
            return category

    if isinstance(exc, OSError):
        return ErrorCategory.TRANSIENT
    return ErrorCategory.FATAL


def is_transient(exc: BaseException) -> bool:
    """True if the failure should be handled by reconnecting."""
    return classify_error(exc) is ErrorCategory.TRANSIENT
