"""Wire protocol for the store's RPC services.

Every message is a frame: a 4-byte big-endian length followed by that many
bytes of orjson-encoded envelope.

Request envelope:   {"v": 1, "seq": n, "method": "...", "body": {...}}
Response envelope:  {"v": 1, "seq": n, "body": {...}}
                    {"v": 1, "seq": n, "error": {"code": "...", "message": "..."}}

Column values are tagged single-key objects (iVal, sVal, dtVal, ...), cursors
travel base64-encoded so they stay opaque bytes on our side.
"""

import asyncio
import base64
import struct
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import orjson

from storecheck.errors import ApplicationError, FramingError

PROTOCOL_VERSION = 1
FRAME_HEADER = struct.Struct(">I")

# Status codes shared by all services
SUCCEEDED = "SUCCEEDED"


# ══════════════════════════════════════════════════════════════════════════════
# FRAMING
# ══════════════════════════════════════════════════════════════════════════════


def encode_frame(payload: bytes, max_frame_size: int) -> bytes:
    """Prefix payload with its length."""
    if not payload:
        raise FramingError("Invalid data length: empty frame")
    if len(payload) > max_frame_size:
        raise FramingError(
            f"Not enough frame size: {len(payload)} bytes exceeds {max_frame_size}"
        )
    return FRAME_HEADER.pack(len(payload)) + payload


async def read_frame(reader: asyncio.StreamReader, max_frame_size: int) -> bytes:
    """Read one length-prefixed frame.

    Raises:
        FramingError: Zero or oversized length header
        asyncio.IncompleteReadError: Stream ended mid-frame (EOF)
    """
    header = await reader.readexactly(FRAME_HEADER.size)
    (length,) = FRAME_HEADER.unpack(header)
    if length == 0:
        raise FramingError("Invalid data length: 0")
    if length > max_frame_size:
        raise FramingError(f"Not enough frame size: got {length}, max {max_frame_size}")
    return await reader.readexactly(length)


def encode_envelope(seq: int, method: str, body: dict[str, Any]) -> bytes:
    return orjson.dumps({"v": PROTOCOL_VERSION, "seq": seq, "method": method, "body": body})


def encode_reply(seq: int, body: dict[str, Any] | None = None, error: dict | None = None) -> bytes:
    """Encode a response envelope (used by servers and test doubles)."""
    envelope: dict[str, Any] = {"v": PROTOCOL_VERSION, "seq": seq}
    if error is not None:
        envelope["error"] = error
    else:
        envelope["body"] = body or {}
    return orjson.dumps(envelope)


def decode_envelope(data: bytes) -> dict[str, Any]:
    try:
        envelope = orjson.loads(data)
    except orjson.JSONDecodeError as e:
        raise FramingError(f"Invalid data length: undecodable frame ({e})") from e
    if not isinstance(envelope, dict):
        raise FramingError("Invalid data length: envelope is not an object")
    return envelope


def encode_cursor(cursor: bytes | None) -> str | None:
    if cursor is None:
        return None
    return base64.b64encode(cursor).decode("ascii")


def decode_cursor(raw: str | None) -> bytes | None:
    if raw is None:
        return None
    return base64.b64decode(raw)


# ══════════════════════════════════════════════════════════════════════════════
# COLUMN VALUES
# ══════════════════════════════════════════════════════════════════════════════


class ValueKind(str, Enum):
    """Tag of a column value on the wire."""

    NULL = "nVal"
    BOOL = "bVal"
    INT = "iVal"
    FLOAT = "fVal"
    STRING = "sVal"
    DATETIME = "dtVal"


_DATETIME_FIELDS = ("year", "month", "day", "hour", "minute", "sec", "microsec")


@dataclass(frozen=True)
class Value:
    """One typed column value."""

    kind: ValueKind
    value: Any = None

    @classmethod
    def of(cls, obj: Any) -> "Value":
        """Wrap a Python value, inferring its kind."""
        if obj is None:
            return cls(ValueKind.NULL)
        if isinstance(obj, bool):
            return cls(ValueKind.BOOL, obj)
        if isinstance(obj, int):
            return cls(ValueKind.INT, obj)
        if isinstance(obj, float):
            return cls(ValueKind.FLOAT, obj)
        if isinstance(obj, str):
            return cls(ValueKind.STRING, obj)
        if isinstance(obj, datetime):
            return cls(ValueKind.DATETIME, obj)
        raise TypeError(f"unsupported column value type: {type(obj).__name__}")

    def to_wire(self) -> dict[str, Any]:
        if self.kind is ValueKind.DATETIME:
            dt: datetime = self.value
            return {
                self.kind.value: {
                    "year": dt.year,
                    "month": dt.month,
                    "day": dt.day,
                    "hour": dt.hour,
                    "minute": dt.minute,
                    "sec": dt.second,
                    "microsec": dt.microsecond,
                }
            }
        return {self.kind.value: self.value}

    @classmethod
    def from_wire(cls, obj: Any) -> "Value":
        if not isinstance(obj, dict) or len(obj) != 1:
            raise ValueError(f"column value must be a single-key object, got {obj!r}")
        tag, raw = next(iter(obj.items()))
        kind = ValueKind(tag)
        if kind is ValueKind.NULL:
            return cls(kind)
        if kind is ValueKind.DATETIME:
            missing = [f for f in _DATETIME_FIELDS if f not in raw]
            if missing:
                raise ValueError(f"datetime value missing fields {missing}")
            return cls(
                kind,
                datetime(
                    raw["year"], raw["month"], raw["day"],
                    raw["hour"], raw["minute"], raw["sec"], raw["microsec"],
                ),
            )
        return cls(kind, raw)


# ══════════════════════════════════════════════════════════════════════════════
# MESSAGES
# ══════════════════════════════════════════════════════════════════════════════


def _malformed(message: str, e: Exception) -> ApplicationError:
    return ApplicationError("MALFORMED_RESPONSE", f"{message}: {e!r}")


@dataclass
class GetStateRequest:
    space: int
    part: int

    def to_body(self) -> dict:
        return {"space": self.space, "part": self.part}


@dataclass
class GetStateResponse:
    """Raft state as reported by one replica."""

    error_code: str
    term: int = 0
    is_leader: bool = False
    role: str = "UNKNOWN"
    committed_log_id: int = 0
    last_log_id: int = 0
    last_log_term: int = 0
    status: str = ""

    @classmethod
    def from_body(cls, body: dict) -> "GetStateResponse":
        try:
            return cls(
                error_code=body["error_code"],
                term=int(body.get("term", 0)),
                is_leader=bool(body.get("is_leader", False)),
                role=body.get("role", "UNKNOWN"),
                committed_log_id=int(body.get("committed_log_id", 0)),
                last_log_id=int(body.get("last_log_id", 0)),
                last_log_term=int(body.get("last_log_term", 0)),
                status=body.get("status", ""),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise _malformed("getState response", e) from e


@dataclass
class EdgeItem:
    """Schema entry for one edge type."""

    edge_name: str
    edge_type: int
    version: int = 0
    schema: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_body(cls, body: dict) -> "EdgeItem":
        return cls(
            edge_name=body["edge_name"],
            edge_type=int(body["edge_type"]),
            version=int(body.get("version", 0)),
            schema=body.get("schema") or {},
        )


@dataclass
class ListEdgesResponse:
    code: str
    edges: list[EdgeItem] = field(default_factory=list)

    @classmethod
    def from_body(cls, body: dict) -> "ListEdgesResponse":
        try:
            return cls(
                code=body["code"],
                edges=[EdgeItem.from_body(e) for e in body.get("edges", [])],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise _malformed("listEdges response", e) from e


@dataclass
class ScanCursor:
    """Continuation state of one partition within one scan session."""

    has_next: bool = False
    next_cursor: bytes | None = None

    def to_wire(self) -> dict:
        return {"has_next": self.has_next, "next_cursor": encode_cursor(self.next_cursor)}

    @classmethod
    def from_wire(cls, raw: dict) -> "ScanCursor":
        return cls(
            has_next=bool(raw.get("has_next", False)),
            next_cursor=decode_cursor(raw.get("next_cursor")),
        )


@dataclass
class EdgeProp:
    type: int
    props: list[str]


@dataclass
class ScanEdgeRequest:
    space_id: int
    parts: dict[int, ScanCursor]
    return_columns: list[EdgeProp]
    limit: int

    def to_body(self) -> dict:
        return {
            "space_id": self.space_id,
            "parts": {str(p): c.to_wire() for p, c in self.parts.items()},
            "return_columns": [{"type": c.type, "props": c.props} for c in self.return_columns],
            "limit": self.limit,
        }


@dataclass
class Row:
    values: list[Value]


@dataclass
class ScanEdgeResponse:
    code: str
    failed_parts: list[dict] = field(default_factory=list)
    column_names: list[str] = field(default_factory=list)
    rows: list[Row] = field(default_factory=list)
    cursors: dict[int, ScanCursor] = field(default_factory=dict)

    @classmethod
    def from_body(cls, body: dict) -> "ScanEdgeResponse":
        try:
            result = body["result"]
            props = body.get("props") or {}
            return cls(
                code=result["code"],
                failed_parts=list(result.get("failed_parts", [])),
                column_names=list(props.get("column_names", [])),
                rows=[
                    Row(values=[Value.from_wire(v) for v in r["values"]])
                    for r in props.get("rows", [])
                ],
                cursors={
                    int(p): ScanCursor.from_wire(c)
                    for p, c in (body.get("cursors") or {}).items()
                },
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise _malformed("scanEdge response", e) from e
