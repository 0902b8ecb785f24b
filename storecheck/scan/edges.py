"""Edge records, edge keys and scan direction handling.

The store keeps every edge twice: once under its source vertex (forward
index) and once under its destination (reverse index). A reverse scan is
requested by negating the edge type id and returns rows with source and
destination swapped. `orient()` is the only place that knows this encoding;
everything else works with an explicit Direction.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from storecheck.errors import RowDecodeError
from storecheck.rpc.protocol import Row, Value, ValueKind


class Direction(str, Enum):
    """Which edge index to scan."""

    FORWARD = "forward"
    REVERSE = "reverse"
    BOTH = "both"


@dataclass(frozen=True, order=True)
class EdgeKey:
    """Identity of a logical edge after direction alignment."""

    src: int
    dst: int
    rank: int

    def __str__(self) -> str:
        return f"{self.src}->{self.dst}@{self.rank}"


@dataclass(frozen=True)
class Edge:
    """One edge as observed from one scan direction.

    Equality compares every field; a missing timestamp only equals another
    missing timestamp.
    """

    src: int
    dst: int
    rank: int
    idx: str
    ts: datetime | None = None

    @property
    def key(self) -> EdgeKey:
        return EdgeKey(self.src, self.dst, self.rank)

    def to_dict(self) -> dict[str, Any]:
        return {
            "src": self.src,
            "dst": self.dst,
            "rank": self.rank,
            "idx": self.idx,
            "ts": self.ts.isoformat() if self.ts is not None else None,
        }


@dataclass(frozen=True)
class ScanOrientation:
    """How one scan session encodes its direction on the wire.

    Attributes:
        direction: FORWARD or REVERSE
        rpc_edge_type: Edge type id to send (negative for reverse)
        swap_endpoints: Swap src/dst of every decoded row
    """

    direction: Direction
    rpc_edge_type: int
    swap_endpoints: bool

    def align(self, src: int, dst: int) -> tuple[int, int]:
        if self.swap_endpoints:
            return dst, src
        return src, dst


def orient(edge_type: int, direction: Direction) -> ScanOrientation:
    """Translate (edge type, direction) into its wire encoding.

    Raises:
        ValueError: BOTH (two sessions, orient each separately) or a
            non-positive edge type id
    """
    if edge_type <= 0:
        raise ValueError(f"edge type id must be positive, got {edge_type}")
    if direction is Direction.FORWARD:
        return ScanOrientation(direction, edge_type, swap_endpoints=False)
    if direction is Direction.REVERSE:
        return ScanOrientation(direction, -edge_type, swap_endpoints=True)
    raise ValueError(f"cannot orient a single scan session as {direction.value}")


# Column positions of a scanned row
SRC_COL, TYPE_COL, RANK_COL, DST_COL, IDX_COL, TS_COL = range(6)


def scan_columns(idx_prop: str = "idx", ts_prop: str = "ts") -> list[str]:
    """Property names to request, in the order decode_row expects them."""
    return ["_src", "_type", "_rank", "_dst", idx_prop, ts_prop]


def _column(row: Row, pos: int, name: str, *kinds: ValueKind) -> Value:
    if pos >= len(row.values):
        raise RowDecodeError(f"row has {len(row.values)} columns, missing {name} at {pos}")
    value = row.values[pos]
    if value.kind not in kinds:
        expected = "/".join(k.name.lower() for k in kinds)
        raise RowDecodeError(f"column {name} expected {expected}, got {value.kind.name.lower()}")
    return value


def _int_column(row: Row, pos: int, name: str) -> int:
    raw = _column(row, pos, name, ValueKind.INT).value
    if not isinstance(raw, int) or isinstance(raw, bool):
        raise RowDecodeError(f"column {name} expected int, got {raw!r}")
    return raw


def decode_row(row: Row, orientation: ScanOrientation) -> Edge:
    """Bind row columns to an Edge, aligned to forward orientation.

    Raises:
        RowDecodeError: A column is absent, mistyped, or the row belongs to
            another edge type
    """
    src = _int_column(row, SRC_COL, "_src")
    edge_type = _int_column(row, TYPE_COL, "_type")
    rank = _int_column(row, RANK_COL, "_rank")
    dst = _int_column(row, DST_COL, "_dst")

    idx = _column(row, IDX_COL, "idx", ValueKind.STRING).value
    if not isinstance(idx, str):
        raise RowDecodeError(f"column idx expected string, got {idx!r}")
    ts_value = _column(row, TS_COL, "ts", ValueKind.DATETIME, ValueKind.NULL)

    if abs(edge_type) != abs(orientation.rpc_edge_type):
        raise RowDecodeError(
            f"row of edge type {edge_type} in a scan of type {orientation.rpc_edge_type}"
        )

    src, dst = orientation.align(src, dst)
    ts = ts_value.value if ts_value.kind is ValueKind.DATETIME else None
    return Edge(src=src, dst=dst, rank=rank, idx=idx, ts=ts)
