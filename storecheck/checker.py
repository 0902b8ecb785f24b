"""Forward/reverse edge index reconciliation.

Scans an edge type in both directions, indexes each side by EdgeKey and
reports:
- MissingInverse: an edge present in only one index
- Mismatch: an edge present in both indexes with differing attributes

The audit is read-only. It reports, it never repairs.
"""

from dataclasses import dataclass, field
from typing import Any, Union

from storecheck.log_config import get_logger
from storecheck.scan.edges import Direction, Edge, EdgeKey
from storecheck.scan.scanner import EdgeScanner

log = get_logger("checker")


@dataclass(frozen=True)
class MissingInverse:
    """Edge found in one index with no counterpart in the other.

    Attributes:
        edge: The edge as seen from the index that has it
        present_in: FORWARD means the in-edge is missing, REVERSE the out-edge
    """

    edge: Edge
    present_in: Direction

    @property
    def key(self) -> EdgeKey:
        return self.edge.key

    def describe(self) -> str:
        if self.present_in is Direction.FORWARD:
            return f"missing in edge: {self.key}"
        return f"missing out edge: {self.key}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": "missing_inverse",
            "key": str(self.key),
            "present_in": self.present_in.value,
            "edge": self.edge.to_dict(),
        }


@dataclass(frozen=True)
class Mismatch:
    """Edge present in both indexes with different attributes."""

    forward: Edge
    reverse: Edge

    @property
    def key(self) -> EdgeKey:
        return self.forward.key

    def describe(self) -> str:
        return f"edge mismatch, out edge: {self.forward}, in edge: {self.reverse}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": "mismatch",
            "key": str(self.key),
            "forward": self.forward.to_dict(),
            "reverse": self.reverse.to_dict(),
        }


Discrepancy = Union[MissingInverse, Mismatch]


@dataclass
class CheckReport:
    """Result of one audit of one edge type."""

    edge_name: str
    forward_count: int
    reverse_count: int
    discrepancies: list[Discrepancy] = field(default_factory=list)

    @property
    def missing(self) -> list[MissingInverse]:
        return [d for d in self.discrepancies if isinstance(d, MissingInverse)]

    @property
    def mismatched(self) -> list[Mismatch]:
        return [d for d in self.discrepancies if isinstance(d, Mismatch)]

    @property
    def ok(self) -> bool:
        return not self.discrepancies

    def to_dict(self) -> dict[str, Any]:
        return {
            "edge_name": self.edge_name,
            "forward_count": self.forward_count,
            "reverse_count": self.reverse_count,
            "missing": len(self.missing),
            "mismatched": len(self.mismatched),
            "discrepancies": [d.to_dict() for d in self.discrepancies],
        }


def index_edges(edges: list[Edge]) -> dict[EdgeKey, Edge]:
    """Map EdgeKey -> Edge. A repeated key keeps the last edge seen."""
    indexed: dict[EdgeKey, Edge] = {}
    for edge in edges:
        if edge.key in indexed:
            log.debug(f"duplicate edge key {edge.key} within one index")
        indexed[edge.key] = edge
    return indexed


def reconcile(forward: list[Edge], reverse: list[Edge]) -> list[Discrepancy]:
    """Compare two aligned edge sets, returning discrepancies sorted by key."""
    out_map = index_edges(forward)
    in_map = index_edges(reverse)
    log.info(f"out size: {len(out_map)}")
    log.info(f"in size: {len(in_map)}")

    found: list[Discrepancy] = []
    for key, edge in out_map.items():
        other = in_map.get(key)
        if other is None:
            found.append(MissingInverse(edge, Direction.FORWARD))
        elif edge != other:
            found.append(Mismatch(forward=edge, reverse=other))

    for key, edge in in_map.items():
        if key not in out_map:
            found.append(MissingInverse(edge, Direction.REVERSE))

    found.sort(key=lambda d: (d.key, isinstance(d, Mismatch)))
    return found


class ConsistencyChecker:
    """Audits one edge type for forward/reverse index divergence."""

    def __init__(self, scanner: EdgeScanner):
        self.scanner = scanner

    async def check(self, edge_name: str) -> CheckReport:
        """Scan both indexes of edge_name and reconcile them.

        Raises:
            EdgeTypeNotFoundError: Unknown edge type (before any scan)
            LeaderUnavailableError, ConnectivityError, ApplicationError:
                Propagated from the scanner
        """
        forward = await self.scanner.collect(edge_name, Direction.FORWARD)
        reverse = await self.scanner.collect(edge_name, Direction.REVERSE)

        discrepancies = reconcile(forward, reverse)
        for d in discrepancies:
            log.warning(d.describe())

        report = CheckReport(
            edge_name=edge_name,
            forward_count=len(forward),
            reverse_count=len(reverse),
            discrepancies=discrepancies,
        )
        log.info(
            f"check {edge_name}: {len(report.missing)} missing, "
            f"{len(report.mismatched)} mismatched"
        )
        return report
