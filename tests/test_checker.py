"""Consistency checker tests.

Covers:
- reconcile() on hand-built edge sets
- End-to-end audit through the scanner against a fake store
"""

from datetime import datetime

import pytest

from storecheck.checker import (
    CheckReport,
    ConsistencyChecker,
    Mismatch,
    MissingInverse,
    index_edges,
    reconcile,
)
from storecheck.errors import EdgeTypeNotFoundError
from storecheck.scan.edges import Direction, Edge, EdgeKey
from tests.fixtures.fake_store import EdgeStore

TS = datetime(2022, 1, 1, 0, 0, 0)


class TestReconcile:
    """Test the pure reconciliation step."""

    def test_identical_indexes(self):
        edges = [Edge(1, 2, 0, "a", TS), Edge(2, 3, 0, "b", None)]
        assert reconcile(edges, list(edges)) == []

    def test_missing_in_edge(self):
        forward = [Edge(1, 2, 0, "a"), Edge(2, 3, 0, "b")]
        reverse = [Edge(1, 2, 0, "a")]
        [d] = reconcile(forward, reverse)
        assert isinstance(d, MissingInverse)
        assert d.present_in is Direction.FORWARD
        assert d.key == EdgeKey(2, 3, 0)
        assert d.describe() == "missing in edge: 2->3@0"

    def test_missing_out_edge(self):
        [d] = reconcile([], [Edge(4, 5, 1, "x")])
        assert d.present_in is Direction.REVERSE
        assert d.describe() == "missing out edge: 4->5@1"

    def test_mismatch_on_attributes(self):
        [d] = reconcile([Edge(1, 2, 0, "a", TS)], [Edge(1, 2, 0, "a", None)])
        assert isinstance(d, Mismatch)
        assert d.forward.ts == TS
        assert d.reverse.ts is None
        assert d.describe().startswith("edge mismatch")

    def test_sorted_by_key(self):
        forward = [Edge(9, 1, 0, "a"), Edge(1, 2, 0, "a"), Edge(5, 5, 0, "a")]
        reverse = [Edge(3, 3, 0, "a"), Edge(5, 5, 0, "changed")]
        keys = [d.key for d in reconcile(forward, reverse)]
        assert keys == [EdgeKey(1, 2, 0), EdgeKey(3, 3, 0), EdgeKey(5, 5, 0), EdgeKey(9, 1, 0)]

    def test_duplicate_key_last_wins(self):
        indexed = index_edges([Edge(1, 2, 0, "old"), Edge(1, 2, 0, "new")])
        assert indexed[EdgeKey(1, 2, 0)].idx == "new"


class TestCheckReport:
    """Test report aggregation and serialization."""

    def test_counts_and_dict(self):
        report = CheckReport(
            edge_name="known2",
            forward_count=2,
            reverse_count=1,
            discrepancies=[
                MissingInverse(Edge(1, 2, 0, "a"), Direction.FORWARD),
                Mismatch(Edge(3, 4, 0, "a"), Edge(3, 4, 0, "b")),
            ],
        )
        assert not report.ok
        assert len(report.missing) == 1
        assert len(report.mismatched) == 1

        data = report.to_dict()
        assert data["missing"] == 1
        assert data["discrepancies"][0] == {
            "kind": "missing_inverse",
            "key": "1->2@0",
            "present_in": "forward",
            "edge": {"src": 1, "dst": 2, "rank": 0, "idx": "a", "ts": None},
        }
        assert data["discrepancies"][1]["kind"] == "mismatch"

    def test_empty_report_is_ok(self):
        assert CheckReport("known2", 0, 0).ok


class TestConsistencyChecker:
    """End-to-end audit against a fake partition leader."""

    @pytest.mark.asyncio
    async def test_consistent_partition(self, scan_env):
        forward = [(1, 2, 0, "a", TS), (2, 3, 0, "b", None), (3, 1, 2, "c", TS)]
        scanner, _, _ = await scan_env(EdgeStore(7, forward), page_size=2)
        report = await ConsistencyChecker(scanner).check("known2")
        assert report.ok
        assert report.forward_count == report.reverse_count == 3

    @pytest.mark.asyncio
    async def test_divergent_partition(self, scan_env):
        forward = [(1, 2, 0, "a", TS), (2, 3, 0, "b", None), (3, 1, 2, "c", TS)]
        reverse = [(1, 2, 0, "a", TS), (3, 1, 2, "c", None), (7, 8, 0, "z", None)]
        scanner, _, _ = await scan_env(EdgeStore(7, forward, reverse), page_size=2)
        report = await ConsistencyChecker(scanner).check("known2")

        assert [str(d.key) for d in report.discrepancies] == ["2->3@0", "3->1@2", "7->8@0"]
        missing_in, mismatch, missing_out = report.discrepancies
        assert isinstance(missing_in, MissingInverse) and missing_in.present_in is Direction.FORWARD
        assert isinstance(mismatch, Mismatch)
        assert isinstance(missing_out, MissingInverse) and missing_out.present_in is Direction.REVERSE

    @pytest.mark.asyncio
    async def test_unknown_edge_type(self, scan_env):
        scanner, store, _ = await scan_env(EdgeStore(7, []))
        with pytest.raises(EdgeTypeNotFoundError):
            await ConsistencyChecker(scanner).check("missing")
        assert store.calls_to("scanEdge") == []
