"""EdgeScanner tests against a fake leader and meta service."""

import asyncio

import pytest

from storecheck.cluster.leader import LeaderTracker
from storecheck.cluster.peer import Service
from storecheck.cluster.view import ClusterView
from storecheck.errors import ApplicationError, EdgeTypeNotFoundError, ScanInterruptedError
from storecheck.rpc.services import MetaClient
from storecheck.scan.edges import Direction, EdgeKey
from storecheck.scan.scanner import EdgeScanner
from tests.fixtures.fake_store import Drop, EdgeStore, list_edges, raft_state

FORWARD = [
    (1, 2, 0, "a", None),
    (1, 3, 0, "b", None),
    (2, 3, 0, "c", None),
    (3, 1, 1, "d", None),
    (4, 1, 0, "e", None),
]


class TestScanPagination:
    """Test cursor pagination."""

    @pytest.mark.asyncio
    async def test_pages_until_no_cursor(self, scan_env):
        scanner, store, _ = await scan_env(EdgeStore(7, FORWARD), page_size=2)
        edges = await scanner.collect("known2", Direction.FORWARD)

        assert [e.key for e in edges] == [EdgeKey(s, d, r) for s, d, r, _, _ in FORWARD]
        calls = store.calls_to("scanEdge")
        assert len(calls) == 3
        assert calls[0]["parts"]["1"]["next_cursor"] is None
        assert calls[1]["parts"]["1"]["next_cursor"] is not None
        assert all(c["limit"] == 2 for c in calls)
        assert all(c["return_columns"][0]["type"] == 7 for c in calls)

    @pytest.mark.asyncio
    async def test_empty_partition(self, scan_env):
        scanner, store, _ = await scan_env(EdgeStore(7, []))
        assert await scanner.collect("known2", Direction.FORWARD) == []
        assert len(store.calls_to("scanEdge")) == 1

    @pytest.mark.asyncio
    async def test_reverse_scan_aligned(self, scan_env):
        scanner, store, _ = await scan_env(EdgeStore(7, FORWARD), page_size=3)
        edges = await scanner.collect("known2", Direction.REVERSE)

        assert {e.key for e in edges} == {EdgeKey(s, d, r) for s, d, r, _, _ in FORWARD}
        assert all(c["return_columns"][0]["type"] == -7 for c in store.calls_to("scanEdge"))

    @pytest.mark.asyncio
    async def test_both_yields_each_key_once(self, scan_env):
        # 3->1@1 is only in the forward index, 5->6@0 only in the reverse one
        reverse = [e for e in FORWARD if e[:3] != (3, 1, 1)] + [(5, 6, 0, "z", None)]
        scanner, _, _ = await scan_env(EdgeStore(7, FORWARD, reverse), page_size=2)
        edges = await scanner.collect("known2", Direction.BOTH)

        keys = [e.key for e in edges]
        assert len(keys) == len(set(keys)) == 6
        assert EdgeKey(3, 1, 1) in keys
        assert EdgeKey(5, 6, 0) in keys


class TestScanFailures:
    """Test failure modes of a scan session."""

    @pytest.mark.asyncio
    async def test_unknown_edge_type_before_any_scan(self, scan_env):
        scanner, store, _ = await scan_env(EdgeStore(7, FORWARD))
        with pytest.raises(EdgeTypeNotFoundError):
            await scanner.collect("nope", Direction.FORWARD)
        assert store.calls_to("scanEdge") == []

    @pytest.mark.asyncio
    async def test_edge_type_resolved_once(self, scan_env):
        scanner, _, meta = await scan_env(EdgeStore(7, FORWARD))
        await scanner.collect("known2", Direction.FORWARD)
        await scanner.collect("known2", Direction.REVERSE)
        assert len(meta.calls_to("listEdges")) == 1

    @pytest.mark.asyncio
    async def test_connection_loss_interrupts_and_restarts(self, scan_env):
        backing = EdgeStore(7, FORWARD)
        pages = iter([backing, lambda body: Drop()])

        def flaky(body):
            # First page served, then the connection drops; afterwards healthy
            handler = next(pages, backing)
            return handler(body)

        scanner, store, _ = await scan_env(flaky, page_size=2)
        with pytest.raises(ScanInterruptedError) as exc_info:
            await scanner.collect("known2", Direction.FORWARD)
        assert exc_info.value.rows_yielded == 2
        assert exc_info.value.peer_id == "s1"

        edges = await scanner.collect("known2", Direction.FORWARD)
        assert len(edges) == len(FORWARD)
        # The retry is a new session starting from an empty cursor
        assert store.calls_to("scanEdge")[2]["parts"]["1"]["next_cursor"] is None

    @pytest.mark.asyncio
    async def test_failed_part(self, scan_env):
        def failing(body):
            return {
                "result": {"code": "SUCCEEDED", "failed_parts": [{"part_id": 1, "code": "E_LEADER_CHANGED"}]},
                "props": {"column_names": [], "rows": []},
                "cursors": {},
            }

        scanner, _, _ = await scan_env(failing)
        with pytest.raises(ApplicationError) as exc_info:
            await scanner.collect("known2", Direction.FORWARD)
        assert exc_info.value.code == "E_LEADER_CHANGED"

    def test_page_size_must_be_positive(self):
        with pytest.raises(ValueError):
            EdgeScanner(view=None, tracker=None, meta=None, page_size=0)


class TestScanCancellation:
    """Cancelling a run abandons pagination and closes every connection."""

    @pytest.mark.asyncio
    async def test_cancel_mid_scan_closes_peers(self, fake_server, cluster_config):
        entered = asyncio.Event()
        release = asyncio.Event()
        backing = EdgeStore(7, FORWARD)

        async def gated(body):
            if body["parts"]["1"]["next_cursor"] is not None:
                entered.set()
                await release.wait()
            return backing(body)

        store = await fake_server("store")
        store.on("getState", lambda body: raft_state(1, True))
        store.on("scanEdge", gated)
        meta_server = await fake_server("meta")
        meta_server.on("listEdges", lambda body: list_edges(("known2", 7)))

        view = ClusterView(cluster_config(storage_port=store.port, scan_timeout=5.0))
        meta = MetaClient("127.0.0.1", meta_server.port, timeout=0.5, connect_timeout=0.5)

        async def run():
            async with view:
                view.register_host_with_port("s1", "127.0.0.1", store.port)
                tracker = LeaderTracker(view)
                try:
                    scanner = EdgeScanner(view, tracker, meta, page_size=2)
                    return await scanner.collect("known2", Direction.FORWARD)
                finally:
                    await tracker.close()

        task = asyncio.create_task(run())
        try:
            await asyncio.wait_for(entered.wait(), timeout=2.0)
            peer = view.peer("s1")
            assert peer.is_connected(Service.RAFT)
            assert peer.is_connected(Service.STORAGE)

            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
        finally:
            if not task.done():
                task.cancel()
            release.set()
            await meta.close()

        assert not peer.is_connected(Service.RAFT)
        assert not peer.is_connected(Service.STORAGE)
        assert len(store.calls_to("scanEdge")) == 2
