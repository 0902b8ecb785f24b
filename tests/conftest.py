"""Shared pytest fixtures for storecheck tests."""

from __future__ import annotations

from typing import Any, Callable

import pytest
import pytest_asyncio

from storecheck.cluster.leader import LeaderTracker
from storecheck.cluster.view import ClusterView
from storecheck.config import ClusterConfig
from storecheck.rpc.services import MetaClient
from storecheck.scan.scanner import EdgeScanner
from tests.fixtures.fake_store import FakeStoreServer, list_edges, raft_state


@pytest_asyncio.fixture
async def fake_server():
    """Factory starting FakeStoreServers, all stopped at teardown."""
    servers: list[FakeStoreServer] = []

    async def _start(name: str = "fake") -> FakeStoreServer:
        server = await FakeStoreServer(name).start()
        servers.append(server)
        return server

    yield _start

    for server in servers:
        await server.stop()


@pytest.fixture
def cluster_config():
    """Factory for ClusterConfig with test-friendly (short) timeouts."""

    def _make(**overrides: Any) -> ClusterConfig:
        settings: dict[str, Any] = {
            "space_id": 1,
            "part_id": 1,
            "refresh_interval": 60.0,
            "leader_wait_timeout": 1.0,
            "leader_poll_interval": 0.02,
            "connect_timeout": 0.5,
            "raft_timeout": 0.3,
            "scan_timeout": 1.0,
        }
        settings.update(overrides)
        return ClusterConfig(**settings)

    return _make


@pytest_asyncio.fixture
async def raft_cluster(fake_server, cluster_config):
    """Factory: {peer_id: getState handler} -> (view, tracker, servers).

    Every peer gets its own fake raft endpoint on 127.0.0.1.
    """
    views: list[ClusterView] = []
    trackers: list[LeaderTracker] = []

    async def _make(handlers: dict[str, Callable[[dict], Any]], **config_overrides: Any):
        view = ClusterView(cluster_config(**config_overrides))
        servers: dict[str, FakeStoreServer] = {}
        for peer_id, handler in handlers.items():
            server = await fake_server(peer_id)
            server.on("getState", handler)
            view.register_host_with_port(peer_id, "127.0.0.1", server.port)
            servers[peer_id] = server
        tracker = LeaderTracker(view)
        views.append(view)
        trackers.append(tracker)
        return view, tracker, servers

    yield _make

    for tracker in trackers:
        await tracker.close()
    for view in views:
        await view.close()


@pytest_asyncio.fixture
async def scan_env(fake_server, cluster_config):
    """Factory: single-leader partition plus meta service -> (scanner, store, meta).

    The store server answers both getState (always leader) and scanEdge
    through `scan_handler`; the meta server lists `edge_types`.
    """
    resources: list[tuple[ClusterView, LeaderTracker, MetaClient]] = []

    async def _make(
        scan_handler: Callable[[dict], Any],
        edge_types: tuple[tuple[str, int], ...] = (("known2", 7),),
        page_size: int = 4096,
    ):
        store = await fake_server("store")
        store.on("getState", lambda body: raft_state(1, True))
        store.on("scanEdge", scan_handler)
        meta_server = await fake_server("meta")
        meta_server.on("listEdges", lambda body: list_edges(*edge_types))

        view = ClusterView(cluster_config(storage_port=store.port))
        view.register_host_with_port("s1", "127.0.0.1", store.port)
        tracker = LeaderTracker(view)
        meta = MetaClient("127.0.0.1", meta_server.port, timeout=0.5, connect_timeout=0.5)
        resources.append((view, tracker, meta))
        scanner = EdgeScanner(view, tracker, meta, page_size=page_size)
        return scanner, store, meta_server

    yield _make

    for view, tracker, meta in resources:
        await tracker.close()
        await meta.close()
        await view.close()
