"""Cluster view: the replicas of one (space, partition) and the leader cache."""

import asyncio
from dataclasses import dataclass, field
from enum import Enum

from storecheck.cluster.peer import Peer, parse_host
from storecheck.config import ClusterConfig
from storecheck.errors import ConnectivityError, NotFoundError
from storecheck.log_config import get_logger

log = get_logger("cluster.view")


class LeaderState(str, Enum):
    """Leader cache state machine: UNKNOWN -> REFRESHING -> KNOWN -> REFRESHING ..."""

    UNKNOWN = "unknown"
    REFRESHING = "refreshing"
    KNOWN = "known"


@dataclass
class LeaderCache:
    """Cached leader identity for one partition.

    Only the LeaderTracker reads or writes these fields, always under lock.

    Attributes:
        refresh_interval: Seconds a completed refresh stays fresh
        leader_id: Peer id of the resolved leader, None when unknown
        term: Raft term the leader reported
        last_refresh: time.monotonic() of the last completed refresh
        refreshing: A refresh task is in flight
    """

    refresh_interval: float
    leader_id: str | None = None
    term: int = 0
    last_refresh: float | None = None
    refreshing: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def state(self) -> LeaderState:
        if self.refreshing:
            return LeaderState.REFRESHING
        if self.leader_id is not None:
            return LeaderState.KNOWN
        return LeaderState.UNKNOWN

    def is_fresh(self, now: float) -> bool:
        if self.last_refresh is None:
            return False
        return now - self.last_refresh < self.refresh_interval


class ClusterView:
    """The set of replicas serving one partition.

    Created once per diagnostic run and torn down at the end of it; use as an
    async context manager so every peer connection is closed on exit, even on
    cancellation.
    """

    def __init__(self, config: ClusterConfig):
        self.config = config
        self.peers: dict[str, Peer] = {}
        self.leader_cache = LeaderCache(refresh_interval=config.refresh_interval)
        self._closed = False

    @property
    def space_id(self) -> int:
        return self.config.space_id

    @property
    def part_id(self) -> int:
        return self.config.part_id

    def __str__(self) -> str:
        hosts = ", ".join(f"{p.id}={p.host}:{p.raft_port}" for p in self.get_peers())
        return (
            f"ClusterView(space={self.space_id}, part={self.part_id}, "
            f"leader={self.leader_cache.leader_id}, peers=[{hosts}])"
        )

    def register_host(self, peer_id: str, host_spec: str) -> Peer:
        """Register a replica given as 'host[:raft_port]'."""
        host, port = parse_host(host_spec, self.config.raft_port)
        return self.register_host_with_port(peer_id, host, port)

    def register_host_with_port(self, peer_id: str, host: str, port: int) -> Peer:
        """Register a replica. Connections are opened on first use.

        Raises:
            ValueError: peer_id is already registered
        """
        if peer_id in self.peers:
            raise ValueError(f"peer {peer_id!r} already registered")
        log.info(f"Registering raft host {peer_id}: {host}:{port}")
        peer = Peer(
            peer_id,
            host,
            raft_port=port,
            storage_port=self.config.storage_port,
            connect_timeout=self.config.connect_timeout,
            max_frame_size=self.config.max_frame_size,
            buffer_size=self.config.buffer_size,
        )
        self.peers[peer_id] = peer
        return peer

    def get_peers(self) -> list[Peer]:
        """All registered peers, ordered by id."""
        return [self.peers[k] for k in sorted(self.peers)]

    def peer(self, peer_id: str) -> Peer:
        try:
            return self.peers[peer_id]
        except KeyError:
            raise NotFoundError(f"unknown peer {peer_id!r}") from None

    async def connect_all(self) -> dict[str, ConnectivityError]:
        """Eagerly open raft connections; returns failures keyed by peer id.

        Unreachable peers stay registered and are retried on every refresh.
        """
        failures: dict[str, ConnectivityError] = {}
        for peer in self.get_peers():
            try:
                await peer.connection()
            except ConnectivityError as e:
                log.warning(f"Peer {peer.id} unreachable at startup: {e}")
                failures[peer.id] = e
        return failures

    async def close(self) -> None:
        """Close every peer. Idempotent."""
        if self._closed:
            return
        self._closed = True
        for peer in self.get_peers():
            await peer.close()
        log.debug(f"Cluster view for space={self.space_id} part={self.part_id} closed")

    async def __aenter__(self) -> "ClusterView":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
