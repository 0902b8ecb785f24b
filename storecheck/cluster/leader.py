"""Leader discovery for one partition.

The tracker polls every replica's raft state and resolves the leader as the
replica reporting the highest term among those claiming leadership. Results
are cached on the ClusterView for refresh_interval seconds. Refreshes are
single-flight: concurrent callers share one in-flight refresh task.

Failure policy per replica during a refresh:
- transient connectivity failure: reconnect it, it gets no vote this round
- non-success status: log it, it gets no vote this round
Neither aborts the refresh.
"""

import asyncio
import time
from contextlib import suppress
from dataclasses import dataclass
from typing import Callable

from storecheck.cluster.peer import Peer, Service
from storecheck.cluster.view import ClusterView, LeaderState
from storecheck.errors import (
    ConnectivityError,
    ErrorCategory,
    LeaderUnavailableError,
    StoreCheckError,
    classify_error,
)
from storecheck.log_config import get_logger
from storecheck.rpc.protocol import SUCCEEDED

log = get_logger("cluster.leader")


@dataclass
class RaftStateReport:
    """Outcome of polling one replica during one refresh."""

    peer_id: str
    reachable: bool
    error_code: str | None = None
    is_leader: bool = False
    term: int = 0
    role: str = "UNKNOWN"
    committed_log_id: int = 0
    last_log_id: int = 0
    error: str | None = None

    @property
    def can_vote(self) -> bool:
        """Only successful reports take part in leader resolution."""
        return self.reachable and self.error_code == SUCCEEDED


def resolve_leader(reports: list[RaftStateReport]) -> tuple[str, int] | None:
    """Pick the leader from one round of reports.

    Highest term among replicas reporting is_leader wins. Equal terms (two
    replicas both claiming leadership of the same term) go to the smallest
    peer id so the outcome never depends on response order.

    Returns:
        (peer_id, term), or None when nobody claims leadership
    """
    claims = [r for r in reports if r.can_vote and r.is_leader]
    if not claims:
        return None

    best = min(claims, key=lambda r: (-r.term, r.peer_id))
    tied = sorted(r.peer_id for r in claims if r.term == best.term)
    if len(tied) > 1:
        log.warning(f"Split brain: {tied} all claim leadership of term {best.term}, picking {best.peer_id}")
    return best.peer_id, best.term


class LeaderTracker:
    """Resolves and caches the raft leader of a ClusterView's partition."""

    def __init__(self, view: ClusterView, clock: Callable[[], float] = time.monotonic):
        """Initialize the tracker.

        Args:
            view: Cluster whose peers are polled and whose cache is updated
            clock: Monotonic clock used for cache freshness
        """
        self.view = view
        self._cache = view.leader_cache
        self._clock = clock
        self._task: asyncio.Task | None = None
        self._last_reports: list[RaftStateReport] = []

    @property
    def state(self) -> LeaderState:
        return self._cache.state

    @property
    def leader(self) -> str | None:
        """Cached leader id without triggering a refresh."""
        return self._cache.leader_id

    @property
    def term(self) -> int:
        return self._cache.term

    @property
    def last_reports(self) -> list[RaftStateReport]:
        return list(self._last_reports)

    async def get_leader(self, timeout: float | None = None) -> str:
        """Return the current leader's peer id.

        A fresh cached value is returned immediately. A stale one is returned
        too, while a background refresh updates it. With nothing cached the
        caller waits for refreshes, at most `timeout` seconds.

        Args:
            timeout: Wait bound in seconds (default: ClusterConfig.leader_wait_timeout)

        Raises:
            LeaderUnavailableError: No leader determined within the bound
        """
        cfg = self.view.config
        wait = cfg.leader_wait_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait

        while True:
            async with self._cache.lock:
                if self._cache.leader_id is not None and self._cache.is_fresh(self._clock()):
                    return self._cache.leader_id
                task = self._start_refresh_locked()
                if self._cache.leader_id is not None:
                    log.trace(f"Serving stale leader {self._cache.leader_id} while refreshing")
                    return self._cache.leader_id

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise LeaderUnavailableError(self.view.space_id, self.view.part_id, wait)
            try:
                await asyncio.wait_for(asyncio.shield(task), remaining)
            except asyncio.TimeoutError as e:
                raise LeaderUnavailableError(self.view.space_id, self.view.part_id, wait) from e

            async with self._cache.lock:
                if self._cache.leader_id is not None:
                    return self._cache.leader_id

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise LeaderUnavailableError(self.view.space_id, self.view.part_id, wait)
            await asyncio.sleep(min(cfg.leader_poll_interval, remaining))

    async def refresh(self) -> list[RaftStateReport]:
        """Run (or join) a refresh and return its per-peer reports."""
        async with self._cache.lock:
            task = self._start_refresh_locked()
        return await asyncio.shield(task)

    def _start_refresh_locked(self) -> asyncio.Task:
        """Start a refresh unless one is running. Caller holds the cache lock."""
        if self._task is None or self._task.done():
            self._cache.refreshing = True
            self._task = asyncio.create_task(
                self._refresh(),
                name=f"leader-refresh-{self.view.space_id}-{self.view.part_id}",
            )
            self._task.add_done_callback(self._on_refresh_done)
        return self._task

    def _on_refresh_done(self, task: asyncio.Task) -> None:
        # A task cancelled before its first step never reaches _refresh's finally
        if self._task is None or task is self._task:
            self._cache.refreshing = False
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.opt(exception=exc).error(f"leader refresh of part {self.view.part_id} failed: {exc}")

    async def _refresh(self) -> list[RaftStateReport]:
        try:
            peers = self.view.get_peers()
            log.debug(f"Refreshing leader of space={self.view.space_id} part={self.view.part_id} from {len(peers)} peers")
            reports = list(await asyncio.gather(*(self._poll_peer(p) for p in peers)))
            resolved = resolve_leader(reports)

            async with self._cache.lock:
                previous = self._cache.leader_id
                if resolved is None:
                    self._cache.leader_id, self._cache.term = None, 0
                else:
                    self._cache.leader_id, self._cache.term = resolved
                self._cache.last_refresh = self._clock()
                self._last_reports = reports

            if resolved is None:
                log.debug("No peer claims leadership this round")
            elif resolved[0] != previous:
                log.info(f"Leader of part {self.view.part_id} is {resolved[0]} (term {resolved[1]})")
            return reports
        finally:
            self._cache.refreshing = False

    async def _poll_peer(self, peer: Peer) -> RaftStateReport:
        cfg = self.view.config
        try:
            resp = await peer.get_state(cfg.space_id, cfg.part_id, cfg.raft_timeout)
        except StoreCheckError as e:
            if classify_error(e) is ErrorCategory.TRANSIENT:
                log.error(f"error retrieving leader info from {peer.id}: {e}")
                await self._reconnect(peer)
                return RaftStateReport(peer_id=peer.id, reachable=False, error=str(e))
            code = getattr(e, "code", type(e).__name__)
            log.warning(f"Peer {peer.id} unavailable this round: {e}")
            return RaftStateReport(peer_id=peer.id, reachable=True, error_code=code, error=str(e))

        report = RaftStateReport(
            peer_id=peer.id,
            reachable=True,
            error_code=resp.error_code,
            is_leader=resp.is_leader,
            term=resp.term,
            role=resp.role,
            committed_log_id=resp.committed_log_id,
            last_log_id=resp.last_log_id,
        )
        if resp.error_code != SUCCEEDED:
            log.warning(f"failed getting raft status from {peer.id}: {resp.error_code}")
        elif resp.is_leader:
            log.trace(f"found leader of term {resp.term}: {peer.id}")
        return report

    async def _reconnect(self, peer: Peer) -> None:
        try:
            await peer.reconnect(Service.RAFT)
        except ConnectivityError as e:
            log.error(f"failed connecting to raft on {peer.id}: {e}")

    async def close(self) -> None:
        """Cancel an in-flight refresh."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
        self._task = None
