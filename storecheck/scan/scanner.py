"""Cursor-paginated edge scans against the partition leader.

Each call to `scan()` is one independent session: it resolves the leader,
starts from an empty cursor and pages until the partition reports no more
rows. Pages are strictly sequential because page N's cursor is needed to
request page N+1.

A connection loss mid-session is not resumed. The storage connection is
replaced and ScanInterruptedError is raised; callers that want a retry start
a fresh session, which re-reads from the beginning.
"""

from typing import AsyncIterator

from storecheck.cluster.leader import LeaderTracker
from storecheck.cluster.peer import Peer, Service
from storecheck.cluster.view import ClusterView
from storecheck.errors import ApplicationError, ConnectivityError, ScanInterruptedError
from storecheck.log_config import get_logger, log_timing
from storecheck.rpc.protocol import EdgeItem, EdgeProp, ScanCursor, ScanEdgeRequest
from storecheck.rpc.services import MetaClient
from storecheck.scan.edges import Direction, Edge, EdgeKey, decode_row, orient, scan_columns

log = get_logger("scan.scanner")


class EdgeScanner:
    """Scans one edge type of one partition from its current leader."""

    def __init__(
        self,
        view: ClusterView,
        tracker: LeaderTracker,
        meta: MetaClient,
        page_size: int = 4096,
        idx_prop: str = "idx",
        ts_prop: str = "ts",
    ):
        """Initialize the scanner.

        Args:
            view: Cluster of the partition to scan
            tracker: Leader tracker for that cluster
            meta: Meta client used to resolve edge type names
            page_size: Row limit per scanEdge call
            idx_prop: Auxiliary index property to fetch
            ts_prop: Timestamp property to fetch
        """
        if page_size <= 0:
            raise ValueError(f"page_size must be positive, got {page_size}")
        self.view = view
        self.tracker = tracker
        self.meta = meta
        self.page_size = page_size
        self.columns = scan_columns(idx_prop, ts_prop)
        self._edge_items: dict[str, EdgeItem] = {}

    async def resolve_edge_type(self, edge_name: str) -> EdgeItem:
        """Look up an edge type by name (once per scanner).

        Raises:
            EdgeTypeNotFoundError: Name not defined in the space
        """
        item = self._edge_items.get(edge_name)
        if item is None:
            item = await self.meta.get_edge_item(self.view.space_id, edge_name)
            log.debug(f"edge {edge_name}: type={item.edge_type} version={item.version}")
            self._edge_items[edge_name] = item
        return item

    async def scan(self, edge_name: str, direction: Direction) -> AsyncIterator[Edge]:
        """Yield every edge of edge_name in the given direction.

        Reverse edges come out aligned to forward orientation. BOTH runs a
        forward then a reverse session and yields each EdgeKey once, first
        seen wins.

        Raises:
            EdgeTypeNotFoundError: Before any scan RPC is sent
            LeaderUnavailableError: No leader for the partition
            ScanInterruptedError: Connection lost between pages
            ApplicationError: Storage reported a failed scan
            RowDecodeError: A row could not be decoded
        """
        item = await self.resolve_edge_type(edge_name)

        if direction is not Direction.BOTH:
            async for edge in self._scan_session(item, direction):
                yield edge
            return

        seen: set[EdgeKey] = set()
        for single in (Direction.FORWARD, Direction.REVERSE):
            async for edge in self._scan_session(item, single):
                if edge.key in seen:
                    continue
                seen.add(edge.key)
                yield edge

    async def collect(self, edge_name: str, direction: Direction) -> list[Edge]:
        """Run scan() to completion and return the edges."""
        with log_timing(f"{direction.value} scan of {edge_name}", log, level="info"):
            edges = [edge async for edge in self.scan(edge_name, direction)]
        log.info(f"{direction.value} scan of {edge_name}: {len(edges)} edges")
        return edges

    async def _scan_session(self, item: EdgeItem, direction: Direction) -> AsyncIterator[Edge]:
        orientation = orient(item.edge_type, direction)
        part_id = self.view.part_id

        leader_id = await self.tracker.get_leader()
        peer = self.view.peer(leader_id)
        storage = await peer.storage()
        log.debug(f"scanning {item.edge_name} ({direction.value}) on leader {leader_id}")

        cursor = ScanCursor()
        rows_yielded = 0
        page = 0
        while True:
            req = ScanEdgeRequest(
                space_id=self.view.space_id,
                parts={part_id: cursor},
                return_columns=[EdgeProp(type=orientation.rpc_edge_type, props=self.columns)],
                limit=self.page_size,
            )
            try:
                resp = await storage.scan_edge(req, timeout=self.view.config.scan_timeout)
            except ConnectivityError as e:
                await self._reset(peer)
                raise ScanInterruptedError(peer.id, rows_yielded, e) from e

            page += 1
            edges = [decode_row(row, orientation) for row in resp.rows]
            log.info(f"scanning {len(edges)} edge with cursor: {cursor.next_cursor!r} (page {page})")
            for edge in edges:
                yield edge
                rows_yielded += 1

            next_cursor = resp.cursors.get(part_id)
            if next_cursor is None or not next_cursor.has_next:
                break
            if next_cursor.next_cursor is None:
                raise ApplicationError(
                    "MISSING_CURSOR", f"part {part_id} reported more rows without a cursor"
                )
            cursor = next_cursor

        log.debug(f"{direction.value} session on {leader_id} done: {rows_yielded} rows, {page} pages")

    async def _reset(self, peer: Peer) -> None:
        try:
            await peer.reconnect(Service.STORAGE)
        except ConnectivityError as e:
            log.error(f"failed reconnecting to storage on {peer.id}: {e}")
