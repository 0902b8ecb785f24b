"""Typed clients for the meta, raft and storage services.

RaftClient and StorageClient wrap a connection owned by a Peer. MetaClient
owns its connection, opening it lazily on first use the same way the
backend HTTP client does.
"""

from storecheck.errors import ApplicationError, EdgeTypeNotFoundError
from storecheck.log_config import get_logger
from storecheck.rpc.connection import RpcConnection
from storecheck.rpc.protocol import (
    SUCCEEDED,
    EdgeItem,
    GetStateRequest,
    GetStateResponse,
    ListEdgesResponse,
    ScanEdgeRequest,
    ScanEdgeResponse,
)

log = get_logger("rpc.services")


class RaftClient:
    """Raft service (read-only: we only ever ask for state)."""

    METHOD_GET_STATE = "getState"

    def __init__(self, conn: RpcConnection):
        self.conn = conn

    async def get_state(self, space: int, part: int, timeout: float) -> GetStateResponse:
        """Ask the replica for its raft state of (space, part).

        The response is returned even when error_code is not SUCCEEDED;
        deciding what a failed status means is up to the caller.
        """
        body = await self.conn.call(
            self.METHOD_GET_STATE, GetStateRequest(space, part).to_body(), timeout
        )
        resp = GetStateResponse.from_body(body)
        log.trace(f"getState {self.conn.address} space={space} part={part}: {resp}")
        return resp


class StorageClient:
    """Storage service, scan endpoint only."""

    METHOD_SCAN_EDGE = "scanEdge"

    def __init__(self, conn: RpcConnection):
        self.conn = conn

    async def scan_edge(self, req: ScanEdgeRequest, timeout: float) -> ScanEdgeResponse:
        """Fetch one page of edges.

        Raises:
            ApplicationError: Result code not SUCCEEDED or a partition failed
        """
        body = await self.conn.call(self.METHOD_SCAN_EDGE, req.to_body(), timeout)
        resp = ScanEdgeResponse.from_body(body)
        if resp.code != SUCCEEDED:
            raise ApplicationError(resp.code, f"scanEdge on {self.conn.address}")
        if resp.failed_parts:
            failed = resp.failed_parts[0]
            raise ApplicationError(
                str(failed.get("code", "PART_FAILED")),
                f"scanEdge part {failed.get('part_id')} failed on {self.conn.address}",
            )
        return resp


class MetaClient:
    """Meta service client for schema lookups.

    Handles:
    - Lazy connection on first request
    - Reconnect when the previous connection broke
    - Edge type name resolution
    """

    METHOD_LIST_EDGES = "listEdges"

    def __init__(
        self,
        host: str,
        port: int,
        timeout: float = 0.5,
        connect_timeout: float = 4.0,
        max_frame_size: int = 64 * 1024 * 1024,
        buffer_size: int = 65536,
    ):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.max_frame_size = max_frame_size
        self.buffer_size = buffer_size
        self._conn: RpcConnection | None = None

    async def _get_connection(self) -> RpcConnection:
        """Get or create the meta connection."""
        if self._conn is None or not self._conn.is_open:
            if self._conn is not None:
                await self._conn.close()
            self._conn = await RpcConnection.open(
                self.host,
                self.port,
                connect_timeout=self.connect_timeout,
                max_frame_size=self.max_frame_size,
                buffer_size=self.buffer_size,
            )
        return self._conn

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def list_edges(self, space_id: int) -> list[EdgeItem]:
        """List every edge type defined in the space.

        Raises:
            ApplicationError: Meta returned a non-success code
        """
        conn = await self._get_connection()
        body = await conn.call(self.METHOD_LIST_EDGES, {"space_id": space_id}, self.timeout)
        resp = ListEdgesResponse.from_body(body)
        log.debug(f"listEdges space={space_id}: code={resp.code}, {len(resp.edges)} edges")
        if resp.code != SUCCEEDED:
            raise ApplicationError(resp.code, f"listEdges for space {space_id}")
        return resp.edges

    async def get_edge_item(self, space_id: int, edge_name: str) -> EdgeItem:
        """Resolve an edge type name to its schema entry.

        Raises:
            EdgeTypeNotFoundError: No edge type with that name in the space
        """
        for item in await self.list_edges(space_id):
            log.trace(f"found edge: {item.edge_name}")
            if item.edge_name == edge_name:
                return item
        raise EdgeTypeNotFoundError(edge_name, space_id)
