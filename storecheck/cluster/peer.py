"""One replica of a partition and its connections.

A Peer holds at most one live connection per service endpoint (raft and
storage listen on different ports). Connections are opened lazily and are
replaced wholesale on reconnect; a broken connection object is closed and
dropped, never repaired in place.
"""

from enum import Enum

from storecheck.config import DEFAULT_RAFT_PORT, DEFAULT_STORAGE_PORT
from storecheck.errors import ConnectivityError
from storecheck.log_config import get_logger
from storecheck.rpc.connection import RpcConnection
from storecheck.rpc.protocol import GetStateResponse
from storecheck.rpc.services import RaftClient, StorageClient

log = get_logger("cluster.peer")


class Service(str, Enum):
    """Service endpoints exposed by a storage replica."""

    RAFT = "raft"
    STORAGE = "storage"


def parse_host(spec: str, default_port: int = DEFAULT_RAFT_PORT) -> tuple[str, int]:
    """Split 'host[:port]', falling back to the default raft port.

    Raises:
        ValueError: Empty host or non-numeric port
    """
    host, sep, port = spec.partition(":")
    if not host:
        raise ValueError(f"error parsing raft host {spec!r}: empty host")
    if not sep:
        return host, default_port
    try:
        return host, int(port)
    except ValueError as e:
        raise ValueError(f"error parsing raft host {spec!r}: {e}") from e


class Peer:
    """A single replica reachable at host (raft_port / storage_port)."""

    def __init__(
        self,
        peer_id: str,
        host: str,
        raft_port: int = DEFAULT_RAFT_PORT,
        storage_port: int = DEFAULT_STORAGE_PORT,
        connect_timeout: float = 4.0,
        max_frame_size: int = 64 * 1024 * 1024,
        buffer_size: int = 65536,
    ):
        self.id = peer_id
        self.host = host
        self.raft_port = raft_port
        self.storage_port = storage_port
        self.connect_timeout = connect_timeout
        self.max_frame_size = max_frame_size
        self.buffer_size = buffer_size
        self._conns: dict[Service, RpcConnection] = {}
        self._closed = False

    def __repr__(self) -> str:
        return f"Peer({self.id!r}, {self.host}:{self.raft_port})"

    def port_for(self, service: Service) -> int:
        return self.raft_port if service is Service.RAFT else self.storage_port

    def is_connected(self, service: Service = Service.RAFT) -> bool:
        conn = self._conns.get(service)
        return conn is not None and conn.is_open

    async def _open(self, service: Service) -> RpcConnection:
        return await RpcConnection.open(
            self.host,
            self.port_for(service),
            connect_timeout=self.connect_timeout,
            max_frame_size=self.max_frame_size,
            buffer_size=self.buffer_size,
        )

    async def connection(self, service: Service = Service.RAFT) -> RpcConnection:
        """Return the live connection for service, opening it if needed.

        Raises:
            ConnectivityError: Peer is closed or the connection cannot be opened
        """
        if self._closed:
            raise ConnectivityError(f"peer {self.id} is closed")
        conn = self._conns.get(service)
        if conn is not None and conn.is_open:
            return conn
        return await self.reconnect(service)

    async def reconnect(self, service: Service = Service.RAFT) -> RpcConnection:
        """Drop the current connection for service and open a new one.

        The old connection object is closed and discarded even if the new
        one cannot be opened.

        Raises:
            ConnectivityError: Peer is closed
            PeerConnectionError: The new connection failed
        """
        if self._closed:
            raise ConnectivityError(f"peer {self.id} is closed")
        old = self._conns.pop(service, None)
        if old is not None:
            await old.close()
        log.info(f"Connecting to {service.value} on {self.id} ({self.host}:{self.port_for(service)})")
        conn = await self._open(service)
        if self._closed:
            # close() ran while we were connecting
            await conn.close()
            raise ConnectivityError(f"peer {self.id} is closed")
        self._conns[service] = conn
        return conn

    async def get_state(self, space: int, part: int, timeout: float) -> GetStateResponse:
        conn = await self.connection(Service.RAFT)
        return await RaftClient(conn).get_state(space, part, timeout)

    async def storage(self) -> StorageClient:
        return StorageClient(await self.connection(Service.STORAGE))

    async def close(self) -> None:
        """Close every connection. Idempotent."""
        if self._closed:
            return
        self._closed = True
        conns = list(self._conns.values())
        self._conns.clear()
        for conn in conns:
            await conn.close()
        log.debug(f"Peer {self.id} closed")
