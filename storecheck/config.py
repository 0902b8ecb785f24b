"""Configuration for storecheck.

Simple dataclass-based configuration with sensible defaults.
Override via environment variables with STORECHECK_ prefix.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from storecheck.log_config import get_logger

log = get_logger("config")

# Look for .env in the working directory and package parent
_pkg_dir = Path(__file__).parent.parent
_env_loaded = load_dotenv(Path.cwd() / ".env") or load_dotenv(_pkg_dir / ".env")
log.debug(f"Loaded .env file: {_env_loaded}")

# Well-known service ports of the store
DEFAULT_META_PORT = 9559
DEFAULT_STORAGE_PORT = 9779
DEFAULT_RAFT_PORT = 9780


def _get_env(key: str, default: str) -> str:
    """Get environment variable with STORECHECK_ prefix."""
    return os.getenv(f"STORECHECK_{key}", default)


def _get_env_int(key: str, default: int) -> int:
    return int(_get_env(key, str(default)))


def _get_env_float(key: str, default: float) -> float:
    return float(_get_env(key, str(default)))


def parse_peer_specs(raw: str) -> dict[str, str]:
    """Parse 'id=host[:port],...' into {id: host_spec}.

    A bare 'host[:port]' entry uses the host part as its id.
    """
    peers: dict[str, str] = {}
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        if "=" in item:
            peer_id, host_spec = item.split("=", 1)
            peer_id, host_spec = peer_id.strip(), host_spec.strip()
        else:
            host_spec = item
            peer_id = item.split(":", 1)[0]
        if not peer_id or not host_spec:
            raise ValueError(f"invalid peer spec: {item!r}")
        peers[peer_id] = host_spec
    return peers


@dataclass(frozen=True)
class ClusterConfig:
    """Everything a ClusterView needs to know about one (space, partition).

    Attributes:
        space_id: Graph space to inspect
        part_id: Partition within the space
        refresh_interval: Leader cache freshness window (seconds)
        leader_wait_timeout: Upper bound on waiting for an unknown leader
        leader_poll_interval: Pause between refreshes that found no leader
        raft_port: Default raft service port for hosts without an explicit port
        storage_port: Storage service port used for scans
        connect_timeout: TCP connect timeout
        raft_timeout: Per-call timeout for getState
        scan_timeout: Per-call timeout for one scanEdge page
        max_frame_size: Largest accepted frame (bytes)
        buffer_size: Stream buffer size (bytes)
    """

    space_id: int
    part_id: int
    refresh_interval: float = 0.5
    leader_wait_timeout: float = 10.0
    leader_poll_interval: float = 0.1
    raft_port: int = DEFAULT_RAFT_PORT
    storage_port: int = DEFAULT_STORAGE_PORT
    connect_timeout: float = 4.0
    raft_timeout: float = 0.5
    scan_timeout: float = 30.0
    max_frame_size: int = 64 * 1024 * 1024
    buffer_size: int = 65536


@dataclass
class Config:
    """storecheck configuration.

    Attributes:
        space_id: Space to inspect (default: 1)
        part_id: Partition to inspect (default: 1)
        edge_name: Edge type audited by check-edges (default: known2)
        meta_addr: Meta service host:port (default: meta1:9559)
        peers: Replica specs as {peer_id: host[:raft_port]}
        page_size: Rows requested per scanEdge page (default: 4096)
        idx_prop: Name of the auxiliary index property column
        ts_prop: Name of the timestamp property column
    """

    space_id: int = field(default_factory=lambda: _get_env_int("SPACE_ID", 1))
    part_id: int = field(default_factory=lambda: _get_env_int("PART_ID", 1))
    edge_name: str = field(default_factory=lambda: _get_env("EDGE_NAME", "known2"))
    meta_addr: str = field(
        default_factory=lambda: _get_env("META_ADDR", f"meta1:{DEFAULT_META_PORT}")
    )
    peers: dict[str, str] = field(
        default_factory=lambda: parse_peer_specs(
            _get_env("PEERS", "store1=store1,store2=store2,store3=store3")
        )
    )

    raft_port: int = field(default_factory=lambda: _get_env_int("RAFT_PORT", DEFAULT_RAFT_PORT))
    storage_port: int = field(
        default_factory=lambda: _get_env_int("STORAGE_PORT", DEFAULT_STORAGE_PORT)
    )
    page_size: int = field(default_factory=lambda: _get_env_int("PAGE_SIZE", 4096))
    idx_prop: str = field(default_factory=lambda: _get_env("IDX_PROP", "idx"))
    ts_prop: str = field(default_factory=lambda: _get_env("TS_PROP", "ts"))

    # Timeouts (seconds)
    connect_timeout: float = field(default_factory=lambda: _get_env_float("CONNECT_TIMEOUT", 4.0))
    raft_timeout: float = field(default_factory=lambda: _get_env_float("RAFT_TIMEOUT", 0.5))
    meta_timeout: float = field(default_factory=lambda: _get_env_float("META_TIMEOUT", 0.5))
    scan_timeout: float = field(default_factory=lambda: _get_env_float("SCAN_TIMEOUT", 30.0))
    refresh_interval: float = field(
        default_factory=lambda: _get_env_float("REFRESH_INTERVAL", 0.5)
    )
    leader_wait_timeout: float = field(
        default_factory=lambda: _get_env_float("LEADER_WAIT_TIMEOUT", 10.0)
    )

    max_frame_size: int = field(
        default_factory=lambda: _get_env_int("MAX_FRAME_SIZE", 64 * 1024 * 1024)
    )
    buffer_size: int = field(default_factory=lambda: _get_env_int("BUFFER_SIZE", 65536))

    def __post_init__(self):
        """Validate numeric settings."""
        if self.page_size <= 0:
            raise ValueError(f"page_size must be positive, got {self.page_size}")
        if self.leader_wait_timeout <= 0:
            raise ValueError("leader_wait_timeout must be positive")

        log.debug(f"space_id={self.space_id}, part_id={self.part_id}")
        log.debug(f"meta_addr={self.meta_addr}, peers={self.peers}")
        log.debug(
            f"timeouts: connect={self.connect_timeout}s raft={self.raft_timeout}s "
            f"meta={self.meta_timeout}s scan={self.scan_timeout}s"
        )

    def cluster(self) -> ClusterConfig:
        """Build the ClusterConfig for the configured (space, partition)."""
        return ClusterConfig(
            space_id=self.space_id,
            part_id=self.part_id,
            refresh_interval=self.refresh_interval,
            leader_wait_timeout=self.leader_wait_timeout,
            raft_port=self.raft_port,
            storage_port=self.storage_port,
            connect_timeout=self.connect_timeout,
            raft_timeout=self.raft_timeout,
            scan_timeout=self.scan_timeout,
            max_frame_size=self.max_frame_size,
            buffer_size=self.buffer_size,
        )

    def meta_host_port(self) -> tuple[str, int]:
        """Split meta_addr into (host, port)."""
        host, sep, port = self.meta_addr.rpartition(":")
        if not sep:
            return self.meta_addr, DEFAULT_META_PORT
        try:
            return host, int(port)
        except ValueError as e:
            raise ValueError(f"invalid meta address {self.meta_addr!r}") from e
