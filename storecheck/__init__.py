"""storecheck - diagnostics for a partitioned, raft-replicated graph store.

Answers two operator questions:
- which replica currently leads a (space, partition), polled from raft state
- whether the forward and reverse edge indexes of an edge type agree
"""

__version__ = "0.1.0"

from storecheck.checker import CheckReport, ConsistencyChecker, Mismatch, MissingInverse
from storecheck.cluster import ClusterView, LeaderTracker, Peer
from storecheck.config import ClusterConfig, Config
from storecheck.scan import Direction, Edge, EdgeKey, EdgeScanner

__all__ = [
    "CheckReport",
    "ClusterConfig",
    "ClusterView",
    "Config",
    "ConsistencyChecker",
    "Direction",
    "Edge",
    "EdgeKey",
    "EdgeScanner",
    "LeaderTracker",
    "Mismatch",
    "MissingInverse",
    "Peer",
]
