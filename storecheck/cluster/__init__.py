"""Replica connections, cluster view and leader discovery."""

from storecheck.cluster.leader import LeaderTracker, RaftStateReport, resolve_leader
from storecheck.cluster.peer import Peer, Service, parse_host
from storecheck.cluster.view import ClusterView, LeaderCache, LeaderState

__all__ = [
    "ClusterView",
    "LeaderCache",
    "LeaderState",
    "LeaderTracker",
    "Peer",
    "RaftStateReport",
    "Service",
    "parse_host",
    "resolve_leader",
]
