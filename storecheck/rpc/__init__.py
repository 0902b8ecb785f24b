"""Framed RPC transport and service clients for the graph store."""

from storecheck.rpc.connection import RpcConnection
from storecheck.rpc.protocol import (
    SUCCEEDED,
    EdgeItem,
    GetStateResponse,
    ScanCursor,
    ScanEdgeRequest,
    ScanEdgeResponse,
    Value,
    ValueKind,
)
from storecheck.rpc.services import MetaClient, RaftClient, StorageClient

__all__ = [
    "RpcConnection",
    "SUCCEEDED",
    "EdgeItem",
    "GetStateResponse",
    "ScanCursor",
    "ScanEdgeRequest",
    "ScanEdgeResponse",
    "Value",
    "ValueKind",
    "MetaClient",
    "RaftClient",
    "StorageClient",
]
