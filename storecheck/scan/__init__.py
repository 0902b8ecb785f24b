"""Directional, paginated edge scanning."""

from storecheck.scan.edges import (
    Direction,
    Edge,
    EdgeKey,
    ScanOrientation,
    decode_row,
    orient,
    scan_columns,
)
from storecheck.scan.scanner import EdgeScanner

__all__ = [
    "Direction",
    "Edge",
    "EdgeKey",
    "EdgeScanner",
    "ScanOrientation",
    "decode_row",
    "orient",
    "scan_columns",
]
