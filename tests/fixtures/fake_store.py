"""In-process fake of the store's framed RPC services.

One FakeStoreServer listens on 127.0.0.1 and answers any method it has a
handler for, so a single instance can play a raft endpoint, a storage
endpoint or the meta service. Handlers receive the request body and return
a response body, or one of the action objects below to misbehave.
"""

from __future__ import annotations

import asyncio
import base64
import inspect
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

import orjson

from storecheck.rpc.protocol import (
    Value,
    decode_envelope,
    encode_frame,
    encode_reply,
    read_frame,
)

MAX_FRAME = 16 * 1024 * 1024


@dataclass
class Drop:
    """Close the connection instead of answering."""


@dataclass
class Hang:
    """Sleep before answering nothing (client should time out)."""

    seconds: float = 1.0


@dataclass
class ErrorReply:
    """Answer with an error envelope."""

    code: str
    message: str = ""


@dataclass
class RawReply:
    """Answer with an arbitrary envelope."""

    envelope: dict


class FakeStoreServer:
    """Scriptable framed RPC server."""

    def __init__(self, name: str = "fake"):
        self.name = name
        self.handlers: dict[str, Callable[[dict], Any]] = {}
        self.calls: list[tuple[str, dict]] = []
        self.connections = 0
        self.port: int | None = None
        self._server: asyncio.AbstractServer | None = None
        self._writers: list[asyncio.StreamWriter] = []

    def on(self, method: str, handler: Callable[[dict], Any]) -> "FakeStoreServer":
        self.handlers[method] = handler
        return self

    def calls_to(self, method: str) -> list[dict]:
        return [body for m, body in self.calls if m == method]

    async def start(self) -> "FakeStoreServer":
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
        for writer in self._writers:
            writer.close()
        if self._server is not None:
            await self._server.wait_closed()
        self._server = None

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self._writers.append(writer)
        try:
            while True:
                envelope = decode_envelope(await read_frame(reader, MAX_FRAME))
                method, seq, body = envelope["method"], envelope["seq"], envelope["body"]
                self.calls.append((method, body))

                handler = self.handlers.get(method)
                if handler is None:
                    result: Any = ErrorReply("E_UNKNOWN_METHOD", method)
                else:
                    result = handler(body)
                    if inspect.isawaitable(result):
                        result = await result

                if isinstance(result, Drop):
                    return
                if isinstance(result, Hang):
                    await asyncio.sleep(result.seconds)
                    return
                if isinstance(result, ErrorReply):
                    payload = encode_reply(seq, error={"code": result.code, "message": result.message})
                elif isinstance(result, RawReply):
                    payload = orjson.dumps(result.envelope)
                else:
                    payload = encode_reply(seq, body=result)
                writer.write(encode_frame(payload, MAX_FRAME))
                await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()


# ══════════════════════════════════════════════════════════════════════════════
# RESPONSE BUILDERS
# ══════════════════════════════════════════════════════════════════════════════


def raft_state(term: int, is_leader: bool, error_code: str = "SUCCEEDED") -> dict:
    return {
        "error_code": error_code,
        "role": "LEADER" if is_leader else "FOLLOWER",
        "term": term,
        "is_leader": is_leader,
        "committed_log_id": 100,
        "last_log_id": 101,
        "last_log_term": term,
        "status": "RUNNING",
    }


def list_edges(*items: tuple[str, int], code: str = "SUCCEEDED") -> dict:
    return {
        "code": code,
        "edges": [{"edge_name": name, "edge_type": etype, "version": 0} for name, etype in items],
    }


def edge_row(
    src: int,
    edge_type: int,
    rank: int,
    dst: int,
    idx: str,
    ts: datetime | None = None,
) -> dict:
    """One scanned row in wire form, columns in scan order."""
    return {
        "values": [
            Value.of(src).to_wire(),
            Value.of(edge_type).to_wire(),
            Value.of(rank).to_wire(),
            Value.of(dst).to_wire(),
            Value.of(idx).to_wire(),
            Value.of(ts).to_wire(),
        ]
    }


def scan_page(rows: list[dict], part: int = 1, next_cursor: bytes | None = None) -> dict:
    return {
        "result": {"code": "SUCCEEDED", "failed_parts": []},
        "props": {
            "column_names": ["_src", "_type", "_rank", "_dst", "idx", "ts"],
            "rows": rows,
        },
        "cursors": {
            str(part): {
                "has_next": next_cursor is not None,
                "next_cursor": base64.b64encode(next_cursor).decode() if next_cursor else None,
            }
        },
    }


class EdgeStore:
    """Serves scanEdge pages for one partition from forward/reverse edge lists.

    Edges are given in logical (forward) orientation as
    (src, dst, rank, idx, ts); reverse scans return them with endpoints
    swapped and a negated type, the way the store keeps its reverse index.
    """

    def __init__(
        self,
        edge_type: int,
        forward: list[tuple],
        reverse: list[tuple] | None = None,
        part: int = 1,
    ):
        self.edge_type = edge_type
        self.forward = forward
        self.reverse = forward if reverse is None else reverse
        self.part = part

    def __call__(self, body: dict) -> dict:
        column = body["return_columns"][0]
        cursor = body["parts"][str(self.part)]
        limit = body["limit"]
        offset = 0
        if cursor["next_cursor"]:
            offset = int(base64.b64decode(cursor["next_cursor"]).decode())

        if column["type"] > 0:
            rows = [edge_row(s, self.edge_type, r, d, i, t) for s, d, r, i, t in self.forward]
        else:
            rows = [edge_row(d, -self.edge_type, r, s, i, t) for s, d, r, i, t in self.reverse]

        page = rows[offset:offset + limit]
        end = offset + len(page)
        next_cursor = str(end).encode() if end < len(rows) else None
        return scan_page(page, part=self.part, next_cursor=next_cursor)
