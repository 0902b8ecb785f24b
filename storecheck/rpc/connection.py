"""Framed RPC channel over an asyncio stream.

One RpcConnection is one TCP connection to one service endpoint. Calls are
strictly serial: a lock keeps two flows from interleaving frames on the same
stream. After any transport failure the connection is marked broken and must
be replaced, never reused.
"""

import asyncio
from typing import Any

from storecheck.errors import (
    ApplicationError,
    ConnectivityError,
    OutOfSequenceError,
    PeerConnectionError,
    ProtocolVersionError,
    RpcTimeoutError,
)
from storecheck.log_config import get_logger
from storecheck.rpc.protocol import (
    PROTOCOL_VERSION,
    decode_envelope,
    encode_envelope,
    encode_frame,
    read_frame,
)

log = get_logger("rpc.connection")


class RpcConnection:
    """A single framed, buffered RPC connection.

    Use RpcConnection.open() to create one; the constructor only wraps
    already-connected streams.
    """

    def __init__(
        self,
        host: str,
        port: int,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        max_frame_size: int,
    ):
        self.host = host
        self.port = port
        self._reader = reader
        self._writer = writer
        self._max_frame_size = max_frame_size
        self._seq = 0
        self._lock = asyncio.Lock()
        self._closed = False
        self._broken = False

    @classmethod
    async def open(
        cls,
        host: str,
        port: int,
        connect_timeout: float = 4.0,
        max_frame_size: int = 64 * 1024 * 1024,
        buffer_size: int = 65536,
    ) -> "RpcConnection":
        """Connect to host:port, failing fast after connect_timeout.

        Raises:
            PeerConnectionError: Connection refused, unresolvable, or timed out
        """
        log.debug(f"Connecting to {host}:{port} (timeout={connect_timeout}s)")
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port, limit=buffer_size),
                timeout=connect_timeout,
            )
        except asyncio.TimeoutError as e:
            raise PeerConnectionError(host, port, f"i/o timeout after {connect_timeout}s") from e
        except OSError as e:
            raise PeerConnectionError(host, port, str(e) or type(e).__name__) from e

        writer.transport.set_write_buffer_limits(high=buffer_size)
        log.debug(f"Connected to {host}:{port}")
        return cls(host, port, reader, writer, max_frame_size)

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def is_open(self) -> bool:
        return not self._closed and not self._broken

    async def call(self, method: str, body: dict[str, Any], timeout: float) -> dict[str, Any]:
        """Send one request and wait for its response body.

        Args:
            method: Remote method name (e.g. "getState")
            body: Request body
            timeout: Per-call timeout in seconds

        Returns:
            Response body

        Raises:
            ConnectivityError: Transport failure; the connection is now broken
            ApplicationError: Server returned an error envelope
        """
        if not self.is_open:
            raise ConnectivityError(f"connection to {self.address} is closed")

        async with self._lock:
            self._seq += 1
            seq = self._seq
            try:
                return await asyncio.wait_for(self._roundtrip(seq, method, body), timeout)
            except asyncio.TimeoutError as e:
                self._broken = True
                raise RpcTimeoutError(
                    f"{method} to {self.address}: i/o timeout after {timeout}s"
                ) from e
            except ConnectivityError:
                self._broken = True
                raise
            except asyncio.IncompleteReadError as e:
                self._broken = True
                raise ConnectivityError(f"{method} to {self.address}: EOF") from e
            except (ConnectionError, OSError) as e:
                self._broken = True
                raise ConnectivityError(f"{method} to {self.address}: {e}") from e
            except asyncio.CancelledError:
                # A half-read response would desync the stream
                self._broken = True
                raise

    async def _roundtrip(self, seq: int, method: str, body: dict[str, Any]) -> dict[str, Any]:
        frame = encode_frame(encode_envelope(seq, method, body), self._max_frame_size)
        self._writer.write(frame)
        await self._writer.drain()

        envelope = decode_envelope(await read_frame(self._reader, self._max_frame_size))
        version = envelope.get("v")
        if version != PROTOCOL_VERSION:
            raise ProtocolVersionError(
                f"Bad version in response from {self.address}: {version!r}"
            )
        if envelope.get("seq") != seq:
            raise OutOfSequenceError(
                f"out of sequence response from {self.address}: "
                f"expected {seq}, got {envelope.get('seq')!r}"
            )

        error = envelope.get("error")
        if error is not None:
            raise ApplicationError(
                str(error.get("code", "UNKNOWN")), str(error.get("message", ""))
            )
        return envelope.get("body") or {}

    async def close(self) -> None:
        """Close the stream. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (ConnectionError, OSError) as e:
            log.trace(f"Ignoring error while closing {self.address}: {e}")
        log.debug(f"Closed connection to {self.address}")
