import asyncio
from typing import Optional, Tuple

from .errors import TransportError


class UDPError(TransportError):
    """
    Brief: DNS-over-UDP transport error.

    Inputs:
    - message: description

    Outputs:
    - Exception instance
    """

    pass


class _OneShot(asyncio.DatagramProtocol):
    """Collects the first datagram whose DNS id matches the query."""

    def __init__(self, query: bytes) -> None:
        self._query = query
        self._qid = query[:2]
        self.done: "asyncio.Future[bytes]" = asyncio.get_running_loop().create_future()

    def connection_made(self, transport) -> None:
        transport.sendto(self._query)

    def datagram_received(self, data: bytes, addr: Tuple) -> None:
        if data[:2] == self._qid and not self.done.done():
            self.done.set_result(data)

    def error_received(self, exc: Exception) -> None:
        if not self.done.done():
            self.done.set_exception(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if not self.done.done():
            self.done.set_exception(exc or ConnectionError("socket closed"))


async def udp_query(
    host: str,
    port: int,
    query: bytes,
    *,
    timeout_ms: int = 2000,
) -> bytes:
    """
    Brief: Perform a single UDP DNS query on the running event loop.

    Inputs:
    - host: upstream resolver host/IP
    - port: upstream UDP port
    - query: wire-format DNS query bytes
    - timeout_ms: overall timeout in milliseconds

    Outputs:
    - bytes: wire-format DNS response (id matches the query)

    Example:
        >>> # resp = await udp_query('127.0.0.1', 5300, query_bytes)
    """
    if len(query) < 12:
        raise UDPError("query shorter than a DNS header")
    loop = asyncio.get_running_loop()
    transport = None
    try:
        transport, proto = await loop.create_datagram_endpoint(
            lambda: _OneShot(query), remote_addr=(host, int(port))
        )
        return await asyncio.wait_for(proto.done, timeout=timeout_ms / 1000.0)
    except asyncio.TimeoutError as e:
        raise UDPError(f"UDP timeout querying {host}:{port}") from e
    except OSError as e:
        raise UDPError(f"UDP error: {e}") from e
    finally:
        if transport is not None:
            transport.close()
