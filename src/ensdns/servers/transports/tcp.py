import asyncio

from .errors import TransportError


class TCPError(TransportError):
    """
    A DNS-over-TCP transport error.

    Inputs:
      - message: Error description.
    Outputs:
      - Exception instance.

    Brief: Raised for connect/read/write or framing errors.
    """

    pass


async def read_exact(reader: asyncio.StreamReader, n: int) -> bytes:
    """
    Read exactly n bytes from an asyncio StreamReader.

    Inputs:
      - reader: asyncio.StreamReader
      - n: Number of bytes to read
    Outputs:
      - bytes: Exactly n bytes unless EOF occurs early.
    """
    data = b""
    while len(data) < n:
        chunk = await reader.read(n - len(data))
        if not chunk:
            break
        data += chunk
    return data


async def read_frame(reader: asyncio.StreamReader) -> bytes:
    """
    Read one length-prefixed DNS message (RFC 1035 4.2.2).

    Outputs:
      - bytes: Message body, or b"" on a clean EOF before the length header.
    Raises:
      - TCPError on a truncated header or body.
    """
    hdr = await read_exact(reader, 2)
    if not hdr:
        return b""
    if len(hdr) != 2:
        raise TCPError("short read on length header")
    ln = int.from_bytes(hdr, "big")
    body = await read_exact(reader, ln)
    if len(body) != ln:
        raise TCPError("short read on body")
    return body


def frame(msg: bytes) -> bytes:
    if len(msg) > 0xFFFF:
        raise TCPError("message too large for TCP framing")
    return len(msg).to_bytes(2, "big") + msg


async def tcp_query(
    host: str,
    port: int,
    query: bytes,
    *,
    connect_timeout_ms: int = 1000,
    read_timeout_ms: int = 2000,
) -> bytes:
    """
    Brief: Send one DNS query over a fresh TCP connection.

    Inputs:
      - host, port: Upstream endpoint.
      - query: Wire-format DNS query.
      - connect_timeout_ms: Connect timeout in milliseconds.
      - read_timeout_ms: Timeout for writing the query and reading the reply.

    Outputs:
      - bytes: Wire-format DNS response.
    """
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, int(port)),
            timeout=connect_timeout_ms / 1000.0,
        )
    except asyncio.TimeoutError as e:
        raise TCPError(f"TCP connect timeout to {host}:{port}") from e
    except OSError as e:
        raise TCPError(f"TCP connect error: {e}") from e

    try:
        writer.write(frame(query))
        await writer.drain()
        resp = await asyncio.wait_for(read_frame(reader), timeout=read_timeout_ms / 1000.0)
        if not resp:
            raise TCPError("connection closed before response")
        return resp
    except asyncio.TimeoutError as e:
        raise TCPError(f"TCP read timeout from {host}:{port}") from e
    except OSError as e:
        raise TCPError(f"TCP error: {e}") from e
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:  # pragma: no cover - peer already gone
            pass
