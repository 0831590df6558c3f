from __future__ import annotations

import asyncio
import enum
import logging
from typing import List, Optional, Set, Tuple

from dnslib import OPCODE, QTYPE, RCODE, DNSError, DNSHeader, DNSRecord, EDNS0

from ..config.logging_config import log_message
from ..plugins.resolve.base import ClientInfo, Question, ResolveStrategy
from ..signing import TYPE_SIG, Sig0Signer, append_tag
from .transports.tcp import TCPError, frame, read_frame

logger = logging.getLogger(__name__)

_DO_BIT = 0x8000
_DNSSEC_TYPES = (QTYPE.RRSIG, QTYPE.NSEC, QTYPE.NSEC3)
_MAX_UDP_PAYLOAD = 4096
_CLASSIC_UDP_PAYLOAD = 512


class ServerState(str, enum.Enum):
    CONSTRUCTED = "constructed"
    OPENING = "opening"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


def _find_opt(record: DNSRecord):
    for rr in getattr(record, "ar", []) or []:
        if rr.rtype == QTYPE.OPT:
            return rr
    return None


class _UDPProtocol(asyncio.DatagramProtocol):
    """Hands each datagram to DNSServer.answer() in its own task."""

    def __init__(self, server: "DNSServer") -> None:
        self.server = server
        self.transport: Optional[asyncio.DatagramTransport] = None

    def connection_made(self, transport) -> None:
        self.transport = transport

    def datagram_received(self, data: bytes, addr: Tuple) -> None:
        self.server._spawn(self._reply(data, addr))

    async def _reply(self, data: bytes, addr: Tuple) -> None:
        wire = await self.server.answer(data, addr[0], addr[1], "udp")
        if wire and self.transport is not None and not self.transport.is_closing():
            self.transport.sendto(wire, addr)

    def error_received(self, exc: Exception) -> None:  # pragma: no cover - ICMP noise
        logger.debug("UDP socket error: %s", exc)


class DNSServer:
    """Asyncio DNS server (UDP and TCP) answering through a ResolveStrategy.

    Brief:
      The server owns sockets, header bookkeeping, EDNS, truncation and
      signing. Answers come from the strategy (for the recursive server, an
      ENSRouter). Queries are handled concurrently, one task per message, and
      responses go out in completion order.

    Inputs (constructor):
      - strategy: ResolveStrategy producing answers.
      - signer: Sig0Signer tagging every outgoing response.
      - host/port: Listen address (port 0 binds an ephemeral port).
      - ra/edns/dnssec: Advertise recursion, EDNS and DNSSEC support.
      - no_any: Answer ANY questions with NOTIMP.
      - edns_udp_payload: Largest UDP payload advertised and honoured.
      - tcp: Also listen on TCP.
      - tcp_idle_timeout: Seconds before an idle TCP client is dropped.

    Outputs:
      - DNSServer in state CONSTRUCTED.

    Example use:
        >>> # server = DNSServer(router, Sig0Signer(ServerIdentity.generate()))
        >>> # await server.open(); ...; await server.close()
    """

    def __init__(
        self,
        strategy: ResolveStrategy,
        signer: Sig0Signer,
        host: str = "127.0.0.1",
        port: int = 5301,
        *,
        ra: bool = True,
        edns: bool = True,
        dnssec: bool = True,
        no_any: bool = True,
        edns_udp_payload: int = _MAX_UDP_PAYLOAD,
        tcp: bool = True,
        tcp_idle_timeout: float = 15.0,
    ) -> None:
        self.strategy = strategy
        self.signer = signer
        self.host = host
        self.port = int(port)
        self.ra = bool(ra)
        self.edns = bool(edns)
        self.dnssec = bool(dnssec)
        self.no_any = bool(no_any)
        self.edns_udp_payload = max(_CLASSIC_UDP_PAYLOAD, int(edns_udp_payload))
        self.tcp = bool(tcp)
        self.tcp_idle_timeout = float(tcp_idle_timeout)

        self._state = ServerState.CONSTRUCTED
        self._udp_transport: Optional[asyncio.DatagramTransport] = None
        self._tcp_server: Optional[asyncio.AbstractServer] = None
        self._tcp_writers: Set[asyncio.StreamWriter] = set()
        self._tasks: Set[asyncio.Task] = set()

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def bound_port(self) -> int:
        """Port actually bound (differs from self.port when port 0 was requested)."""
        if self._udp_transport is not None:
            return int(self._udp_transport.get_extra_info("sockname")[1])
        return self.port

    async def open(self) -> None:
        """Ready the strategy, then bind UDP and TCP listeners.

        The strategy (and its delegation resolver) is opened first so no query
        can arrive before delegation is ready.
        """
        if self._state is not ServerState.CONSTRUCTED:
            raise RuntimeError(f"cannot open a server in state {self._state.value}")
        self._state = ServerState.OPENING
        loop = asyncio.get_running_loop()
        try:
            await self.strategy.open()
            self._udp_transport, _ = await loop.create_datagram_endpoint(
                lambda: _UDPProtocol(self), local_addr=(self.host, self.port)
            )
            if self.tcp:
                self._tcp_server = await asyncio.start_server(
                    self._handle_tcp, self.host, self.bound_port
                )
        except BaseException:
            logger.error("failed to open DNS server on %s:%d", self.host, self.port)
            await self._unbind()
            await self.strategy.close()
            self._state = ServerState.CLOSED
            raise
        self._state = ServerState.OPEN
        logger.info("Recursive server listening on port %d.", self.bound_port)

    async def close(self) -> None:
        """Stop accepting queries, drain in-flight tasks, then close the strategy."""
        if self._state is not ServerState.OPEN:
            raise RuntimeError(f"cannot close a server in state {self._state.value}")
        self._state = ServerState.CLOSING
        await self._unbind()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.strategy.close()
        self._state = ServerState.CLOSED
        logger.info("Recursive server on port %d closed.", self.port)

    async def _unbind(self) -> None:
        if self._udp_transport is not None:
            self._udp_transport.close()
        if self._tcp_server is not None:
            self._tcp_server.close()
            for writer in list(self._tcp_writers):
                writer.close()
            await self._tcp_server.wait_closed()

    async def serve_forever(self, stop: asyncio.Event) -> None:
        """Open, wait until ``stop`` is set, then close."""
        await self.open()
        try:
            await stop.wait()
        finally:
            await self.close()

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("query task failed: %s", task.exception())

    async def _handle_tcp(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        peer = writer.get_extra_info("peername")
        host, port = (peer[0], peer[1]) if isinstance(peer, tuple) else ("0.0.0.0", 0)
        self._tcp_writers.add(writer)
        try:
            while True:
                query = await asyncio.wait_for(read_frame(reader), timeout=self.tcp_idle_timeout)
                if not query:
                    break
                wire = await self.answer(query, host, port, "tcp")
                if wire is None:
                    continue
                writer.write(frame(wire))
                await writer.drain()
        except (asyncio.TimeoutError, TCPError, OSError) as e:
            logger.debug("TCP client %s:%d closed: %s", host, port, e)
        finally:
            self._tcp_writers.discard(writer)
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:  # pragma: no cover - peer already gone
                pass

    async def answer(
        self, data: bytes, host: str, port: int, transport: str = "udp"
    ) -> Optional[bytes]:
        """
        Answer one wire-format query.

        Inputs:
          - data: Wire query.
          - host/port: Client address.
          - transport: "udp" or "tcp"; UDP answers are size limited.
        Outputs:
          - Signed wire response, or None when the query is dropped
            (unparseable, or itself a response).
        """
        try:
            req = DNSRecord.parse(data)
        except DNSError as e:
            logger.debug("dropping malformed query from %s:%d: %s", host, port, e)
            return None
        if req.header.qr:
            logger.debug("dropping response packet from %s:%d", host, port)
            return None

        if req.header.opcode != OPCODE.QUERY:
            res = self._error_reply(req, RCODE.NOTIMP)
        elif len(req.questions) != 1:
            res = self._error_reply(req, RCODE.FORMERR)
        elif self.no_any and req.q.qtype == QTYPE.ANY:
            res = self._error_reply(req, RCODE.NOTIMP)
        else:
            question = Question.from_record(req, ClientInfo(host, int(port), transport))
            try:
                res = await self.strategy.resolve(question)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "resolution error for %s %s: %s",
                    question.name,
                    question.type_name(),
                    e,
                    exc_info=logger.isEnabledFor(logging.DEBUG),
                )
                res = self._error_reply(req, RCODE.SERVFAIL)

        log_message(logger, "DNS Request:", req)
        log_message(logger, "DNS Response:", res)
        return self._finalize(req, res, host, port, transport)

    def _error_reply(self, req: DNSRecord, rcode: int) -> DNSRecord:
        header = DNSHeader(
            id=req.header.id,
            qr=1,
            opcode=req.header.opcode,
            rd=req.header.rd,
            ra=int(self.ra),
            rcode=rcode,
        )
        questions = list(req.questions) if rcode != RCODE.FORMERR else []
        return DNSRecord(header, questions=questions)

    def _finalize(
        self, req: DNSRecord, res: DNSRecord, host: str, port: int, transport: str
    ) -> bytes:
        res.header.id = req.header.id
        res.header.qr = 1
        res.header.rd = req.header.rd
        if self.ra:
            res.header.ra = 1

        req_opt = _find_opt(req)
        want_dnssec = self.dnssec and req_opt is not None and bool(req_opt.ttl & _DO_BIT)

        # Upstream OPT/SIG records are replaced by ours.
        res.ar = [rr for rr in res.ar if rr.rtype not in (QTYPE.OPT, TYPE_SIG)]
        if not want_dnssec:
            self._strip_dnssec(res, req.q.qtype)
        if self.edns and req_opt is not None:
            res.add_ar(
                EDNS0(udp_len=self.edns_udp_payload, flags="do" if want_dnssec else "")
            )

        wire = res.pack()
        if transport == "udp":
            limit = self._udp_limit(req_opt) - self.signer.sign_size()
            if len(wire) > limit:
                wire = self._truncate(res, limit)

        return append_tag(wire, self.signer.sign(wire, host, port))

    def _udp_limit(self, req_opt) -> int:
        if req_opt is None or not self.edns:
            return _CLASSIC_UDP_PAYLOAD
        return max(_CLASSIC_UDP_PAYLOAD, min(int(req_opt.rclass), self.edns_udp_payload))

    @staticmethod
    def _strip_dnssec(res: DNSRecord, qtype: int) -> None:
        def keep(rrs: List) -> List:
            return [rr for rr in rrs if rr.rtype not in _DNSSEC_TYPES or rr.rtype == qtype]

        res.rr = keep(res.rr)
        res.auth = keep(res.auth)
        res.ar = keep(res.ar)

    @staticmethod
    def _truncate(res: DNSRecord, limit: int) -> bytes:
        res.header.tc = 1
        res.rr = []
        res.auth = []
        res.ar = [rr for rr in res.ar if rr.rtype == QTYPE.OPT]
        wire = res.pack()
        if len(wire) > limit:
            res.ar = []
            wire = res.pack()
        return wire
