"""
Brief: Tests for ensdns.servers.server.DNSServer message handling and lifecycle.

Inputs:
  - None

Outputs:
  - None
"""

import asyncio
import struct
from typing import List, Optional

import pytest
from dnslib import EDNS0, QTYPE, RCODE, RD, RR, A, DNSHeader, DNSQuestion, DNSRecord

from conftest import FakeRegistry, FakeResolver
from ensdns.plugins.resolve.base import Question, ResolveStrategy
from ensdns.plugins.resolve.ens_router import ENSRouter
from ensdns.servers.server import DNSServer, ServerState
from ensdns.servers.transports.tcp import tcp_query
from ensdns.servers.transports.udp import udp_query
from ensdns.signing import SIG_SIZE, TYPE_SIG, ServerIdentity, Sig0Signer

KEY = bytes.fromhex("11" * 32)


class StaticStrategy(ResolveStrategy):
    """Returns a prepared response (or raises) for every question."""

    def __init__(self, reply: Optional[DNSRecord] = None, error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.questions: List[Question] = []

    async def resolve(self, question: Question) -> DNSRecord:
        self.questions.append(question)
        if self.error is not None:
            raise self.error
        return DNSRecord.parse(self.reply.pack())


def _signer() -> Sig0Signer:
    return Sig0Signer(ServerIdentity(KEY))


def _server(strategy=None, **kw) -> DNSServer:
    if strategy is None:
        strategy = ENSRouter(FakeResolver(), FakeRegistry({"alice.eth": "0xABCD"}))
    return DNSServer(strategy, _signer(), "127.0.0.1", 0, **kw)


def _query(name: str, qtype: str = "A", qid: int = 0xBEEF, edns: Optional[int] = None, do: bool = False) -> DNSRecord:
    q = DNSRecord.question(name, qtype)
    q.header.id = qid
    if edns is not None:
        q.add_ar(EDNS0(udp_len=edns, flags="do" if do else ""))
    return q


def _answer(server: DNSServer, query: DNSRecord, transport: str = "udp") -> bytes:
    return asyncio.run(server.answer(query.pack(), "127.0.0.1", 5353, transport))


def _strip_sig(wire: bytes) -> DNSRecord:
    msg = DNSRecord.parse(wire)
    msg.ar = [rr for rr in msg.ar if rr.rtype != TYPE_SIG]
    return msg


def test_ens_answer_carries_request_id_and_valid_signature():
    """
    Brief: An intercepted query is answered with the client's id, one TXT record and a SIG(0) tag.

    Inputs:
      - query: alice.eth. TXT with id 0xBEEF

    Outputs:
      - None: Asserts id, answer, AD bit and signature
    """
    server = _server()
    wire = _answer(server, _query("alice.eth", "TXT"))

    assert server.signer.verify(wire)
    msg = DNSRecord.parse(wire)
    assert msg.header.id == 0xBEEF
    assert msg.header.qr == 1
    assert msg.header.ra == 1
    assert msg.header.ad == 0
    assert msg.header.rcode == RCODE.NOERROR
    assert len(msg.rr) == 1
    assert msg.rr[0].rtype == QTYPE.TXT
    assert msg.ar[-1].rtype == TYPE_SIG
    assert len(wire) > SIG_SIZE


def test_cached_answer_gets_each_clients_id():
    server = _server()
    first = DNSRecord.parse(_answer(server, _query("alice.eth", "TXT", qid=1)))
    second = DNSRecord.parse(_answer(server, _query("alice.eth", "TXT", qid=2)))
    assert (first.header.id, second.header.id) == (1, 2)
    assert server.strategy.registry.calls == ["alice.eth"]


def test_cached_answer_echoes_each_clients_qname_spelling():
    server = _server()
    _answer(server, _query("Alice.ETH", "TXT", qid=1))
    wire = _answer(server, _query("alice.eth", "TXT", qid=2))
    assert server.strategy.registry.calls == ["Alice.ETH"]

    assert server.signer.verify(wire)
    msg = DNSRecord.parse(wire)
    assert msg.header.id == 2
    assert str(msg.q.qname) == "alice.eth."
    assert str(msg.rr[0].rname) == "alice.eth."
    assert b"recipient_name=alice.eth;" in b"".join(msg.rr[0].rdata.data)


def test_delegated_answer_is_passed_through():
    resolver = FakeResolver()
    server = _server(ENSRouter(resolver, FakeRegistry()))
    msg = DNSRecord.parse(_answer(server, _query("example.com", "A", qid=77)))
    assert msg.header.id == 77
    assert str(msg.rr[0].rdata) == "192.0.2.1"
    assert resolver.questions[0].client.transport == "udp"
    assert resolver.questions[0].client.port == 5353


def test_any_is_notimp_without_resolution():
    strategy = StaticStrategy(error=AssertionError("must not be called"))
    server = _server(strategy)
    msg = DNSRecord.parse(_answer(server, _query("alice.eth", "ANY")))
    assert msg.header.rcode == RCODE.NOTIMP
    assert strategy.questions == []


def test_any_is_resolved_when_allowed():
    reply = DNSRecord.question("example.com", "ANY").reply()
    strategy = StaticStrategy(reply)
    server = _server(strategy, no_any=False)
    msg = DNSRecord.parse(_answer(server, _query("example.com", "ANY")))
    assert msg.header.rcode == RCODE.NOERROR
    assert len(strategy.questions) == 1


def test_non_query_opcode_is_notimp():
    q = _query("example.com")
    q.header.opcode = 4
    msg = DNSRecord.parse(_answer(_server(), q))
    assert msg.header.rcode == RCODE.NOTIMP


def test_multiple_questions_is_formerr():
    q = DNSRecord(DNSHeader(id=9, rd=1))
    q.add_question(DNSQuestion("a.eth"))
    q.add_question(DNSQuestion("b.eth"))
    msg = DNSRecord.parse(_answer(_server(), q))
    assert msg.header.rcode == RCODE.FORMERR
    assert msg.header.id == 9
    assert msg.questions == []


def test_strategy_failure_becomes_servfail():
    server = _server(StaticStrategy(error=OSError("stub unreachable")))
    wire = _answer(server, _query("example.com", qid=5))
    msg = DNSRecord.parse(wire)
    assert msg.header.rcode == RCODE.SERVFAIL
    assert msg.header.id == 5
    assert server.signer.verify(wire)


def test_malformed_and_response_packets_are_dropped():
    server = _server()
    assert asyncio.run(server.answer(b"\x01\x02\x03", "127.0.0.1", 1)) is None
    reply = _query("example.com").reply()
    assert asyncio.run(server.answer(reply.pack(), "127.0.0.1", 1)) is None


def test_edns_is_echoed_only_when_requested():
    server = _server(edns_udp_payload=1232)
    plain = _strip_sig(_answer(server, _query("alice.eth", "TXT")))
    assert [rr for rr in plain.ar if rr.rtype == QTYPE.OPT] == []

    with_edns = _strip_sig(_answer(server, _query("alice.eth", "TXT", edns=4096)))
    opt = [rr for rr in with_edns.ar if rr.rtype == QTYPE.OPT]
    assert len(opt) == 1
    assert opt[0].rclass == 1232


def test_dnssec_records_are_stripped_unless_do_is_set():
    """
    Brief: NSEC/RRSIG records from upstream only reach clients that set the DO bit.

    Inputs:
      - reply: upstream answer carrying an NSEC record in the authority section

    Outputs:
      - None: Asserts presence with DO and absence without
    """
    reply = DNSRecord.question("example.com", "A").reply()
    reply.add_answer(RR("example.com", QTYPE.A, rdata=A("192.0.2.1"), ttl=60))
    reply.add_auth(RR("example.com", QTYPE.NSEC, rdata=RD(b"\x00\x00\x01\x40"), ttl=60))
    server = _server(StaticStrategy(reply))

    without = _strip_sig(_answer(server, _query("example.com", edns=4096)))
    assert [rr for rr in without.auth if rr.rtype == QTYPE.NSEC] == []
    assert len(without.rr) == 1

    with_do = _strip_sig(_answer(server, _query("example.com", edns=4096, do=True)))
    assert len([rr for rr in with_do.auth if rr.rtype == QTYPE.NSEC]) == 1
    opt = [rr for rr in with_do.ar if rr.rtype == QTYPE.OPT][0]
    assert opt.ttl & 0x8000


def _big_reply() -> DNSRecord:
    reply = DNSRecord.question("big.example", "A").reply()
    for i in range(60):
        reply.add_answer(RR("big.example", QTYPE.A, rdata=A(f"10.0.0.{i}"), ttl=60))
    return reply


def test_oversized_udp_answer_is_truncated_and_still_signed():
    server = _server(StaticStrategy(_big_reply()))
    wire = _answer(server, _query("big.example"))
    assert len(wire) <= 512
    assert server.signer.verify(wire)
    msg = DNSRecord.parse(wire)
    assert msg.header.tc == 1
    assert msg.rr == []


def test_edns_raises_the_udp_limit_and_tcp_is_never_truncated():
    server = _server(StaticStrategy(_big_reply()))
    edns = DNSRecord.parse(_answer(server, _query("big.example", edns=4096)))
    assert edns.header.tc == 0
    assert len(edns.rr) == 60

    tcp = DNSRecord.parse(_answer(server, _query("big.example"), transport="tcp"))
    assert tcp.header.tc == 0
    assert len(tcp.rr) == 60


class RecordingStrategy(ResolveStrategy):
    """Logs lifecycle calls together with the listener state at that moment."""

    def __init__(self, events: List[str], fail_open: bool = False):
        self.events = events
        self.fail_open = fail_open
        self.server: Optional[DNSServer] = None

    async def open(self) -> None:
        bound = self.server._udp_transport is not None
        self.events.append(f"strategy.open bound={bound}")
        if self.fail_open:
            raise OSError("stub unavailable")

    async def close(self) -> None:
        closing = self.server._udp_transport.is_closing() if self.server._udp_transport else True
        self.events.append(f"strategy.close unbound={closing}")

    async def resolve(self, question: Question) -> DNSRecord:
        reply = DNSRecord.question(question.name, QTYPE[question.qtype]).reply()
        reply.add_answer(RR(question.name, QTYPE.A, rdata=A("192.0.2.9"), ttl=60))
        return reply


def test_lifecycle_order_and_invalid_transitions():
    """
    Brief: The strategy opens before the listener binds and closes after it unbinds.

    Inputs:
      - server: DNSServer on an ephemeral port

    Outputs:
      - None: Asserts event ordering and state checks
    """
    events: List[str] = []
    strategy = RecordingStrategy(events)
    server = _server(strategy)
    strategy.server = server

    async def run():
        with pytest.raises(RuntimeError):
            await server.close()
        await server.open()
        assert server.state is ServerState.OPEN
        assert server.bound_port != 0
        with pytest.raises(RuntimeError):
            await server.open()
        await server.close()
        assert server.state is ServerState.CLOSED
        with pytest.raises(RuntimeError):
            await server.close()

    assert server.state is ServerState.CONSTRUCTED
    asyncio.run(run())
    assert events == ["strategy.open bound=False", "strategy.close unbound=True"]


def test_failed_open_closes_strategy():
    events: List[str] = []
    strategy = RecordingStrategy(events, fail_open=True)
    server = _server(strategy)
    strategy.server = server

    with pytest.raises(OSError):
        asyncio.run(server.open())
    assert server.state is ServerState.CLOSED
    assert events[-1].startswith("strategy.close")


def test_udp_and_tcp_round_trip():
    events: List[str] = []
    strategy = RecordingStrategy(events)
    server = _server(strategy)
    strategy.server = server

    async def run():
        await server.open()
        try:
            q = _query("example.com", qid=0x0102).pack()
            over_udp = await udp_query("127.0.0.1", server.bound_port, q, timeout_ms=2000)
            over_tcp = await tcp_query("127.0.0.1", server.bound_port, q)
        finally:
            await server.close()
        return over_udp, over_tcp

    over_udp, over_tcp = asyncio.run(run())
    for wire in (over_udp, over_tcp):
        assert server.signer.verify(wire)
        msg = DNSRecord.parse(wire)
        assert msg.header.id == 0x0102
        assert str(msg.rr[0].rdata) == "192.0.2.9"
    arcount = struct.unpack_from("!H", over_udp, 10)[0]
    assert arcount == 1
