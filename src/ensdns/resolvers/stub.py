"""Delegation resolvers: forward non-intercepted questions to a stub endpoint.

Brief:
  The recursive server hands every question it does not intercept to one of
  these resolvers. They forward to a local stub/authoritative endpoint (by
  default 127.0.0.1:5300) over UDP, retrying over TCP when the answer comes
  back truncated.

  - StubResolver is DNSSEC-aware: it sets the DO bit, keeps checking enabled,
    and on open() checks that the stub's root DNSKEY set matches the
    configured trust anchor.
  - NonValidatingStubResolver sets CD and does not ask for DNSSEC records.
"""

from __future__ import annotations

import logging
import random
from typing import Optional, Tuple

import dns.dnssec
import dns.exception
import dns.message
import dns.name
import dns.rdata
import dns.rdataclass
import dns.rdatatype
from dnslib import QTYPE, DNSError, DNSHeader, DNSQuestion, DNSRecord, EDNS0

from ..plugins.resolve.base import Question, ResolveStrategy
from ..servers.transports.tcp import tcp_query
from ..servers.transports.udp import udp_query
from ..servers.transports.errors import TransportError

logger = logging.getLogger(__name__)

# IANA root KSK-2017.
ROOT_TRUST_ANCHOR = (
    ". IN DS 20326 8 2 E06D44B80B8F1D39A95C0B0D7C65D08458E880409BBC683457104237C7F8EC8D"
)


def parse_trust_anchor(text: str) -> Tuple[dns.name.Name, dns.rdata.Rdata]:
    """Brief: Parse a DS trust anchor in presentation format.

    Inputs:
      - text: Either a full record (". IN DS 20326 8 2 <hex>") or bare DS
        RDATA ("20326 8 2 <hex>"), in which case the owner is the root.

    Outputs:
      - (owner name, DS rdata).

    Raises:
      - ValueError: When the text is not a valid DS record.

    Example:
      >>> owner, ds = parse_trust_anchor(ROOT_TRUST_ANCHOR)
      >>> str(owner), ds.key_tag
      ('.', 20326)
    """

    if not isinstance(text, str) or not text.strip():
        raise ValueError("trust anchor must be a non-empty string")
    tokens = text.split()
    upper = [t.upper() for t in tokens]
    owner_text = "."
    rdata_text = text
    if "DS" in upper:
        idx = upper.index("DS")
        if idx > 0:
            owner_text = tokens[0]
        rdata_text = " ".join(tokens[idx + 1 :])
    try:
        owner = dns.name.from_text(owner_text)
        rdata = dns.rdata.from_text(dns.rdataclass.IN, dns.rdatatype.DS, rdata_text)
    except (dns.exception.DNSException, ValueError) as e:
        raise ValueError(f"invalid DS trust anchor {text!r}: {e}") from e
    return owner, rdata


class StubResolver(ResolveStrategy):
    """Brief: DNSSEC-aware forwarder to the stub endpoint.

    Inputs (constructor):
      - host/port: Stub endpoint.
      - trust_anchor: DS record checked against the stub's DNSKEY set.
      - timeout_ms: Per-transport timeout.
      - edns_udp_payload: UDP payload size advertised upstream.
      - tcp: Retry truncated answers over TCP.

    Outputs:
      - StubResolver instance; must be open()ed before resolving.

    Example use:
        >>> r = StubResolver("127.0.0.1", 5300)
        >>> r.is_open
        False
    """

    capabilities = ("delegate",)
    validating = True

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 5300,
        *,
        trust_anchor: str = ROOT_TRUST_ANCHOR,
        timeout_ms: int = 2000,
        edns_udp_payload: int = 4096,
        tcp: bool = True,
    ) -> None:
        self.timeout_ms = int(timeout_ms)
        self.edns_udp_payload = int(edns_udp_payload)
        self.tcp = bool(tcp)
        self.anchor_verified: Optional[bool] = None
        self._open = False
        self.set_stub(host, port, trust_anchor)

    def set_stub(self, host: str, port: int, trust_anchor: str) -> None:
        """Point the resolver at a stub endpoint and trust anchor."""
        self.host = str(host)
        self.port = int(port)
        self.trust_anchor = trust_anchor
        self._anchor_owner, self._anchor = parse_trust_anchor(trust_anchor)

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> None:
        self._open = True
        logger.debug(
            "%s forwarding to %s:%d", type(self).__name__, self.host, self.port
        )
        if self.validating:
            await self._check_trust_anchor()

    async def close(self) -> None:
        self._open = False

    def _build_query(self, name: str, qtype: int, qclass: int = 1) -> DNSRecord:
        header = DNSHeader(id=random.randint(0, 0xFFFF), rd=1)
        header.cd = 0 if self.validating else 1
        query = DNSRecord(header, q=DNSQuestion(name, qtype, qclass))
        query.add_ar(
            EDNS0(udp_len=self.edns_udp_payload, flags="do" if self.validating else "")
        )
        return query

    async def _exchange(self, query: DNSRecord) -> DNSRecord:
        if not self._open:
            raise RuntimeError("delegation resolver is not open")
        wire = query.pack()
        raw = await udp_query(self.host, self.port, wire, timeout_ms=self.timeout_ms)
        resp = DNSRecord.parse(raw)
        if resp.header.tc and self.tcp:
            logger.debug("truncated answer for %s, retrying over TCP", query.q.qname)
            raw = await tcp_query(
                self.host,
                self.port,
                wire,
                connect_timeout_ms=self.timeout_ms,
                read_timeout_ms=self.timeout_ms,
            )
            resp = DNSRecord.parse(raw)
        if resp.header.id != query.header.id:
            raise TransportError(
                f"response id {resp.header.id} does not match query id {query.header.id}"
            )
        return resp

    async def resolve(self, question: Question) -> DNSRecord:
        """Forward the question unchanged and return the stub's answer."""
        query = self._build_query(question.name, question.qtype, question.qclass)
        return await self._exchange(query)

    async def lookup(self, name: str, qtype: int) -> DNSRecord:
        if not name.endswith("."):
            name += "."
        return await self._exchange(self._build_query(name, int(qtype)))

    async def _check_trust_anchor(self) -> None:
        """Compare the stub's DNSKEY set for the anchor owner with the DS anchor."""
        owner = self._anchor_owner.to_text()
        try:
            resp = await self.lookup(owner, QTYPE.DNSKEY)
            msg = dns.message.from_wire(resp.pack())
        except (TransportError, DNSError, dns.exception.DNSException) as e:
            logger.warning("could not fetch DNSKEY for %s from stub: %s", owner, e)
            self.anchor_verified = None
            return

        keys = [
            rd
            for rrset in msg.answer
            if rrset.rdtype == dns.rdatatype.DNSKEY
            for rd in rrset
        ]
        for key in keys:
            try:
                ds = dns.dnssec.make_ds(self._anchor_owner, key, self._anchor.digest_type)
            except (dns.exception.DNSException, ValueError):
                continue
            if ds == self._anchor:
                self.anchor_verified = True
                logger.info("trust anchor %d matches stub DNSKEY for %s", self._anchor.key_tag, owner)
                return
        self.anchor_verified = False
        logger.warning(
            "trust anchor %d not found among %d DNSKEY records for %s",
            self._anchor.key_tag,
            len(keys),
            owner,
        )


class NonValidatingStubResolver(StubResolver):
    """Forwarder that disables DNSSEC checking (CD=1, no DO bit)."""

    validating = False
