"""Build DNS answers for names resolved through ENS.

Answers carry a single OpenAlias TXT record:

    oa1:eth recipient_address=<address>; recipient_name=<name>;

They are never marked authenticated (AD=0) because they did not pass through
a DNSSEC chain of trust.
"""

from __future__ import annotations

from typing import List

from dnslib import OPCODE, QTYPE, RCODE, RR, TXT, DNSHeader, DNSLabel, DNSRecord

from .plugins.resolve.base import Question

ENS_TTL = 86000

# Sentinel id; the server stamps the client's id on the wire copy it sends.
SYNTH_ID = 0

_TXT_CHUNK = 255


def openalias_payload(address: str, name: str) -> str:
    """Brief: Render the OpenAlias text for an ENS result.

    Inputs:
      - address: Resolved address, e.g. "0xABCD".
      - name: Bare ENS name without the trailing dot.

    Outputs:
      - str payload.

    Example:
      >>> openalias_payload("0xABCD", "alice.eth")
      'oa1:eth recipient_address=0xABCD; recipient_name=alice.eth;'
    """

    return f"oa1:eth recipient_address={address}; recipient_name={name};"


def _txt_strings(payload: str) -> List[bytes]:
    # TXT character-strings are limited to 255 octets each.
    raw = payload.encode("utf-8")
    return [raw[i : i + _TXT_CHUNK] for i in range(0, len(raw), _TXT_CHUNK)] or [b""]


def _response_shell(question: Question, rcode: int = RCODE.NOERROR) -> DNSRecord:
    header = DNSHeader(
        id=SYNTH_ID, qr=1, opcode=OPCODE.QUERY, rd=1, ra=1, rcode=rcode
    )
    header.ad = 0
    return DNSRecord(header, q=question.to_dns_question())


def build(question: Question, address: str) -> DNSRecord:
    """
    Synthesize the positive ENS answer for a question.

    Inputs:
        question: Intercepted Question (name keeps its trailing dot).
        address: Address returned by the registry; must be non-empty.
    Outputs:
        DNSRecord with exactly one TXT answer, ttl ENS_TTL, AD cleared and the
        question echoed unchanged.
    Raises:
        ValueError: When address is empty.

    Example:
        >>> from ensdns.plugins.resolve.base import Question
        >>> msg = build(Question("alice.eth.", QTYPE.TXT), "0xABCD")
        >>> msg.rr[0].ttl, msg.header.ad
        (86000, 0)
    """
    if not address:
        raise ValueError("refusing to synthesize an answer without an address")

    bare = question.name[:-1] if question.name.endswith(".") else question.name
    msg = _response_shell(question)
    msg.add_answer(
        RR(
            rname=question.name,
            rtype=QTYPE.TXT,
            rclass=1,
            ttl=ENS_TTL,
            rdata=TXT(_txt_strings(openalias_payload(address, bare))),
        )
    )
    return msg


def build_nxdomain(question: Question) -> DNSRecord:
    """Negative answer used when the registry has no address for the name."""
    return _response_shell(question, rcode=RCODE.NXDOMAIN)


def retarget(msg: DNSRecord, question: Question) -> DNSRecord:
    """
    Point a cached answer at the spelling of the name in a new question.

    Inputs:
        msg: Answer built by build() for a name that matches question.name
            case-insensitively.
        question: Question being answered now.
    Outputs:
        msg, with the question section, answer owners and the OpenAlias
        recipient_name rewritten to question.name.

    Example:
        >>> cached = build(Question("Alice.ETH.", QTYPE.TXT), "0xABCD")
        >>> msg = retarget(cached, Question("alice.eth.", QTYPE.TXT))
        >>> str(msg.q.qname), str(msg.rr[0].rname)
        ('alice.eth.', 'alice.eth.')
    """
    bare = question.name[:-1] if question.name.endswith(".") else question.name
    msg.questions = [question.to_dns_question()]
    for rr in msg.rr:
        rr.rname = DNSLabel(question.name)
        if rr.rtype != QTYPE.TXT:
            continue
        payload = b"".join(rr.rdata.data).decode("utf-8")
        head, sep, _ = payload.partition(" recipient_name=")
        if sep:
            rr.rdata = TXT(_txt_strings(f"{head} recipient_name={bare};"))
    return msg
