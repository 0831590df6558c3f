from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import ClassVar, List, Sequence

from dnslib import QTYPE, DNSQuestion, DNSRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientInfo:
    """Brief: Where a query came from.

    Inputs:
      - host: Peer IP address string.
      - port: Peer port.
      - transport: "udp" or "tcp".

    Outputs:
      - ClientInfo instance.
    """

    host: str = "127.0.0.1"
    port: int = 0
    transport: str = "udp"


@dataclass(frozen=True)
class Question:
    """Brief: Immutable query handed to a resolve strategy.

    Inputs:
      - name: Fully qualified query name including the trailing root dot.
      - qtype: Numeric record type.
      - client: ClientInfo describing the requester.
      - qclass: Numeric class (IN by default).

    Outputs:
      - Question instance.

    Example use:
        >>> q = Question("alice.eth.", QTYPE.TXT)
        >>> q.labels()
        ['alice', 'eth']
        >>> q.tld()
        'eth'
    """

    name: str
    qtype: int
    client: ClientInfo = field(default_factory=ClientInfo)
    qclass: int = 1

    @classmethod
    def from_record(cls, req: DNSRecord, client: ClientInfo) -> "Question":
        """Build a Question from the first question of a parsed request."""
        q = req.q
        return cls(
            name=str(q.qname), qtype=int(q.qtype), client=client, qclass=int(q.qclass)
        )

    def labels(self) -> List[str]:
        """Return the dot-separated labels, leaving out the empty root label."""
        return [label for label in self.name.split(".") if label]

    def tld(self) -> str:
        """Return the rightmost label, lowercased ("" for the root name)."""
        labels = self.labels()
        return labels[-1].lower() if labels else ""

    def to_dns_question(self) -> DNSQuestion:
        return DNSQuestion(self.name, self.qtype, self.qclass)

    def type_name(self) -> str:
        return QTYPE.get(self.qtype, str(self.qtype))


class ResolveStrategy:
    """Brief: Pluggable resolution strategy held by ensdns.servers.server.DNSServer.

    The server owns sockets and message framing; a strategy owns answering.
    Strategies advertise what they can do through ``capabilities`` so hosts
    can tell an intercepting router apart from a plain delegating resolver.

    Inputs:
      - None

    Outputs:
      - ResolveStrategy instance.

    Example use:
        >>> class Static(ResolveStrategy):
        ...     capabilities = ("delegate",)
        ...     async def resolve(self, question):
        ...         return DNSRecord.question(question.name).reply()
        >>> "delegate" in Static.capabilities
        True
    """

    capabilities: ClassVar[Sequence[str]] = ()

    async def open(self) -> None:
        """Prepare any downstream resources; called before traffic is accepted."""
        return None

    async def close(self) -> None:
        """Release downstream resources; called after traffic has stopped."""
        return None

    async def resolve(self, question: Question) -> DNSRecord:
        raise NotImplementedError(
            "ResolveStrategy.resolve() must be implemented by a subclass"
        )

    async def lookup(self, name: str, qtype: int) -> DNSRecord:
        raise NotImplementedError(
            "ResolveStrategy.lookup() must be implemented by a subclass"
        )
