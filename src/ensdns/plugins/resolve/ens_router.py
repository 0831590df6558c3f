from __future__ import annotations

import logging
from typing import Optional, Protocol

from dnslib import DNSRecord

from ... import synthesize
from ...cache import ENSCache
from ...ens.client import RegistryError
from .base import Question, ResolveStrategy

logger = logging.getLogger(__name__)


class AddressRegistry(Protocol):
    """Brief: Async ENS lookup used by ENSRouter.

    Implementations raise RegistryError on failure. The router answers
    NXDOMAIN for any exception and caches nothing.
    """

    async def resolve_address(self, name: str) -> Optional[str]: ...

    def close(self) -> None: ...


class ENSRouter(ResolveStrategy):
    """Routes questions under the reserved TLD to ENS and everything else to a resolver.

    Inputs (constructor):
      - resolver: Delegation strategy (StubResolver or compatible) answering
        every question outside the reserved TLD.
      - registry: Object with ``async resolve_address(bare_name)``.
      - cache: ENSCache for synthesized answers (a 500-entry cache by default).
      - reserved_label: TLD to intercept, compared case-insensitively.

    Outputs:
      - ENSRouter instance.

    Example use:
        >>> router = ENSRouter(resolver=None, registry=None)
        >>> router.intercepts(Question("alice.ETH.", 16))
        True
        >>> router.intercepts(Question("example.com.", 16))
        False
    """

    capabilities = ("intercept", "delegate")

    def __init__(
        self,
        resolver: ResolveStrategy,
        registry: AddressRegistry,
        cache: Optional[ENSCache] = None,
        *,
        reserved_label: str = "eth",
    ) -> None:
        self.resolver = resolver
        self.registry = registry
        self.cache = cache if cache is not None else ENSCache()
        self.reserved_label = reserved_label.strip(".").lower()

    async def open(self) -> None:
        await self.resolver.open()

    async def close(self) -> None:
        await self.resolver.close()
        self.registry.close()

    def intercepts(self, question: Question) -> bool:
        return question.tld() == self.reserved_label

    async def resolve(self, question: Question) -> DNSRecord:
        logger.debug(
            "query %s %s from %s:%d/%s",
            question.name,
            question.type_name(),
            question.client.host,
            question.client.port,
            question.client.transport,
        )
        if not self.intercepts(question):
            try:
                return await self.resolver.resolve(question)
            except Exception as e:
                logger.warning("delegation failed for %s %s: %s", question.name, question.type_name(), e)
                raise
        return await self._resolve_ens(question)

    async def lookup(self, name: str, qtype: int) -> DNSRecord:
        """Resolve through the delegation resolver, never through ENS."""
        return await self.resolver.lookup(name, qtype)

    async def _resolve_ens(self, question: Question) -> DNSRecord:
        cached = self.cache.get(question.name, question.qtype)
        if cached is not None:
            logger.debug("cache hit %s %s", question.name, question.type_name())
            return synthesize.retarget(cached, question)
        logger.debug("cache miss %s %s", question.name, question.type_name())

        # The registry expects names without the trailing root dot.
        name = question.name[:-1] if question.name.endswith(".") else question.name

        logger.debug("ENS lookup start %s", name)
        try:
            address = await self.registry.resolve_address(name)
        except RegistryError as e:
            logger.warning("ENS lookup failed for %s: %s", name, e)
            return synthesize.build_nxdomain(question)
        except Exception as e:
            logger.error(
                "ENS registry %s raised %s for %s: %s",
                type(self.registry).__name__,
                type(e).__name__,
                name,
                e,
            )
            return synthesize.build_nxdomain(question)
        logger.debug("ENS lookup end %s -> %s", name, address)

        if not address:
            logger.info("ENS name %s has no address", name)
            return synthesize.build_nxdomain(question)

        msg = synthesize.build(question, address)
        self.cache.set(question.name, question.qtype, msg)
        return msg
