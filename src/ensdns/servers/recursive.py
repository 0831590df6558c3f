"""Assemble the ENS-intercepting recursive server from a ServerConfig."""

from __future__ import annotations

import logging
from typing import Optional

from ..cache import ENSCache
from ..config.config_schema import ServerConfig
from ..ens.client import EthClient
from ..plugins.resolve.base import ResolveStrategy
from ..plugins.resolve.ens_router import AddressRegistry, ENSRouter
from ..resolvers.stub import NonValidatingStubResolver, StubResolver
from ..signing import ServerIdentity, Sig0Signer
from .server import DNSServer

logger = logging.getLogger(__name__)


def create_delegation_resolver(config: ServerConfig) -> StubResolver:
    """Brief: Pick the delegation resolver variant named by the config.

    Inputs:
      - config: ServerConfig; no_unbound selects the non-validating variant.

    Outputs:
      - StubResolver or NonValidatingStubResolver aimed at stub_host:stub_port.
    """

    resolver_cls = NonValidatingStubResolver if config.no_unbound else StubResolver
    return resolver_cls(
        config.stub_host,
        config.stub_port,
        trust_anchor=config.trust_anchor,
        timeout_ms=config.timeout_ms,
        edns_udp_payload=config.edns_udp_payload,
    )


def create_recursive_server(
    config: ServerConfig,
    *,
    resolver: Optional[ResolveStrategy] = None,
    registry: Optional[AddressRegistry] = None,
    identity: Optional[ServerIdentity] = None,
) -> DNSServer:
    """Brief: Build a DNSServer whose strategy is an ENSRouter.

    Inputs:
      - config: Validated ServerConfig.
      - resolver: Optional delegation strategy (defaults from config).
      - registry: Optional ENS registry client (defaults to EthClient).
      - identity: Optional ServerIdentity; otherwise derived from config.key,
        or generated when no key is configured.

    Outputs:
      - DNSServer in state CONSTRUCTED.

    Example:
      >>> from ensdns.config import load_server_config
      >>> server = create_recursive_server(load_server_config({"port": 5399}))
      >>> server.port, server.signer.sign_size()
      (5399, 94)
    """

    if identity is None:
        identity = ServerIdentity(config.key) if config.key else ServerIdentity.generate()
    if resolver is None:
        resolver = create_delegation_resolver(config)
    if registry is None:
        registry = EthClient(
            config.eth_url, registry=config.ens_registry, timeout_ms=config.timeout_ms
        )

    router = ENSRouter(
        resolver,
        registry,
        ENSCache(config.cache_size),
        reserved_label=config.reserved_label,
    )
    logger.debug(
        "recursive server %s:%d -> stub %s:%d (%s), ENS via %s",
        config.host,
        config.port,
        config.stub_host,
        config.stub_port,
        type(resolver).__name__,
        config.eth_url,
    )
    return DNSServer(
        router,
        Sig0Signer(identity),
        config.host,
        config.port,
        no_any=config.no_any,
        edns_udp_payload=config.edns_udp_payload,
    )
