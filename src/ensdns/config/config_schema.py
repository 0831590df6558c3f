"""Typed configuration model for the ENS-intercepting recursive server.

Brief:
  ServerConfig is the single immutable options value handed to
  ensdns.servers.recursive.create_recursive_server(). It accepts both the
  snake_case keys used in YAML files and the camelCase option names used by
  embedding hosts (stubHost, stubPort, noUnbound, ethUrl).
"""

from __future__ import annotations

import ipaddress
import logging
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    ValidationError,
    field_validator,
)

from ..resolvers.stub import ROOT_TRUST_ANCHOR, parse_trust_anchor

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 5301
DEFAULT_STUB_HOST = "127.0.0.1"
DEFAULT_STUB_PORT = 5300
DEFAULT_ETH_URL = "http://127.0.0.1:8545"
# ENS registry with fallback, Ethereum mainnet.
DEFAULT_ENS_REGISTRY = "0x00000000000C2E074eC69A0dFb2997BA6C7d2e1e"

_WILDCARD_HOSTS = ("0.0.0.0", "::")


class ConfigError(ValueError):
    """Brief: Raised when server options have the wrong shape, type, or range.

    Inputs:
      - message: Human-readable description of every offending option.

    Outputs:
      - Exception instance; always fatal at startup.
    """


def _normalize_ip(value: object) -> str:
    if not isinstance(value, str):
        raise ValueError("must be an IP address string")
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError as e:
        raise ValueError(f"invalid IP address {value!r}") from e


class LoggingConfig(BaseModel):
    """Brief: Root logging options forwarded to init_logging().

    Inputs:
      - level: debug | info | warn | error | crit.
      - stderr: Log to stderr.
      - file: Optional log file path.
      - syslog: False, True, or a mapping with address/facility.

    Outputs:
      - LoggingConfig instance.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    level: str = "info"
    stderr: bool = True
    file: Optional[str] = None
    syslog: Union[bool, Dict[str, Any]] = False

    @field_validator("level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        level = str(value).strip().lower()
        if level not in ("debug", "info", "warn", "warning", "error", "crit", "critical"):
            raise ValueError(f"unknown log level {value!r}")
        return level


class ServerConfig(BaseModel):
    """Brief: Immutable, validated options for the recursive server.

    Inputs:
      - host/port: Listen address for inbound DNS (UDP and TCP).
      - stub_host/stub_port: Downstream stub/authoritative endpoint used by
        the delegation resolver. Wildcard hosts map to 127.0.0.1.
      - key: 32-byte secp256k1 private key (bytes or hex string). A random
        key is generated when omitted.
      - no_unbound: Use the non-validating delegation resolver.
      - eth_url: JSON-RPC endpoint of the Ethereum node used for ENS.
      - ens_registry: ENS registry contract address.
      - reserved_label: Top-level label routed to ENS.
      - cache_size: Capacity of the ENS response cache.
      - trust_anchor: Root DS record used by the validating resolver.
      - timeout_ms: Per-request timeout for registry and stub transports.
      - no_any: Refuse ANY questions with NOTIMP.
      - edns_udp_payload: Advertised EDNS UDP payload size.
      - logging: Root logging options.

    Outputs:
      - ServerConfig instance.

    Example:
      >>> cfg = ServerConfig(stubHost="0.0.0.0", port=5353)
      >>> cfg.stub_host, cfg.port
      ('127.0.0.1', 5353)
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    host: str = DEFAULT_HOST
    port: int = Field(DEFAULT_PORT, ge=1, le=65535)
    stub_host: str = Field(
        DEFAULT_STUB_HOST, validation_alias=AliasChoices("stub_host", "stubHost")
    )
    stub_port: int = Field(
        DEFAULT_STUB_PORT,
        ge=1,
        le=65535,
        validation_alias=AliasChoices("stub_port", "stubPort"),
    )
    key: Optional[bytes] = None
    no_unbound: StrictBool = Field(
        False, validation_alias=AliasChoices("no_unbound", "noUnbound")
    )
    eth_url: str = Field(
        DEFAULT_ETH_URL, validation_alias=AliasChoices("eth_url", "ethUrl", "ethurl")
    )
    ens_registry: str = DEFAULT_ENS_REGISTRY
    reserved_label: str = "eth"
    cache_size: int = Field(500, ge=1)
    trust_anchor: str = ROOT_TRUST_ANCHOR
    timeout_ms: int = Field(2000, ge=1)
    no_any: StrictBool = True
    edns_udp_payload: int = Field(4096, ge=512, le=65535)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("host", mode="before")
    @classmethod
    def _check_host(cls, value: object) -> str:
        return _normalize_ip(value)

    @field_validator("stub_host", mode="before")
    @classmethod
    def _check_stub_host(cls, value: object) -> str:
        host = _normalize_ip(value)
        if host in _WILDCARD_HOSTS:
            return DEFAULT_STUB_HOST
        return host

    @field_validator("key", mode="before")
    @classmethod
    def _check_key(cls, value: object) -> Optional[bytes]:
        if value is None:
            return None
        if isinstance(value, str):
            text = value.strip()
            if text.lower().startswith("0x"):
                text = text[2:]
            try:
                value = bytes.fromhex(text)
            except ValueError as e:
                raise ValueError("key must be hex encoded") from e
        if not isinstance(value, (bytes, bytearray)):
            raise ValueError("key must be bytes or a hex string")
        if len(value) != 32:
            raise ValueError(f"key must be 32 bytes, got {len(value)}")
        return bytes(value)

    @field_validator("eth_url")
    @classmethod
    def _check_eth_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("eth_url must be an http(s) URL")
        return value

    @field_validator("ens_registry")
    @classmethod
    def _check_registry(cls, value: str) -> str:
        text = value.strip()
        body = text[2:] if text.lower().startswith("0x") else ""
        if len(body) != 40:
            raise ValueError("ens_registry must be a 0x-prefixed 20-byte address")
        try:
            bytes.fromhex(body)
        except ValueError as e:
            raise ValueError("ens_registry must be hex") from e
        return "0x" + body

    @field_validator("reserved_label")
    @classmethod
    def _check_label(cls, value: str) -> str:
        label = value.strip().strip(".").lower()
        if not label or "." in label:
            raise ValueError("reserved_label must be a single DNS label")
        return label

    @field_validator("trust_anchor")
    @classmethod
    def _check_anchor(cls, value: str) -> str:
        parse_trust_anchor(value)
        return value


def load_server_config(options: Optional[Mapping[str, Any]] = None) -> ServerConfig:
    """Brief: Validate a raw options mapping into a ServerConfig.

    Inputs:
      - options: Mapping of option name to value; None means all defaults.
        Keys whose value is None are treated as unset.

    Outputs:
      - ServerConfig.

    Raises:
      - ConfigError: When any option is invalid.

    Example:
      >>> load_server_config({"port": 5353}).port
      5353
    """

    raw = {k: v for k, v in dict(options or {}).items() if v is not None}
    try:
        return ServerConfig(**raw)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigError(f"invalid configuration: {problems}") from e
