"""ENS (Ethereum Name Service) registry access."""

from __future__ import annotations

from .client import EthClient, RegistryError, namehash

__all__ = ["EthClient", "RegistryError", "namehash"]
