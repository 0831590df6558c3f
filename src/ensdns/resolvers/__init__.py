"""Delegation resolvers for questions the router does not intercept."""

from __future__ import annotations

from .stub import (
    ROOT_TRUST_ANCHOR,
    NonValidatingStubResolver,
    StubResolver,
    parse_trust_anchor,
)

__all__ = [
    "NonValidatingStubResolver",
    "ROOT_TRUST_ANCHOR",
    "StubResolver",
    "parse_trust_anchor",
]
