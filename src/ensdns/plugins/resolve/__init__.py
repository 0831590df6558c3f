"""Resolution strategies plugged into ensdns.servers.server.DNSServer."""

from __future__ import annotations

from .base import ClientInfo, Question, ResolveStrategy

__all__ = ["ClientInfo", "Question", "ResolveStrategy"]
