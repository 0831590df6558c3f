"""
Brief: Global pytest configuration: src path, per-test timeout, shared fakes.

Inputs:
  - None

Outputs:
  - None
"""

import os
import signal
import sys
from typing import Dict, List, Optional, Tuple

import pytest

# Ensure 'src' is on sys.path so 'ensdns' is importable without installing.
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from dnslib import QTYPE, RR, A, DNSRecord  # noqa: E402

from ensdns.ens.client import RegistryError  # noqa: E402
from ensdns.plugins.resolve.base import Question, ResolveStrategy  # noqa: E402


def _alarm_handler(signum, frame):
    raise TimeoutError("Test exceeded 10 seconds")


if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        yield


class FakeResolver(ResolveStrategy):
    """Delegation stand-in answering every question with 192.0.2.1."""

    capabilities = ("delegate",)

    def __init__(self, events: Optional[List[str]] = None, error: Optional[Exception] = None):
        self.events = events if events is not None else []
        self.error = error
        self.questions: List[Question] = []
        self.lookups: List[Tuple[str, int]] = []

    async def open(self) -> None:
        self.events.append("resolver.open")

    async def close(self) -> None:
        self.events.append("resolver.close")

    def _answer(self, name: str, qtype: int) -> DNSRecord:
        msg = DNSRecord.question(name, QTYPE[qtype]).reply()
        msg.header.id = 4242
        msg.add_answer(RR(name, QTYPE.A, rdata=A("192.0.2.1"), ttl=300))
        return msg

    async def resolve(self, question: Question) -> DNSRecord:
        self.questions.append(question)
        if self.error is not None:
            raise self.error
        return self._answer(question.name, question.qtype)

    async def lookup(self, name: str, qtype: int) -> DNSRecord:
        self.lookups.append((name, qtype))
        return self._answer(name, qtype)


class FakeRegistry:
    """ENS stand-in mapping bare names (case-insensitively) to addresses; missing names resolve to None."""

    def __init__(self, addresses: Optional[Dict[str, str]] = None, error: Optional[Exception] = None):
        self.addresses = {k.lower(): v for k, v in (addresses or {}).items()}
        self.error = error
        self.calls: List[str] = []
        self.closed = False

    async def resolve_address(self, name: str) -> Optional[str]:
        self.calls.append(name)
        if self.error is not None:
            raise self.error
        return self.addresses.get(name.lower())

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_resolver():
    return FakeResolver()


@pytest.fixture
def fake_registry():
    return FakeRegistry({"alice.eth": "0xABCD"})


@pytest.fixture
def registry_error():
    return RegistryError("node unreachable")
