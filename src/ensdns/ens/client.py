from __future__ import annotations

import asyncio
import functools
import itertools
import logging
import threading
from typing import Any, Callable, List, Optional

import requests
from Crypto.Hash import keccak

logger = logging.getLogger(__name__)

ZERO_NODE = b"\x00" * 32
ZERO_ADDRESS = "0x" + "00" * 20


class RegistryError(Exception):
    """
    Brief: ENS lookup failed (transport, HTTP, JSON-RPC, or decoding error).

    Inputs:
    - message: description

    Outputs:
    - Exception instance
    """

    pass


def keccak256(data: bytes) -> bytes:
    return keccak.new(digest_bits=256, data=data).digest()


def selector(signature: str) -> bytes:
    """Brief: First four bytes of keccak256(signature), the ABI function id.

    Example:
      >>> selector("addr(bytes32)").hex()
      '3b3b57de'
    """

    return keccak256(signature.encode("ascii"))[:4]


def namehash(name: str) -> bytes:
    """Brief: ENS namehash (EIP-137) of a dotted name.

    Inputs:
      - name: Bare name such as "alice.eth" (a trailing dot is tolerated).

    Outputs:
      - bytes: 32-byte node.

    Example:
      >>> namehash("eth").hex()
      '93cdeb708b7545dc668eb9280176169d1c33cfd8ed6f04690a0bcc88a93fc4ae'
    """

    node = ZERO_NODE
    labels = [label for label in name.strip().rstrip(".").lower().split(".") if label]
    for label in reversed(labels):
        node = keccak256(node + keccak256(label.encode("utf-8")))
    return node


def to_checksum_address(address: str) -> str:
    """Brief: EIP-55 mixed-case checksum encoding of a hex address.

    Example:
      >>> to_checksum_address("0x5aaeb6053f3e94c9b9a09f33669435e7ef1beaed")
      '0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed'
    """

    body = address.lower()[2:] if address.lower().startswith("0x") else address.lower()
    digest = keccak256(body.encode("ascii")).hex()
    return "0x" + "".join(
        c.upper() if c.isalpha() and int(h, 16) >= 8 else c for c, h in zip(body, digest)
    )


_RESOLVER_SELECTOR = selector("resolver(bytes32)")
_ADDR_SELECTOR = selector("addr(bytes32)")


class EthClient:
    """
    Minimal ENS client speaking Ethereum JSON-RPC over HTTP.

    Inputs (constructor):
      - url: JSON-RPC endpoint, e.g. "http://127.0.0.1:8545".
      - registry: ENS registry contract address.
      - timeout_ms: HTTP timeout per RPC call.
      - session_factory: Callable returning a requests.Session; each executor
        thread gets its own session.

    Outputs:
      - EthClient instance.

    Resolution is two eth_call round trips: registry.resolver(node), then
    resolver.addr(node). A zero address at either step means the name has no
    address.
    """

    def __init__(
        self,
        url: str,
        *,
        registry: str,
        timeout_ms: int = 2000,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ) -> None:
        self.url = url
        self.registry = registry
        self.timeout = max(1, int(timeout_ms)) / 1000.0
        self._session_factory = session_factory
        self._local = threading.local()
        self._sessions: List[requests.Session] = []
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    def _rpc(self, method: str, params: List[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            resp = self._session().post(self.url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
            body = resp.json()
        except requests.RequestException as e:
            raise RegistryError(f"{method} to {self.url} failed: {e}") from e
        except ValueError as e:
            raise RegistryError(f"{method} returned invalid JSON: {e}") from e

        if not isinstance(body, dict):
            raise RegistryError(f"{method} returned a non-object response")
        if body.get("error"):
            err = body["error"]
            msg = err.get("message") if isinstance(err, dict) else err
            raise RegistryError(f"{method} error: {msg}")
        return body.get("result")

    def _call(self, to: str, data: bytes) -> bytes:
        result = self._rpc("eth_call", [{"to": to, "data": "0x" + data.hex()}, "latest"])
        if not isinstance(result, str) or not result.startswith("0x"):
            raise RegistryError(f"eth_call returned unexpected result {result!r}")
        try:
            return bytes.fromhex(result[2:])
        except ValueError as e:
            raise RegistryError(f"eth_call returned non-hex data {result!r}") from e

    @staticmethod
    def _decode_address(word: bytes) -> Optional[str]:
        # Contracts without code answer "0x".
        if len(word) < 32:
            return None
        address = "0x" + word[12:32].hex()
        if address == ZERO_ADDRESS:
            return None
        return to_checksum_address(address)

    def get_resolver(self, node: bytes) -> Optional[str]:
        return self._decode_address(self._call(self.registry, _RESOLVER_SELECTOR + node))

    def resolve_address_sync(self, name: str) -> Optional[str]:
        """
        Resolve an ENS name to its address, blocking.

        Inputs:
          - name: Bare ENS name without a trailing dot.
        Outputs:
          - Checksummed address string, or None when unset.
        Raises:
          - RegistryError on transport or protocol failures.
        """
        node = namehash(name)
        resolver = self.get_resolver(node)
        if resolver is None:
            logger.debug("no ENS resolver for %s", name)
            return None
        return self._decode_address(self._call(resolver, _ADDR_SELECTOR + node))

    async def resolve_address(self, name: str) -> Optional[str]:
        """Async wrapper running resolve_address_sync() in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, functools.partial(self.resolve_address_sync, name)
        )

    def _session(self) -> requests.Session:
        # One session per executor thread.
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._session_factory()
            self._local.session = session
            with self._lock:
                self._sessions.append(session)
        return session

    def close(self) -> None:
        with self._lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.close()
