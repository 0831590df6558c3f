"""SIG(0) response signing with the server's secp256k1 identity key.

Every outgoing response carries one SIG(0) record (RFC 2931) in its
additional section. The signature covers the SIG RDATA minus the signature
field, followed by the unsigned message; it is an ECDSA secp256k1 signature
over the BLAKE2b-256 digest, encoded as r || s (32 bytes each, low-s).
"""

from __future__ import annotations

import hashlib
import struct
import time
from dataclasses import dataclass
from typing import Callable, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, utils

PRIVATEDNS = 253
TYPE_SIG = 24
CLASS_ANY = 255

# Signatures stay valid for this long on either side of "now".
FUDGE = 6 * 60 * 60

_SECP256K1_N = int(
    "FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16
)
_SIG_LEN = 64
# owner "." + type/class/ttl/rdlength
_RR_HEADER_LEN = 1 + 2 + 2 + 4 + 2
# covered/alg/labels/origttl/expiration/inception/keytag + signer "."
_SIG_FIXED_LEN = 2 + 1 + 1 + 4 + 4 + 4 + 2 + 1
SIG_SIZE = _RR_HEADER_LEN + _SIG_FIXED_LEN + _SIG_LEN


@dataclass(frozen=True)
class ServerIdentity:
    """Brief: Immutable server identity holding the 32-byte private key.

    Inputs:
      - key: Raw secp256k1 private scalar, 32 bytes big-endian.

    Outputs:
      - ServerIdentity instance.

    Example:
      >>> ident = ServerIdentity.generate()
      >>> len(ident.key), len(ident.public_key())
      (32, 33)
    """

    key: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.key, (bytes, bytearray)) or len(self.key) != 32:
            raise ValueError("identity key must be 32 bytes")
        scalar = int.from_bytes(self.key, "big")
        if not 0 < scalar < _SECP256K1_N:
            raise ValueError("identity key is outside the secp256k1 range")

    @classmethod
    def generate(cls) -> "ServerIdentity":
        priv = ec.generate_private_key(ec.SECP256K1())
        return cls(priv.private_numbers().private_value.to_bytes(32, "big"))

    def private_key(self) -> ec.EllipticCurvePrivateKey:
        return ec.derive_private_key(int.from_bytes(self.key, "big"), ec.SECP256K1())

    def public_key(self) -> bytes:
        """Compressed SEC1 public key (33 bytes)."""
        return self.private_key().public_key().public_bytes(
            serialization.Encoding.X962, serialization.PublicFormat.CompressedPoint
        )


def key_rdata(public_key: bytes) -> bytes:
    # KEY RDATA: flags, protocol (3 = DNSSEC), algorithm, public key.
    return struct.pack("!HBB", 0, 3, PRIVATEDNS) + public_key


def key_tag(rdata: bytes) -> int:
    """Brief: RFC 4034 Appendix B key tag over KEY/DNSKEY RDATA.

    Inputs:
      - rdata: Wire RDATA of the key record.

    Outputs:
      - int in [0, 65535].
    """

    acc = 0
    for i, byte in enumerate(rdata):
        acc += byte if i & 1 else byte << 8
    acc += (acc >> 16) & 0xFFFF
    return acc & 0xFFFF


def _digest(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


# The digest is BLAKE2b-256; SHA256 only tells cryptography it is 32 bytes.
_PREHASHED = ec.ECDSA(utils.Prehashed(hashes.SHA256()))


class Sig0Signer:
    """Produces the fixed-size SIG(0) tag attached to each outgoing response.

    Inputs (constructor):
      - identity: ServerIdentity whose key signs responses.
      - clock: Callable returning epoch seconds (default time.time).

    Outputs:
      - Sig0Signer instance.
    """

    def __init__(
        self, identity: ServerIdentity, *, clock: Callable[[], float] = time.time
    ) -> None:
        self.identity = identity
        self._priv = identity.private_key()
        self._key_tag = key_tag(key_rdata(identity.public_key()))
        self._clock = clock

    @property
    def key_tag(self) -> int:
        return self._key_tag

    def sign_size(self) -> int:
        return SIG_SIZE

    def _sig_rdata_tbs(self, now: int) -> bytes:
        return (
            struct.pack(
                "!HBBIIIH",
                0,
                PRIVATEDNS,
                0,
                0,
                (now + FUDGE) & 0xFFFFFFFF,
                (now - FUDGE) & 0xFFFFFFFF,
                self._key_tag,
            )
            + b"\x00"
        )

    def sign(self, msg: bytes, host: Optional[str] = None, port: Optional[int] = None) -> bytes:
        """
        Sign a wire message and return the SIG(0) record bytes.

        Inputs:
          - msg: Unsigned wire-format response.
          - host, port: Peer address; unused by the signature, accepted so the
            call shape matches transport-aware signers.
        Outputs:
          - bytes: SIG resource record, exactly sign_size() long.

        Example:
          >>> signer = Sig0Signer(ServerIdentity.generate())
          >>> len(signer.sign(b"\\x00" * 12))
          94
        """
        tbs = self._sig_rdata_tbs(int(self._clock()))
        der = self._priv.sign(_digest(tbs + msg), _PREHASHED)
        r, s = utils.decode_dss_signature(der)
        if s > _SECP256K1_N // 2:
            s = _SECP256K1_N - s
        signature = r.to_bytes(32, "big") + s.to_bytes(32, "big")
        rdata = tbs + signature
        return b"\x00" + struct.pack("!HHIH", TYPE_SIG, CLASS_ANY, 0, len(rdata)) + rdata

    def verify(self, signed: bytes) -> bool:
        """Check a message produced by append_tag() against this identity."""
        return verify_tag(signed, self.identity.public_key())


def append_tag(msg: bytes, tag: bytes) -> bytes:
    """Brief: Append a SIG(0) record and bump ARCOUNT.

    Inputs:
      - msg: Unsigned wire message (at least a 12-byte header).
      - tag: Record bytes from Sig0Signer.sign().

    Outputs:
      - bytes: Signed wire message.
    """

    if len(msg) < 12:
        raise ValueError("message shorter than a DNS header")
    arcount = struct.unpack_from("!H", msg, 10)[0]
    return msg[:10] + struct.pack("!H", (arcount + 1) & 0xFFFF) + msg[12:] + tag


def verify_tag(signed: bytes, public_key: bytes) -> bool:
    """Brief: Verify a signed message whose last record is the SIG(0) tag.

    Inputs:
      - signed: Output of append_tag().
      - public_key: Compressed secp256k1 public key.

    Outputs:
      - bool: True when the signature matches.
    """

    if len(signed) < 12 + SIG_SIZE:
        return False
    body, tag = signed[:-SIG_SIZE], signed[-SIG_SIZE:]
    arcount = struct.unpack_from("!H", body, 10)[0]
    if arcount == 0:
        return False
    unsigned = body[:10] + struct.pack("!H", arcount - 1) + body[12:]
    rdata = tag[_RR_HEADER_LEN:]
    tbs, signature = rdata[:-_SIG_LEN], rdata[-_SIG_LEN:]
    r = int.from_bytes(signature[:32], "big")
    s = int.from_bytes(signature[32:], "big")
    try:
        pub = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), public_key)
        pub.verify(utils.encode_dss_signature(r, s), _digest(tbs + unsigned), _PREHASHED)
    except (InvalidSignature, ValueError):
        return False
    return True
