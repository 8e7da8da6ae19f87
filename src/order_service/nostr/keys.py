"""Nostr keys — bech32 (NIP-19), BIP-340 Schnorr signatures, ECDH.

Implements the key handling a merchant identity needs:
- ``nsec`` / ``npub`` bech32 encoding and decoding
- x-only public key derivation on secp256k1
- BIP-340 Schnorr signing and verification
- ECDH shared secret (x coordinate) for NIP-04 encryption
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Self

from ecdsa import SECP256k1
from ecdsa.ellipticcurve import INFINITY, Point, PointJacobi

from order_service.errors.definitions import (
    ErrInvalidBech32,
    ErrInvalidPubKey,
    ErrInvalidSecretKey,
    ErrNotNsec,
)
from order_service.errors.service_errors import KeyDecodeError
from order_service.utils.crypto import tagged_hash

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_CURVE = SECP256k1
_CURVE_ORDER = _CURVE.order
_CURVE_GEN = _CURVE.generator
_FIELD_P = _CURVE.curve.p()

_BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_BECH32_GENERATOR = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)

HRP_NSEC = "nsec"
HRP_NPUB = "npub"


# ---------------------------------------------------------------------------
# Bech32 (BIP-173) encoding / decoding
# ---------------------------------------------------------------------------


def _bech32_polymod(values: list[int]) -> int:
    chk = 1
    for value in values:
        top = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ value
        for i in range(5):
            chk ^= _BECH32_GENERATOR[i] if ((top >> i) & 1) else 0
    return chk


def _bech32_hrp_expand(hrp: str) -> list[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _convert_bits(data: bytes | list[int], from_bits: int, to_bits: int, *, pad: bool) -> list[int]:
    """General power-of-2 base conversion (5-bit groups <-> bytes)."""
    acc = 0
    bits = 0
    result: list[int] = []
    maxv = (1 << to_bits) - 1
    for value in data:
        if value < 0 or value >> from_bits:
            raise ErrInvalidBech32
        acc = (acc << from_bits) | value
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            result.append((acc >> bits) & maxv)
    if pad:
        if bits:
            result.append((acc << (to_bits - bits)) & maxv)
    elif bits >= from_bits or ((acc << (to_bits - bits)) & maxv):
        raise ErrInvalidBech32
    return result


def bech32_encode(hrp: str, payload: bytes) -> str:
    """Encode raw bytes as a bech32 string with the given human-readable part."""
    data = _convert_bits(payload, 8, 5, pad=True)
    polymod = _bech32_polymod(_bech32_hrp_expand(hrp) + data + [0] * 6) ^ 1
    checksum = [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]
    return hrp + "1" + "".join(_BECH32_CHARSET[d] for d in data + checksum)


def bech32_decode(value: str) -> tuple[str, bytes]:
    """Decode a bech32 string into ``(hrp, payload)``.

    Raises:
        KeyDecodeError: If the string is malformed or the checksum fails.
    """
    if value.lower() != value and value.upper() != value:
        raise ErrInvalidBech32
    value = value.lower()
    pos = value.rfind("1")
    if pos < 1 or pos + 7 > len(value):
        raise ErrInvalidBech32
    hrp = value[:pos]
    try:
        data = [_BECH32_CHARSET.index(c) for c in value[pos + 1 :]]
    except ValueError:
        raise ErrInvalidBech32 from None
    if _bech32_polymod(_bech32_hrp_expand(hrp) + data) != 1:
        raise ErrInvalidBech32
    return hrp, bytes(_convert_bits(data[:-6], 5, 8, pad=False))


# ---------------------------------------------------------------------------
# Curve helpers
# ---------------------------------------------------------------------------


def _int(b: bytes) -> int:
    return int.from_bytes(b, "big")


def _bytes32(n: int) -> bytes:
    return n.to_bytes(32, "big")


def _lift_x(x: int) -> PointJacobi:
    """Return the curve point with x coordinate *x* and even y (BIP-340 ``lift_x``)."""
    if x >= _FIELD_P:
        raise ErrInvalidPubKey
    y_sq = (pow(x, 3, _FIELD_P) + 7) % _FIELD_P
    y = pow(y_sq, (_FIELD_P + 1) // 4, _FIELD_P)
    if pow(y, 2, _FIELD_P) != y_sq:
        raise ErrInvalidPubKey
    if y % 2:
        y = _FIELD_P - y
    return PointJacobi.from_affine(Point(_CURVE.curve, x, y))


def _secret_scalar(secret: bytes) -> int:
    d = _int(secret)
    if len(secret) != 32 or not 1 <= d < _CURVE_ORDER:
        raise ErrInvalidSecretKey
    return d


def xonly_public_key(secret: bytes) -> bytes:
    """Derive the 32-byte x-only public key for a 32-byte secret key."""
    point = _CURVE_GEN * _secret_scalar(secret)
    return _bytes32(point.x())


# ---------------------------------------------------------------------------
# BIP-340 Schnorr
# ---------------------------------------------------------------------------


def schnorr_sign(message: bytes, secret: bytes, aux_rand: bytes | None = None) -> bytes:
    """Produce a 64-byte BIP-340 signature of a 32-byte message."""
    d0 = _secret_scalar(secret)
    point = _CURVE_GEN * d0
    d = d0 if point.y() % 2 == 0 else _CURVE_ORDER - d0
    px = _bytes32(point.x())

    if aux_rand is None:
        aux_rand = os.urandom(32)
    t = _bytes32(d ^ _int(tagged_hash("BIP0340/aux", aux_rand)))
    k0 = _int(tagged_hash("BIP0340/nonce", t + px + message)) % _CURVE_ORDER
    if k0 == 0:
        msg = "BIP-340 nonce generation produced zero"
        raise ValueError(msg)

    r_point = _CURVE_GEN * k0
    k = k0 if r_point.y() % 2 == 0 else _CURVE_ORDER - k0
    rx = _bytes32(r_point.x())
    e = _int(tagged_hash("BIP0340/challenge", rx + px + message)) % _CURVE_ORDER
    return rx + _bytes32((k + e * d) % _CURVE_ORDER)


def schnorr_verify(message: bytes, pubkey: bytes, signature: bytes) -> bool:
    """Verify a BIP-340 signature against an x-only public key."""
    if len(pubkey) != 32 or len(signature) != 64:
        return False
    try:
        point = _lift_x(_int(pubkey))
    except KeyDecodeError:
        return False
    r = _int(signature[:32])
    s = _int(signature[32:])
    if r >= _FIELD_P or s >= _CURVE_ORDER:
        return False
    e = _int(tagged_hash("BIP0340/challenge", signature[:32] + pubkey + message)) % _CURVE_ORDER
    r_point = _CURVE_GEN * s + point * (_CURVE_ORDER - e)
    if r_point == INFINITY:
        return False
    return r_point.y() % 2 == 0 and r_point.x() == r


def shared_secret(secret: bytes, pubkey_hex: str) -> bytes:
    """ECDH shared secret: x coordinate of ``secret * lift_x(pubkey)``."""
    try:
        pubkey = bytes.fromhex(pubkey_hex)
    except ValueError:
        raise ErrInvalidPubKey from None
    if len(pubkey) != 32:
        raise ErrInvalidPubKey
    point = _lift_x(_int(pubkey)) * _secret_scalar(secret)
    return _bytes32(point.x())


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Keys:
    """A Nostr signing identity.

    Attributes:
        secret: 32-byte secret key.
        public_key: Hex-encoded x-only public key.
    """

    secret: bytes = field(repr=False)
    public_key: str = ""

    def __post_init__(self) -> None:
        if not self.public_key:
            object.__setattr__(self, "public_key", xonly_public_key(self.secret).hex())

    @classmethod
    def from_secret(cls, secret: bytes) -> Self:
        """Build keys from raw secret bytes."""
        _secret_scalar(secret)
        return cls(secret=secret)

    @classmethod
    def from_hex(cls, secret_hex: str) -> Self:
        """Build keys from a hex-encoded secret key."""
        try:
            secret = bytes.fromhex(secret_hex)
        except ValueError:
            raise ErrInvalidSecretKey from None
        return cls.from_secret(secret)

    @classmethod
    def from_nsec(cls, nsec: str) -> Self:
        """Decode an ``nsec`` bech32 secret key.

        Raises:
            KeyDecodeError: If the string is not a valid nsec.
        """
        hrp, payload = bech32_decode(nsec.strip())
        if hrp != HRP_NSEC:
            raise ErrNotNsec
        return cls.from_secret(payload)

    @classmethod
    def generate(cls) -> Self:
        """Create a fresh random identity."""
        while True:
            secret = os.urandom(32)
            if 1 <= _int(secret) < _CURVE_ORDER:
                return cls(secret=secret)

    @property
    def npub(self) -> str:
        """Bech32 ``npub`` form of the public key."""
        return bech32_encode(HRP_NPUB, bytes.fromhex(self.public_key))

    @property
    def nsec(self) -> str:
        """Bech32 ``nsec`` form of the secret key."""
        return bech32_encode(HRP_NSEC, self.secret)

    def sign(self, message: bytes) -> bytes:
        """Schnorr-sign a 32-byte message digest."""
        return schnorr_sign(message, self.secret)

    def shared_secret(self, pubkey_hex: str) -> bytes:
        """ECDH shared secret with a counterparty's x-only public key."""
        return shared_secret(self.secret, pubkey_hex)
