"""BIP32 HD key derivation and BIP86 taproot key tweaking.

Implements the pieces of BIP32 / BIP341 a mailbox derivation needs:
- Master key generation from a BIP39 seed
- Private child key derivation (hardened & normal) and path strings
- Compressed / x-only public key encoding
- Key-path-only taproot output key tweak (BIP86)
"""

from __future__ import annotations

import hashlib
import hmac
import struct
from dataclasses import dataclass

from ecdsa import SECP256k1, SigningKey, VerifyingKey
from ecdsa.ellipticcurve import INFINITY
from ecdsa.errors import MalformedPointError

from ephemeral_channel.utils.crypto import tagged_hash

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_CURVE = SECP256k1
_CURVE_ORDER = _CURVE.order
_CURVE_GEN = _CURVE.generator

# BIP32 seed HMAC key
_MASTER_HMAC_KEY = b"Bitcoin seed"

HARDENED_OFFSET = 0x80000000


# ---------------------------------------------------------------------------
# Public key helpers
# ---------------------------------------------------------------------------


def private_key_to_public_key(privkey_bytes: bytes) -> bytes:
    """Derive the 33-byte SEC compressed public key from a 32-byte private key."""
    sk = SigningKey.from_string(privkey_bytes, curve=_CURVE)
    return compress_public_key(sk.get_verifying_key().to_string())


def compress_public_key(raw_pubkey: bytes) -> bytes:
    """Compress a 64-byte (or 65-byte with 0x04 prefix) raw public key to 33 bytes."""
    if len(raw_pubkey) == 65 and raw_pubkey[0] == 0x04:
        raw_pubkey = raw_pubkey[1:]
    if len(raw_pubkey) != 64:
        if len(raw_pubkey) == 33 and raw_pubkey[0] in (0x02, 0x03):
            return raw_pubkey  # Already compressed
        msg = f"Invalid raw public key length: {len(raw_pubkey)}"
        raise ValueError(msg)
    x = int.from_bytes(raw_pubkey[:32], "big")
    y = int.from_bytes(raw_pubkey[32:], "big")
    prefix = b"\x02" if y % 2 == 0 else b"\x03"
    return prefix + x.to_bytes(32, "big")


def x_only(pubkey: bytes) -> bytes:
    """Drop the parity byte of a compressed public key (BIP340 x-only form)."""
    if len(pubkey) != 33:
        msg = f"Expected a 33-byte compressed key, got {len(pubkey)}"
        raise ValueError(msg)
    return pubkey[1:]


def taproot_tweak_public_key(internal_key: bytes) -> bytes:
    """Compute the BIP86 taproot output key for an x-only internal key.

    ``Q = lift_x(P) + H_TapTweak(P) * G`` with no script tree.

    Args:
        internal_key: 32-byte x-only internal public key.

    Returns:
        32-byte x-only output key.

    Raises:
        ValueError: If the key is not on the curve, the tweak is out of
            range, or the tweaked point is the point at infinity.
    """
    if len(internal_key) != 32:
        msg = f"Internal key must be 32 bytes, got {len(internal_key)}"
        raise ValueError(msg)

    try:
        lifted = VerifyingKey.from_string(b"\x02" + internal_key, curve=_CURVE)
    except MalformedPointError as exc:
        msg = "Internal key is not a valid x coordinate"
        raise ValueError(msg) from exc

    tweak = int.from_bytes(tagged_hash("TapTweak", internal_key), "big")
    if tweak >= _CURVE_ORDER:
        msg = "Taproot tweak is out of range"
        raise ValueError(msg)

    point = lifted.pubkey.point + _CURVE_GEN * tweak
    if point == INFINITY:
        msg = "Tweaked key is the point at infinity"
        raise ValueError(msg)
    return point.x().to_bytes(32, "big")


# ---------------------------------------------------------------------------
# BIP32 Extended Key
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExtendedKey:
    """A BIP32 extended private key.

    Attributes:
        key: 32-byte private key scalar.
        chain_code: 32-byte chain code.
        depth: Derivation depth (0 for master).
        child_index: Index used in derivation.
    """

    key: bytes
    chain_code: bytes
    depth: int = 0
    child_index: int = 0

    def __repr__(self) -> str:
        return f"ExtendedKey(depth={self.depth}, child_index={self.child_index:#x})"

    def public_key(self) -> bytes:
        """Return the 33-byte compressed public key."""
        return private_key_to_public_key(self.key)

    def derive_child(self, index: int) -> ExtendedKey:
        """Derive a child key at the given index.

        Use ``index >= HARDENED_OFFSET`` for hardened derivation.

        Raises:
            ValueError: If the derived key is invalid.
        """
        if not 0 <= index <= 0xFFFFFFFF:
            msg = f"Child index out of range: {index}"
            raise ValueError(msg)

        if index >= HARDENED_OFFSET:
            # Data = 0x00 || private_key || index
            data = b"\x00" + self.key + struct.pack(">I", index)
        else:
            # Data = compressed_pubkey || index
            data = self.public_key() + struct.pack(">I", index)

        hmac_result = hmac.new(self.chain_code, data, hashlib.sha512).digest()
        il, ir = hmac_result[:32], hmac_result[32:]

        il_int = int.from_bytes(il, "big")
        if il_int >= _CURVE_ORDER:
            msg = "Derived key is invalid (il >= curve order)"
            raise ValueError(msg)

        key_int = (il_int + int.from_bytes(self.key, "big")) % _CURVE_ORDER
        if key_int == 0:
            msg = "Derived key is invalid (key == 0)"
            raise ValueError(msg)
        return ExtendedKey(
            key=key_int.to_bytes(32, "big"),
            chain_code=ir,
            depth=self.depth + 1,
            child_index=index,
        )

    def derive_path(self, path: str) -> ExtendedKey:
        """Derive using a BIP32 path string like ``m/86'/1'/0'/0/0``.

        Apostrophe (') or h indicates hardened derivation.
        """
        parts = path.strip().split("/")
        key = self
        for part in parts:
            if part in ("m", "M", ""):
                continue
            hardened = part.endswith(("'", "h", "H"))
            idx = int(part.rstrip("'hH"))
            if hardened:
                idx += HARDENED_OFFSET
            key = key.derive_child(idx)
        return key

    @classmethod
    def from_seed(cls, seed: bytes) -> ExtendedKey:
        """Create a master private extended key from a BIP32 seed.

        Args:
            seed: 16-64 byte seed (64 bytes from a BIP39 mnemonic).

        Raises:
            ValueError: If seed length is out of range or the master key is invalid.
        """
        if not 16 <= len(seed) <= 64:
            msg = f"Seed must be 16-64 bytes, got {len(seed)}"
            raise ValueError(msg)
        hmac_result = hmac.new(_MASTER_HMAC_KEY, seed, hashlib.sha512).digest()
        il, ir = hmac_result[:32], hmac_result[32:]
        il_int = int.from_bytes(il, "big")
        if il_int == 0 or il_int >= _CURVE_ORDER:
            msg = "Invalid seed (derived key out of range)"
            raise ValueError(msg)
        return cls(key=il, chain_code=ir)
