"""Address encoding — bech32/bech32m segwit, Base58Check legacy.

Bitcoin testnet address operations:
- P2TR (taproot) address generation from an x-only output key
- Address → locking script conversion for segwit and legacy outputs
- Address validation
"""

from __future__ import annotations

from bip_utils.bech32 import Bech32ChecksumError, SegwitBech32Decoder, SegwitBech32Encoder

from ephemeral_channel.btc.script import OpCode, p2pkh_lock_script, p2sh_lock_script, push_data
from ephemeral_channel.utils.crypto import sha256d

# Network parameters (testnet)
TESTNET_HRP = "tb"
_TESTNET_PUBKEY_HASH = 0x6F  # m... or n...
_TESTNET_SCRIPT_HASH = 0xC4  # 2...


# ---------------------------------------------------------------------------
# Base58Check encoding / decoding
# ---------------------------------------------------------------------------

_B58_ALPHABET = b"123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def base58check_encode(payload: bytes) -> str:
    """Encode bytes with a 4-byte SHA256d checksum (Base58Check)."""
    data = payload + sha256d(payload)[:4]
    n = int.from_bytes(data, "big")
    result: list[int] = []
    while n > 0:
        n, remainder = divmod(n, 58)
        result.append(_B58_ALPHABET[remainder])
    # Preserve leading zero bytes
    for byte in data:
        if byte == 0:
            result.append(_B58_ALPHABET[0])
        else:
            break
    return bytes(reversed(result)).decode("ascii")


def base58check_decode(s: str) -> bytes:
    """Decode a Base58Check string, verifying the checksum.

    Raises:
        ValueError: If the string has invalid characters or a bad checksum.
    """
    n = 0
    for char in s:
        idx = _B58_ALPHABET.find(char.encode("ascii", errors="replace"))
        if idx < 0:
            msg = f"Invalid Base58 character: {char!r}"
            raise ValueError(msg)
        n = n * 58 + idx
    raw = n.to_bytes((n.bit_length() + 7) // 8, "big") if n > 0 else b""
    pad_count = len(s) - len(s.lstrip("1"))
    raw = b"\x00" * pad_count + raw
    if len(raw) < 4:
        msg = "Base58Check string too short"
        raise ValueError(msg)
    payload, checksum = raw[:-4], raw[-4:]
    if checksum != sha256d(payload)[:4]:
        msg = "Base58Check checksum mismatch"
        raise ValueError(msg)
    return payload


# ---------------------------------------------------------------------------
# Segwit / taproot
# ---------------------------------------------------------------------------


def taproot_address(output_key: bytes, *, hrp: str = TESTNET_HRP) -> str:
    """Encode a 32-byte x-only output key as a bech32m P2TR address.

    Raises:
        ValueError: If the key is not 32 bytes.
    """
    if len(output_key) != 32:
        msg = f"Taproot output key must be 32 bytes, got {len(output_key)}"
        raise ValueError(msg)
    return SegwitBech32Encoder.Encode(hrp, 1, output_key)


def _witness_script(version: int, program: bytes) -> bytes:
    op_version = OpCode.OP_0 if version == 0 else OpCode.OP_1 + version - 1
    return bytes([op_version]) + push_data(program)


# ---------------------------------------------------------------------------
# Address → script
# ---------------------------------------------------------------------------


def address_to_script(address: str, *, hrp: str = TESTNET_HRP) -> bytes:
    """Build the locking script (scriptPubKey) paying to *address*.

    Supports segwit v0 / taproot (bech32 / bech32m) and legacy P2PKH / P2SH
    testnet addresses.

    Raises:
        ValueError: If the address is malformed or not a testnet address.
    """
    address = address.strip()
    if address.lower().startswith(hrp + "1"):
        try:
            version, program = SegwitBech32Decoder.Decode(hrp, address)
        except (Bech32ChecksumError, ValueError) as exc:
            msg = f"Invalid segwit address: {address}"
            raise ValueError(msg) from exc
        return _witness_script(version, program)

    payload = base58check_decode(address)
    if len(payload) != 21:
        msg = f"Invalid address payload length: {len(payload)}"
        raise ValueError(msg)
    if payload[0] == _TESTNET_PUBKEY_HASH:
        return p2pkh_lock_script(payload[1:])
    if payload[0] == _TESTNET_SCRIPT_HASH:
        return p2sh_lock_script(payload[1:])
    msg = f"Unsupported address version byte: {payload[0]:#x}"
    raise ValueError(msg)


def validate_address(address: str) -> bool:
    """Check if *address* is a payable testnet address."""
    try:
        address_to_script(address)
    except ValueError:
        return False
    return True
