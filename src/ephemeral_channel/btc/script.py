"""Bitcoin script building — P2PKH, P2SH, OP_RETURN, script parsing.

Provides construction and parsing of the locking scripts a channel touches:
- P2PKH / P2SH locking scripts for legacy change addresses
- OP_RETURN (null data) scripts carrying the encrypted payload
- Script decompilation and annotation-field extraction
- Script type detection and classification
"""

from __future__ import annotations

import enum
import struct

# ---------------------------------------------------------------------------
# Opcodes
# ---------------------------------------------------------------------------


class OpCode(int, enum.Enum):
    """Commonly used Bitcoin opcodes."""

    OP_0 = 0x00
    OP_FALSE = 0x00
    OP_PUSHDATA1 = 0x4C
    OP_PUSHDATA2 = 0x4D
    OP_PUSHDATA4 = 0x4E
    OP_1 = 0x51
    OP_16 = 0x60
    OP_RETURN = 0x6A
    OP_DUP = 0x76
    OP_EQUAL = 0x87
    OP_EQUALVERIFY = 0x88
    OP_HASH160 = 0xA9
    OP_CHECKSIG = 0xAC


# ---------------------------------------------------------------------------
# Script Type
# ---------------------------------------------------------------------------


class ScriptType(enum.StrEnum):
    """Known script types."""

    P2PKH = "pubkeyhash"
    P2SH = "scripthash"
    P2WPKH = "witness_v0_keyhash"
    P2WSH = "witness_v0_scripthash"
    P2TR = "witness_v1_taproot"
    NULL_DATA = "nulldata"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# Data push helpers
# ---------------------------------------------------------------------------


def push_data(data: bytes) -> bytes:
    """Encode a data push operation using minimal encoding rules.

    Args:
        data: Arbitrary data bytes.

    Returns:
        The opcode(s) + data for a minimal push of *data*.
    """
    length = len(data)
    if length == 0:
        return bytes([OpCode.OP_0])
    if length <= 0x4B:
        return bytes([length]) + data
    if length <= 0xFF:
        return bytes([OpCode.OP_PUSHDATA1, length]) + data
    if length <= 0xFFFF:
        return bytes([OpCode.OP_PUSHDATA2]) + struct.pack("<H", length) + data
    return bytes([OpCode.OP_PUSHDATA4]) + struct.pack("<I", length) + data


def parse_script(script: bytes) -> list[int | bytes]:
    """Decompile a script into opcodes (ints) and pushed data (bytes).

    Raises:
        ValueError: If a push runs past the end of the script.
    """
    chunks: list[int | bytes] = []
    i = 0
    while i < len(script):
        op = script[i]
        i += 1
        if 0x01 <= op <= 0x4B:
            length = op
        elif op == OpCode.OP_PUSHDATA1:
            length = script[i] if i < len(script) else -1
            i += 1
        elif op == OpCode.OP_PUSHDATA2:
            length = struct.unpack("<H", script[i : i + 2])[0] if i + 2 <= len(script) else -1
            i += 2
        elif op == OpCode.OP_PUSHDATA4:
            length = struct.unpack("<I", script[i : i + 4])[0] if i + 4 <= len(script) else -1
            i += 4
        else:
            chunks.append(op)
            continue
        if length < 0 or i + length > len(script):
            msg = "Script push exceeds script length"
            raise ValueError(msg)
        chunks.append(script[i : i + length])
        i += length
    return chunks


# ---------------------------------------------------------------------------
# Standard locking scripts
# ---------------------------------------------------------------------------


def p2pkh_lock_script(pubkey_hash: bytes) -> bytes:
    """Build a P2PKH locking script.

    OP_DUP OP_HASH160 <20 bytes> OP_EQUALVERIFY OP_CHECKSIG
    """
    if len(pubkey_hash) != 20:
        msg = f"pubkey_hash must be 20 bytes, got {len(pubkey_hash)}"
        raise ValueError(msg)
    return (
        bytes([OpCode.OP_DUP, OpCode.OP_HASH160])
        + push_data(pubkey_hash)
        + bytes([OpCode.OP_EQUALVERIFY, OpCode.OP_CHECKSIG])
    )


def p2sh_lock_script(script_hash: bytes) -> bytes:
    """Build a P2SH locking script: ``OP_HASH160 <20 bytes> OP_EQUAL``."""
    if len(script_hash) != 20:
        msg = f"script_hash must be 20 bytes, got {len(script_hash)}"
        raise ValueError(msg)
    return bytes([OpCode.OP_HASH160]) + push_data(script_hash) + bytes([OpCode.OP_EQUAL])


# ---------------------------------------------------------------------------
# OP_RETURN scripts
# ---------------------------------------------------------------------------


def op_return_script(data: bytes) -> bytes:
    """Build an OP_RETURN (null data) script: ``OP_RETURN <push data>``."""
    return bytes([OpCode.OP_RETURN]) + push_data(data)


def extract_op_return_data(script: bytes) -> bytes | None:
    """Return the first data push of an OP_RETURN script, or None.

    Accepts both ``OP_RETURN <data>`` and ``OP_FALSE OP_RETURN <data>``.
    """
    if detect_script_type(script) != ScriptType.NULL_DATA:
        return None
    try:
        chunks = parse_script(script)
    except ValueError:
        return None
    if chunks and chunks[0] == OpCode.OP_FALSE:
        chunks = chunks[1:]
    if len(chunks) < 2 or not isinstance(chunks[1], bytes):
        return None
    return chunks[1]


# ---------------------------------------------------------------------------
# Script type detection
# ---------------------------------------------------------------------------


def detect_script_type(script: bytes) -> ScriptType:
    """Detect the type of a locking script."""
    if len(script) == 0:
        return ScriptType.UNKNOWN

    if (
        len(script) == 25
        and script[0] == OpCode.OP_DUP
        and script[1] == OpCode.OP_HASH160
        and script[2] == 0x14  # push 20 bytes
        and script[23] == OpCode.OP_EQUALVERIFY
        and script[24] == OpCode.OP_CHECKSIG
    ):
        return ScriptType.P2PKH

    if (
        len(script) == 23
        and script[0] == OpCode.OP_HASH160
        and script[1] == 0x14
        and script[22] == OpCode.OP_EQUAL
    ):
        return ScriptType.P2SH

    if script[0] == OpCode.OP_0 and len(script) == 22 and script[1] == 0x14:
        return ScriptType.P2WPKH
    if script[0] == OpCode.OP_0 and len(script) == 34 and script[1] == 0x20:
        return ScriptType.P2WSH
    if script[0] == OpCode.OP_1 and len(script) == 34 and script[1] == 0x20:
        return ScriptType.P2TR

    # OP_RETURN variants
    if script[0] == OpCode.OP_RETURN:
        return ScriptType.NULL_DATA
    if len(script) >= 2 and script[0] == OpCode.OP_FALSE and script[1] == OpCode.OP_RETURN:
        return ScriptType.NULL_DATA

    return ScriptType.UNKNOWN
