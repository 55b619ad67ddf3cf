"""Transaction serialisation — legacy and segwit raw hex.

Builds the unsigned OP_RETURN transactions handed to signers and parses the
raw hex returned by the indexer, including BIP144 witness data (marker,
flag and per-input witness stacks).
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from io import BytesIO

from ephemeral_channel.utils.crypto import sha256d

# ---------------------------------------------------------------------------
# VarInt encoding / decoding
# ---------------------------------------------------------------------------


def encode_varint(n: int) -> bytes:
    """Encode an integer as a Bitcoin-style variable-length integer."""
    if n < 0xFD:
        return struct.pack("<B", n)
    if n <= 0xFFFF:
        return b"\xfd" + struct.pack("<H", n)
    if n <= 0xFFFFFFFF:
        return b"\xfe" + struct.pack("<I", n)
    return b"\xff" + struct.pack("<Q", n)


def read_varint(stream: BytesIO) -> int:
    """Read a Bitcoin-style variable-length integer from a byte stream."""
    first = stream.read(1)
    if len(first) == 0:
        msg = "Unexpected end of stream reading varint"
        raise ValueError(msg)
    n = first[0]
    if n < 0xFD:
        return n
    if n == 0xFD:
        return struct.unpack("<H", read_exact(stream, 2))[0]
    if n == 0xFE:
        return struct.unpack("<I", read_exact(stream, 4))[0]
    return struct.unpack("<Q", read_exact(stream, 8))[0]


def read_exact(stream: BytesIO, size: int) -> bytes:
    """Read exactly *size* bytes or raise ValueError on truncation."""
    data = stream.read(size)
    if len(data) != size:
        msg = f"Unexpected end of stream (wanted {size} bytes, got {len(data)})"
        raise ValueError(msg)
    return data


# Default sequence: 0xFFFFFFFF (final, no RBF)
DEFAULT_SEQUENCE = 0xFFFFFFFF

# Segwit serialization marker and flag (BIP144)
_SEGWIT_MARKER = 0x00
_SEGWIT_FLAG = 0x01


# ---------------------------------------------------------------------------
# TxInput
# ---------------------------------------------------------------------------


@dataclass
class TxInput:
    """A transaction input.

    Attributes:
        prev_tx_id: 32-byte hash of the previous transaction (internal byte order).
        prev_tx_out_index: Index of the output in the previous transaction.
        script_sig: Unlocking script (scriptSig).
        sequence: Sequence number (default 0xFFFFFFFF).
        witness: Witness stack items (segwit inputs only).
    """

    prev_tx_id: bytes
    prev_tx_out_index: int
    script_sig: bytes = b""
    sequence: int = DEFAULT_SEQUENCE
    witness: list[bytes] = field(default_factory=list)

    @property
    def prev_tx_id_hex(self) -> str:
        """Previous transaction ID in display (reversed) hex."""
        return self.prev_tx_id[::-1].hex()

    def serialize(self) -> bytes:
        """Serialize the input (without witness) to bytes."""
        result = self.prev_tx_id
        result += struct.pack("<I", self.prev_tx_out_index)
        result += encode_varint(len(self.script_sig))
        result += self.script_sig
        result += struct.pack("<I", self.sequence)
        return result

    @classmethod
    def deserialize(cls, stream: BytesIO) -> TxInput:
        """Deserialize a transaction input from a byte stream."""
        prev_tx_id = read_exact(stream, 32)
        prev_tx_out_index = struct.unpack("<I", read_exact(stream, 4))[0]
        script_len = read_varint(stream)
        script_sig = read_exact(stream, script_len)
        sequence = struct.unpack("<I", read_exact(stream, 4))[0]
        return cls(
            prev_tx_id=prev_tx_id,
            prev_tx_out_index=prev_tx_out_index,
            script_sig=script_sig,
            sequence=sequence,
        )


# ---------------------------------------------------------------------------
# TxOutput
# ---------------------------------------------------------------------------


@dataclass
class TxOutput:
    """A transaction output.

    Attributes:
        value: Output value in satoshis.
        script_pubkey: Locking script (scriptPubKey).
    """

    value: int
    script_pubkey: bytes

    def serialize(self) -> bytes:
        """Serialize the output to bytes."""
        result = struct.pack("<q", self.value)
        result += encode_varint(len(self.script_pubkey))
        result += self.script_pubkey
        return result

    @classmethod
    def deserialize(cls, stream: BytesIO) -> TxOutput:
        """Deserialize a transaction output from a byte stream."""
        value = struct.unpack("<q", read_exact(stream, 8))[0]
        script_len = read_varint(stream)
        script_pubkey = read_exact(stream, script_len)
        return cls(value=value, script_pubkey=script_pubkey)


# ---------------------------------------------------------------------------
# Transaction
# ---------------------------------------------------------------------------


@dataclass
class Transaction:
    """A Bitcoin transaction.

    Attributes:
        version: Transaction version (default 2).
        inputs: List of transaction inputs.
        outputs: List of transaction outputs.
        locktime: Transaction locktime (default 0).
    """

    version: int = 2
    inputs: list[TxInput] = field(default_factory=list)
    outputs: list[TxOutput] = field(default_factory=list)
    locktime: int = 0

    @property
    def has_witness(self) -> bool:
        """True if any input carries witness data."""
        return any(inp.witness for inp in self.inputs)

    def serialize(self, *, include_witness: bool = True) -> bytes:
        """Serialize the transaction to raw bytes.

        Witness data is emitted in BIP144 form only when present and
        *include_witness* is set.
        """
        segwit = include_witness and self.has_witness
        result = struct.pack("<i", self.version)
        if segwit:
            result += bytes([_SEGWIT_MARKER, _SEGWIT_FLAG])
        result += encode_varint(len(self.inputs))
        for inp in self.inputs:
            result += inp.serialize()
        result += encode_varint(len(self.outputs))
        for out in self.outputs:
            result += out.serialize()
        if segwit:
            for inp in self.inputs:
                result += encode_varint(len(inp.witness))
                for item in inp.witness:
                    result += encode_varint(len(item)) + item
        result += struct.pack("<I", self.locktime)
        return result

    def to_hex(self) -> str:
        """Serialize to hex string."""
        return self.serialize().hex()

    @classmethod
    def deserialize(cls, stream: BytesIO) -> Transaction:
        """Deserialize a legacy or segwit transaction from a byte stream."""
        version = struct.unpack("<i", read_exact(stream, 4))[0]
        n_inputs = read_varint(stream)
        segwit = False
        if n_inputs == _SEGWIT_MARKER:
            flag = read_exact(stream, 1)[0]
            if flag != _SEGWIT_FLAG:
                msg = f"Unsupported segwit flag: {flag:#x}"
                raise ValueError(msg)
            segwit = True
            n_inputs = read_varint(stream)
        inputs = [TxInput.deserialize(stream) for _ in range(n_inputs)]
        n_outputs = read_varint(stream)
        outputs = [TxOutput.deserialize(stream) for _ in range(n_outputs)]
        if segwit:
            for inp in inputs:
                n_items = read_varint(stream)
                inp.witness = [read_exact(stream, read_varint(stream)) for _ in range(n_items)]
        locktime = struct.unpack("<I", read_exact(stream, 4))[0]
        return cls(version=version, inputs=inputs, outputs=outputs, locktime=locktime)

    @classmethod
    def from_hex(cls, hex_str: str) -> Transaction:
        """Deserialize a transaction from a hex string."""
        return cls.from_bytes(bytes.fromhex(hex_str.strip()))

    @classmethod
    def from_bytes(cls, data: bytes) -> Transaction:
        """Deserialize a transaction from raw bytes."""
        return cls.deserialize(BytesIO(data))

    def txid(self) -> str:
        """Compute the transaction ID (double-SHA256 of the witness-stripped form).

        Returns:
            The 64-character hex txid string (display byte order).
        """
        return sha256d(self.serialize(include_witness=False))[::-1].hex()

    @property
    def size(self) -> int:
        """Transaction size in bytes."""
        return len(self.serialize())

    def add_input(
        self,
        prev_tx_id: bytes,
        prev_tx_out_index: int,
        script_sig: bytes = b"",
        sequence: int = DEFAULT_SEQUENCE,
    ) -> TxInput:
        """Add an input to the transaction.

        Returns:
            The newly created :class:`TxInput`.
        """
        inp = TxInput(
            prev_tx_id=prev_tx_id,
            prev_tx_out_index=prev_tx_out_index,
            script_sig=script_sig,
            sequence=sequence,
        )
        self.inputs.append(inp)
        return inp

    def add_output(self, value: int, script_pubkey: bytes) -> TxOutput:
        """Add an output to the transaction.

        Returns:
            The newly created :class:`TxOutput`.
        """
        out = TxOutput(value=value, script_pubkey=script_pubkey)
        self.outputs.append(out)
        return out
