"""BIP174 partially signed transactions — the hand-off format for signers.

Only the fields an unsigned channel transaction needs are produced:
- ``PSBT_GLOBAL_UNSIGNED_TX`` with the witness-stripped transaction
- ``PSBT_IN_WITNESS_UTXO`` for every input
Parsing keeps every key/value pair so signed PSBTs round-trip intact.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from io import BytesIO

from ephemeral_channel.btc.transaction import (
    Transaction,
    TxOutput,
    encode_varint,
    read_exact,
    read_varint,
)

PSBT_MAGIC = b"psbt\xff"

PSBT_GLOBAL_UNSIGNED_TX = 0x00
PSBT_IN_WITNESS_UTXO = 0x01

KeyValueMap = dict[bytes, bytes]


@dataclass
class Psbt:
    """A parsed or freshly built PSBT.

    Attributes:
        tx: The unsigned transaction.
        inputs: One key/value map per input.
        outputs: One key/value map per output.
    """

    tx: Transaction
    inputs: list[KeyValueMap] = field(default_factory=list)
    outputs: list[KeyValueMap] = field(default_factory=list)

    @classmethod
    def from_transaction(cls, tx: Transaction, witness_utxos: list[TxOutput]) -> Psbt:
        """Wrap an unsigned transaction, attaching the output each input spends.

        Raises:
            ValueError: If inputs carry signatures or the UTXO list does not
                line up with the inputs.
        """
        if len(witness_utxos) != len(tx.inputs):
            msg = f"Expected {len(tx.inputs)} witness UTXOs, got {len(witness_utxos)}"
            raise ValueError(msg)
        if any(inp.script_sig or inp.witness for inp in tx.inputs):
            msg = "PSBT transactions must be unsigned"
            raise ValueError(msg)
        inputs = [{bytes([PSBT_IN_WITNESS_UTXO]): utxo.serialize()} for utxo in witness_utxos]
        outputs: list[KeyValueMap] = [{} for _ in tx.outputs]
        return cls(tx=tx, inputs=inputs, outputs=outputs)

    def witness_utxo(self, index: int) -> TxOutput | None:
        """Return the witness UTXO recorded for input *index*, if any."""
        raw = self.inputs[index].get(bytes([PSBT_IN_WITNESS_UTXO]))
        if raw is None:
            return None
        return TxOutput.deserialize(BytesIO(raw))

    # -- Serialization -----------------------------------------------------

    def serialize(self) -> bytes:
        """Serialize to BIP174 binary form."""
        result = PSBT_MAGIC
        result += _serialize_map(
            {bytes([PSBT_GLOBAL_UNSIGNED_TX]): self.tx.serialize(include_witness=False)}
        )
        for kv in self.inputs:
            result += _serialize_map(kv)
        for kv in self.outputs:
            result += _serialize_map(kv)
        return result

    def to_base64(self) -> str:
        """Serialize to the base64 text form wallets exchange."""
        return base64.b64encode(self.serialize()).decode("ascii")

    @classmethod
    def from_bytes(cls, data: bytes) -> Psbt:
        """Parse a BIP174 binary PSBT.

        Raises:
            ValueError: On bad magic, a missing unsigned transaction, or
                truncated data.
        """
        if not data.startswith(PSBT_MAGIC):
            msg = "Not a PSBT (bad magic)"
            raise ValueError(msg)
        stream = BytesIO(data[len(PSBT_MAGIC) :])
        global_map = _read_map(stream)
        raw_tx = global_map.get(bytes([PSBT_GLOBAL_UNSIGNED_TX]))
        if raw_tx is None:
            msg = "PSBT is missing its unsigned transaction"
            raise ValueError(msg)
        tx = Transaction.from_bytes(raw_tx)
        inputs = [_read_map(stream) for _ in tx.inputs]
        outputs = [_read_map(stream) for _ in tx.outputs]
        return cls(tx=tx, inputs=inputs, outputs=outputs)

    @classmethod
    def from_base64(cls, text: str) -> Psbt:
        """Parse a base64-encoded PSBT."""
        return cls.from_bytes(base64.b64decode(text.strip(), validate=True))


def _serialize_map(kv: KeyValueMap) -> bytes:
    result = b""
    for key, value in kv.items():
        result += encode_varint(len(key)) + key
        result += encode_varint(len(value)) + value
    return result + b"\x00"


def _read_map(stream: BytesIO) -> KeyValueMap:
    kv: KeyValueMap = {}
    while True:
        key_len = read_varint(stream)
        if key_len == 0:
            return kv
        key = read_exact(stream, key_len)
        kv[key] = read_exact(stream, read_varint(stream))
