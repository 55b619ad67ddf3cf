"""Tests for transaction serialization — btc/transaction.py."""

from __future__ import annotations

from io import BytesIO

import pytest

from ephemeral_channel.btc.script import op_return_script
from ephemeral_channel.btc.transaction import (
    DEFAULT_SEQUENCE,
    Transaction,
    TxInput,
    TxOutput,
    encode_varint,
    read_varint,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _sample_tx() -> Transaction:
    tx = Transaction()
    tx.add_input(b"\x11" * 32, 1)
    tx.add_output(546, b"\x51\x20" + b"\x22" * 32)
    tx.add_output(0, op_return_script(b"hello"))
    return tx


class TestVarInt:
    @pytest.mark.parametrize(
        ("n", "size"),
        [(0, 1), (0xFC, 1), (0xFD, 3), (0xFFFF, 3), (0x10000, 5), (0x100000000, 9)],
    )
    def test_roundtrip(self, n: int, size: int) -> None:
        encoded = encode_varint(n)
        assert len(encoded) == size
        assert read_varint(BytesIO(encoded)) == n

    def test_empty_stream(self) -> None:
        with pytest.raises(ValueError, match="varint"):
            read_varint(BytesIO(b""))


class TestTransaction:
    def test_defaults(self) -> None:
        tx = Transaction()
        assert tx.version == 2
        assert tx.locktime == 0
        assert tx.inputs == []
        assert tx.outputs == []

    def test_add_input_defaults(self) -> None:
        inp = Transaction().add_input(b"\x00" * 32, 0)
        assert inp.sequence == DEFAULT_SEQUENCE
        assert inp.script_sig == b""
        assert inp.witness == []

    def test_legacy_roundtrip(self) -> None:
        tx = _sample_tx()
        parsed = Transaction.from_hex(tx.to_hex())
        assert parsed == tx
        assert parsed.txid() == tx.txid()

    def test_prev_tx_id_hex_is_reversed(self) -> None:
        inp = TxInput(prev_tx_id=bytes(range(32)), prev_tx_out_index=0)
        assert inp.prev_tx_id_hex == bytes(range(32))[::-1].hex()

    def test_txid_format(self) -> None:
        txid = _sample_tx().txid()
        assert len(txid) == 64
        int(txid, 16)

    def test_segwit_roundtrip(self) -> None:
        tx = _sample_tx()
        tx.inputs[0].witness = [b"\x30" * 64]
        raw = tx.serialize()
        assert raw[4:6] == b"\x00\x01"
        parsed = Transaction.from_bytes(raw)
        assert parsed.inputs[0].witness == [b"\x30" * 64]
        assert parsed.outputs == tx.outputs

    def test_txid_ignores_witness(self) -> None:
        tx = _sample_tx()
        bare = tx.txid()
        tx.inputs[0].witness = [b"\x01" * 64]
        assert tx.has_witness is True
        assert tx.txid() == bare

    def test_serialize_without_witness(self) -> None:
        tx = _sample_tx()
        tx.inputs[0].witness = [b"\x01" * 64]
        assert tx.serialize(include_witness=False) == _sample_tx().serialize()

    def test_truncated(self) -> None:
        raw = _sample_tx().serialize()
        with pytest.raises(ValueError, match="Unexpected end of stream"):
            Transaction.from_bytes(raw[:-6])

    def test_size(self) -> None:
        tx = _sample_tx()
        assert tx.size == len(tx.serialize())


class TestTxOutput:
    def test_roundtrip(self) -> None:
        out = TxOutput(value=12345, script_pubkey=b"\x6a\x01\x00")
        assert TxOutput.deserialize(BytesIO(out.serialize())) == out
