"""Tests for BIP174 PSBT encoding — btc/psbt.py."""

from __future__ import annotations

import base64

import pytest

from ephemeral_channel.btc.psbt import PSBT_IN_WITNESS_UTXO, PSBT_MAGIC, Psbt
from ephemeral_channel.btc.script import op_return_script
from ephemeral_channel.btc.transaction import Transaction, TxOutput

_SPENT = TxOutput(value=10_000, script_pubkey=b"\x51\x20" + b"\x33" * 32)


def _unsigned_tx() -> Transaction:
    tx = Transaction()
    tx.add_input(b"\x44" * 32, 0)
    tx.add_output(546, b"\x51\x20" + b"\x55" * 32)
    tx.add_output(0, op_return_script(b"payload"))
    return tx


class TestPsbt:
    def test_magic_prefix(self) -> None:
        psbt = Psbt.from_transaction(_unsigned_tx(), [_SPENT])
        assert psbt.serialize().startswith(PSBT_MAGIC)
        assert base64.b64decode(psbt.to_base64()).startswith(b"psbt\xff")

    def test_base64_roundtrip(self) -> None:
        tx = _unsigned_tx()
        parsed = Psbt.from_base64(Psbt.from_transaction(tx, [_SPENT]).to_base64())
        assert parsed.tx == tx
        assert len(parsed.inputs) == 1
        assert len(parsed.outputs) == 2

    def test_witness_utxo(self) -> None:
        psbt = Psbt.from_transaction(_unsigned_tx(), [_SPENT])
        assert psbt.witness_utxo(0) == _SPENT
        assert bytes([PSBT_IN_WITNESS_UTXO]) in psbt.inputs[0]

    def test_witness_utxo_absent(self) -> None:
        psbt = Psbt(tx=_unsigned_tx(), inputs=[{}], outputs=[{}, {}])
        assert psbt.witness_utxo(0) is None

    def test_unknown_fields_preserved(self) -> None:
        psbt = Psbt.from_transaction(_unsigned_tx(), [_SPENT])
        psbt.inputs[0][b"\x13"] = b"\x99" * 64
        parsed = Psbt.from_bytes(psbt.serialize())
        assert parsed.inputs[0][b"\x13"] == b"\x99" * 64

    def test_utxo_count_mismatch(self) -> None:
        with pytest.raises(ValueError, match="witness UTXOs"):
            Psbt.from_transaction(_unsigned_tx(), [])

    def test_signed_input_rejected(self) -> None:
        tx = _unsigned_tx()
        tx.inputs[0].witness = [b"\x01" * 64]
        with pytest.raises(ValueError, match="unsigned"):
            Psbt.from_transaction(tx, [_SPENT])

    def test_bad_magic(self) -> None:
        with pytest.raises(ValueError, match="bad magic"):
            Psbt.from_bytes(b"nope" + b"\x00" * 10)

    def test_missing_unsigned_tx(self) -> None:
        with pytest.raises(ValueError, match="missing its unsigned transaction"):
            Psbt.from_bytes(PSBT_MAGIC + b"\x00")
