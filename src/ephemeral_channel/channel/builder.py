"""Unsigned transaction builder — carries a payload to a mailbox via OP_RETURN.

Output layout (fixed order):

1. dust payment to the mailbox (discovery anchor)
2. zero-value ``OP_RETURN <payload>``
3. change back to the sender, only when it clears the dust threshold

Inputs are taken greedily in the order supplied. The builder never signs or
broadcasts; its result is handed to an external signer as a PSBT.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ephemeral_channel.btc.address import address_to_script
from ephemeral_channel.btc.psbt import Psbt
from ephemeral_channel.btc.script import op_return_script
from ephemeral_channel.btc.transaction import Transaction, TxOutput
from ephemeral_channel.config.settings import FeeConfig
from ephemeral_channel.errors.definitions import (
    InsufficientFundsError,
    MissingScriptError,
    ValidationError,
    ValidationReason,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from ephemeral_channel.channel.models import SpendableOutput

logger = logging.getLogger(__name__)


@dataclass
class UnsignedTransaction:
    """A fully funded, unsigned channel transaction.

    Attributes:
        transaction: The unsigned transaction.
        selected: Outputs consumed as inputs, in input order.
        fee: Fee paid in satoshis.
        change: Change returned to the sender (0 when omitted).
        target_address: Mailbox receiving the dust output.
        sender_address: Address funding the transaction.
        payload: Annotation text carried in the OP_RETURN output.
    """

    transaction: Transaction
    selected: list[SpendableOutput]
    fee: int
    change: int
    target_address: str
    sender_address: str
    payload: str
    spent_outputs: list[TxOutput] = field(default_factory=list, repr=False)

    @property
    def total_input(self) -> int:
        return sum(utxo.value for utxo in self.selected)

    @property
    def has_change(self) -> bool:
        return len(self.transaction.outputs) == 3

    def to_hex(self) -> str:
        """Raw unsigned transaction hex."""
        return self.transaction.to_hex()

    def to_psbt(self) -> Psbt:
        """Wrap as a BIP174 PSBT with a witness UTXO per input."""
        return Psbt.from_transaction(self.transaction, self.spent_outputs)

    def to_psbt_base64(self) -> str:
        return self.to_psbt().to_base64()


class TransactionBuilder:
    """Builds OP_RETURN channel transactions under a fixed fee policy."""

    def __init__(self, fees: FeeConfig | None = None) -> None:
        self._fees = fees or FeeConfig()

    @property
    def fees(self) -> FeeConfig:
        return self._fees

    def estimate_fee(self, fee_rate: float, input_count: int) -> int:
        """Fee for a transaction spending *input_count* inputs.

        ``max(floor(rate * (base + n * per_input)), floor_value)``
        """
        vsize = self._fees.base_vsize + input_count * self._fees.input_vsize
        return max(math.floor(fee_rate * vsize), self._fees.fee_floor)

    def validate_payload(self, payload: str) -> bytes:
        """Check *payload* against the annotation-field ceiling.

        Returns:
            The UTF-8 payload bytes.

        Raises:
            ValidationError: ``EMPTY_MESSAGE`` or ``PAYLOAD_TOO_LARGE``.
        """
        if not payload.strip():
            raise ValidationError(
                ValidationReason.EMPTY_MESSAGE, "Cannot broadcast an empty payload"
            )
        data = payload.encode("utf-8")
        limit = self._fees.max_payload_bytes
        if len(data) > limit:
            raise ValidationError(
                ValidationReason.PAYLOAD_TOO_LARGE,
                f"Payload is {len(data)} bytes; the OP_RETURN limit is {limit} bytes",
            )
        return data

    def build_transaction(
        self,
        sender_address: str,
        mailbox_address: str,
        payload: str,
        utxos: Iterable[SpendableOutput],
        fee_rate: float,
    ) -> UnsignedTransaction:
        """Compose an unsigned transaction carrying *payload* to *mailbox_address*.

        Raises:
            ValidationError: Blank or oversized payload, bad fee rate or address.
            MissingScriptError: A selected output has no locking script.
            InsufficientFundsError: Inputs cannot cover dust plus fee.
        """
        data = self.validate_payload(payload)
        if not math.isfinite(fee_rate) or fee_rate <= 0:
            raise ValidationError(
                ValidationReason.INVALID_FEE_RATE, f"Fee rate must be positive, got {fee_rate}"
            )
        mailbox_script = _script_for(mailbox_address)
        sender_script = _script_for(sender_address)

        dust = self._fees.dust_threshold
        target = dust + self.estimate_fee(fee_rate, 1)

        tx = Transaction()
        selected: list[SpendableOutput] = []
        spent: list[TxOutput] = []
        total = 0
        for utxo in utxos:
            if total >= target:
                break
            if not utxo.confirmed:
                logger.debug("Skipping unconfirmed UTXO %s", utxo.outpoint)
                continue
            if not utxo.script_pubkey:
                raise MissingScriptError(utxo.txid, utxo.vout)
            try:
                script = bytes.fromhex(utxo.script_pubkey)
            except ValueError as exc:
                raise MissingScriptError(utxo.txid, utxo.vout) from exc
            tx.add_input(bytes.fromhex(utxo.txid)[::-1], utxo.vout)
            selected.append(utxo)
            spent.append(TxOutput(value=utxo.value, script_pubkey=script))
            total += utxo.value

        if total < target:
            msg = f"Insufficient funds: have {total} sats, need {target} sats"
            raise InsufficientFundsError(msg, available=total, required=target)

        fee = self.estimate_fee(fee_rate, len(selected))
        change = total - dust - fee
        if change < 0:
            msg = f"Insufficient balance to cover fee: have {total} sats, need {dust + fee} sats"
            raise InsufficientFundsError(msg, available=total, required=dust + fee)

        tx.add_output(dust, mailbox_script)
        tx.add_output(0, op_return_script(data))
        if change >= dust:
            tx.add_output(change, sender_script)
        else:
            # Sub-dust remainder goes to the miner.
            fee += change
            change = 0

        logger.debug(
            "Built transaction: %d inputs, fee %d sats, change %d sats",
            len(selected),
            fee,
            change,
        )
        return UnsignedTransaction(
            transaction=tx,
            selected=selected,
            fee=fee,
            change=change,
            target_address=mailbox_address,
            sender_address=sender_address,
            payload=payload,
            spent_outputs=spent,
        )


def _script_for(address: str) -> bytes:
    try:
        return address_to_script(address)
    except ValueError as exc:
        raise ValidationError(
            ValidationReason.INVALID_ADDRESS, f"Invalid address {address!r}: {exc}"
        ) from exc
