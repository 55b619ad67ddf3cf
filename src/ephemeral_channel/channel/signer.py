"""External signer interface.

The channel never holds a spending key. A wallet (browser extension,
hardware device, RPC node) implements :class:`TransactionSigner` and signs
the PSBTs the builder produces.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class TransactionSigner(Protocol):
    """Signs and broadcasts channel transactions on behalf of the sender."""

    async def sign_transaction(self, psbt_base64: str) -> str:
        """Sign every input of *psbt_base64* and return the signed transaction.

        The result is whatever :meth:`broadcast_transaction` accepts: a
        finalized PSBT or raw transaction hex.
        """
        ...

    async def broadcast_transaction(self, signed: str) -> str:
        """Broadcast a signed transaction and return its txid."""
        ...
