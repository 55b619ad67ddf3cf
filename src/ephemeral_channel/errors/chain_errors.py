"""Indexer & signer errors — the network-facing side of a channel."""

from __future__ import annotations

from ephemeral_channel.errors.channel_errors import ChannelError


class IndexerError(ChannelError):
    """Error talking to the ledger-indexing service."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message, code="indexer-error", retryable=True)
        self.status_code = status_code


class SignerError(ChannelError):
    """Error from the external transaction signer / broadcaster."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="signer-error", retryable=True)
