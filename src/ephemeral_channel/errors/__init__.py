"""Channel error taxonomy."""

from ephemeral_channel.errors.chain_errors import IndexerError, SignerError
from ephemeral_channel.errors.channel_errors import ChannelError
from ephemeral_channel.errors.definitions import (
    DerivationError,
    InsufficientFundsError,
    MissingScriptError,
    SessionError,
    ValidationError,
    ValidationReason,
)

__all__ = [
    "ChannelError",
    "DerivationError",
    "IndexerError",
    "InsufficientFundsError",
    "MissingScriptError",
    "SessionError",
    "SignerError",
    "ValidationError",
    "ValidationReason",
]
