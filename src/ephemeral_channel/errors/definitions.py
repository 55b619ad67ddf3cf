"""Protocol-level errors raised by the channel core."""

from __future__ import annotations

import enum

from ephemeral_channel.errors.channel_errors import ChannelError

# -- Validation ------------------------------------------------------------


class ValidationReason(enum.StrEnum):
    """Why a local input was rejected."""

    WORD_COUNT_MISMATCH = "word-count-mismatch"
    CHECKSUM_INVALID = "checksum-invalid"
    EMPTY_MESSAGE = "empty-message"
    PAYLOAD_TOO_LARGE = "payload-too-large"
    INVALID_FEE_RATE = "invalid-fee-rate"
    INVALID_ADDRESS = "invalid-address"


class ValidationError(ChannelError):
    """Malformed local input. Never retryable."""

    def __init__(self, reason: ValidationReason, message: str) -> None:
        super().__init__(message, code=f"validation-{reason.value}")
        self.reason = reason


# -- Derivation ------------------------------------------------------------


class DerivationError(ChannelError):
    """Degenerate or unusable key material. Fatal for the session."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="derivation-error")


# -- Transaction -----------------------------------------------------------


class InsufficientFundsError(ChannelError):
    """Selected outputs cannot cover the dust output plus fee."""

    def __init__(self, message: str, *, available: int = 0, required: int = 0) -> None:
        super().__init__(message, code="insufficient-funds", retryable=True)
        self.available = available
        self.required = required


class MissingScriptError(ChannelError):
    """A selected output carries no locking script."""

    def __init__(self, txid: str, vout: int) -> None:
        super().__init__(
            f"UTXO {txid}:{vout} is missing its locking script",
            code="missing-script",
            retryable=True,
        )
        self.txid = txid
        self.vout = vout


# -- Session ---------------------------------------------------------------


class SessionError(ChannelError):
    """Operation not allowed in the current session state."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="session-error")
