"""ChannelError — base exception class for all channel errors."""

from __future__ import annotations


class ChannelError(Exception):
    """Base error for all channel operations.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code string.
        retryable: True if the same call may succeed once the caller
            remedies the cause (funding, network).
    """

    def __init__(
        self,
        message: str,
        *,
        code: str = "channel-error",
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.retryable = retryable
