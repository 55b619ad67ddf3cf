"""Shared secret normalization and validation (BIP39 English word list)."""

from __future__ import annotations

from mnemonic import Mnemonic

from ephemeral_channel.channel.models import Secret
from ephemeral_channel.errors.definitions import ValidationError, ValidationReason

SECRET_WORD_COUNT = 12

_WORDLIST = Mnemonic("english")


def normalize(raw: str) -> Secret:
    """Canonicalize and validate a shared secret phrase.

    Trims, collapses internal whitespace, lowercases and splits into words.

    Raises:
        ValidationError: ``WORD_COUNT_MISMATCH`` unless exactly 12 words;
            ``CHECKSUM_INVALID`` if the BIP39 checksum fails.
    """
    words = tuple(raw.lower().split())
    if len(words) != SECRET_WORD_COUNT:
        raise ValidationError(
            ValidationReason.WORD_COUNT_MISMATCH,
            f"The secret phrase must contain exactly {SECRET_WORD_COUNT} words, got {len(words)}",
        )
    if not _WORDLIST.check(" ".join(words)):
        raise ValidationError(
            ValidationReason.CHECKSUM_INVALID,
            "The secret phrase is not a valid BIP39 mnemonic",
        )
    return Secret(words=words)


def generate_secret() -> Secret:
    """Create a fresh random 12-word secret (128 bits of entropy)."""
    return normalize(_WORDLIST.generate(strength=128))
