"""Tests for secret normalization — channel/secret.py."""

from __future__ import annotations

import pytest

from ephemeral_channel.channel.secret import SECRET_WORD_COUNT, generate_secret, normalize
from ephemeral_channel.errors import ValidationError, ValidationReason

_PHRASE = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)


class TestNormalize:
    def test_canonical_phrase(self) -> None:
        secret = normalize(_PHRASE)
        assert secret.phrase == _PHRASE
        assert len(secret.words) == SECRET_WORD_COUNT

    def test_whitespace_and_case_folded(self) -> None:
        messy = "  ABANDON abandon\tabandon abandon abandon abandon\n" + (
            "abandon  abandon abandon abandon abandon About  "
        )
        assert normalize(messy) == normalize(_PHRASE)

    def test_too_few_words(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            normalize("abandon " * 11)
        assert exc_info.value.reason == ValidationReason.WORD_COUNT_MISMATCH

    def test_too_many_words(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            normalize(_PHRASE + " about")
        assert exc_info.value.reason == ValidationReason.WORD_COUNT_MISMATCH

    def test_empty(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            normalize("   ")
        assert exc_info.value.reason == ValidationReason.WORD_COUNT_MISMATCH

    def test_bad_checksum(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            normalize("abandon " * 12)
        assert exc_info.value.reason == ValidationReason.CHECKSUM_INVALID
        assert exc_info.value.code == "validation-checksum-invalid"

    def test_unknown_word(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            normalize(_PHRASE.replace("about", "zzzzz"))
        assert exc_info.value.reason == ValidationReason.CHECKSUM_INVALID

    def test_repr_hides_words(self) -> None:
        assert "abandon" not in repr(normalize(_PHRASE))


class TestGenerateSecret:
    def test_valid_and_normalized(self) -> None:
        secret = generate_secret()
        assert len(secret.words) == SECRET_WORD_COUNT
        assert normalize(secret.phrase) == secret

    def test_random(self) -> None:
        assert generate_secret() != generate_secret()
