"""AES-256-GCM message envelopes.

Envelope layout, base64-encoded for the annotation field::

    nonce (12 bytes) || ciphertext || tag (16 bytes)
"""

from __future__ import annotations

import base64
import binascii
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ephemeral_channel.channel.models import EncryptionKey
from ephemeral_channel.errors.definitions import ValidationError, ValidationReason

logger = logging.getLogger(__name__)

NONCE_SIZE = 12
TAG_SIZE = 16


def encrypt(key: EncryptionKey, plaintext: str) -> str:
    """Encrypt *plaintext* under the channel key with a fresh random nonce.

    Raises:
        ValidationError: ``EMPTY_MESSAGE`` if the text is blank.
    """
    if not plaintext.strip():
        raise ValidationError(ValidationReason.EMPTY_MESSAGE, "Message to encrypt cannot be empty")
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(key.key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(nonce + ciphertext).decode("ascii")


def decrypt(key: EncryptionKey, payload: str) -> str | None:
    """Decrypt an envelope, or return None if it is not ours.

    Wrong keys, foreign or corrupt data and tag mismatches all yield None.
    """
    try:
        raw = base64.b64decode(payload.strip(), validate=True)
    except (binascii.Error, ValueError):
        logger.debug("Payload is not base64; ignoring")
        return None
    if len(raw) < NONCE_SIZE + TAG_SIZE:
        logger.debug("Payload too short for an envelope; ignoring")
        return None

    nonce, ciphertext = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
    try:
        plain = AESGCM(key.key).decrypt(nonce, ciphertext, None)
        return plain.decode("utf-8")
    except (InvalidTag, UnicodeDecodeError):
        logger.debug("Payload failed authentication; not addressed to this channel")
        return None
