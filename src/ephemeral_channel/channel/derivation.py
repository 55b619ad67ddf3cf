"""Deterministic channel key derivation — mailbox addresses and the channel key.

Both parties run the same pure functions over the shared secret:

- Mailboxes: BIP39 seed → BIP32 ``m/86'/1'/0'/0/i`` → BIP86 taproot
  output key → bech32m testnet address.
- Channel key: PBKDF2-HMAC-SHA256 over the NFKD phrase with a fixed,
  protocol-wide salt.

One key covers the whole channel; compromising the secret reveals the full
history (no forward secrecy).
"""

from __future__ import annotations

import logging
import unicodedata

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from mnemonic import Mnemonic

from ephemeral_channel.btc.address import TESTNET_HRP, taproot_address
from ephemeral_channel.btc.keys import ExtendedKey, taproot_tweak_public_key, x_only
from ephemeral_channel.channel.models import EncryptionKey, MailboxAddress, Secret
from ephemeral_channel.errors.definitions import DerivationError

logger = logging.getLogger(__name__)

# BIP86 receiving chain on testnet (coin type 1); the last step is the mailbox index.
MAILBOX_CHAIN_PATH = "m/86'/1'/0'/0"

DEFAULT_SALT = "ephemeral::pbkdf2::v1"
DEFAULT_ITERATIONS = 150_000
KEY_LENGTH = 32


def mailbox_path(index: int) -> str:
    """Full derivation path of mailbox *index*."""
    return f"{MAILBOX_CHAIN_PATH}/{index}"


def derive_addresses(secret: Secret, count: int) -> list[MailboxAddress]:
    """Derive the first *count* mailbox addresses of a channel.

    Raises:
        DerivationError: If ``count <= 0`` or any derived key is degenerate.
    """
    if count <= 0:
        msg = f"Address count must be at least 1, got {count}"
        raise DerivationError(msg)

    seed = Mnemonic.to_seed(secret.phrase, passphrase="")
    try:
        chain = ExtendedKey.from_seed(seed).derive_path(MAILBOX_CHAIN_PATH)
    except ValueError as exc:
        msg = f"Failed to derive mailbox chain: {exc}"
        raise DerivationError(msg) from exc

    mailboxes: list[MailboxAddress] = []
    for index in range(count):
        try:
            child = chain.derive_child(index)
            output_key = taproot_tweak_public_key(x_only(child.public_key()))
            address = taproot_address(output_key, hrp=TESTNET_HRP)
        except ValueError as exc:
            msg = f"Failed to derive mailbox {index}: {exc}"
            raise DerivationError(msg) from exc
        mailboxes.append(MailboxAddress(index=index, address=address))

    logger.debug("Derived %d mailbox addresses", count)
    return mailboxes


def derive_encryption_key(
    secret: Secret,
    *,
    salt: str = DEFAULT_SALT,
    iterations: int = DEFAULT_ITERATIONS,
) -> EncryptionKey:
    """Derive the channel's 256-bit symmetric key from the secret alone."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt.encode("utf-8"),
        iterations=iterations,
    )
    material = unicodedata.normalize("NFKD", secret.phrase).encode("utf-8")
    return EncryptionKey(key=kdf.derive(material))
