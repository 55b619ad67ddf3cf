#!/usr/bin/env python3
"""Ephemeral Channel Tool — create channels, derive mailboxes, read the inbox.

A standalone CLI utility for working with a channel on Bitcoin testnet.
Commands that need the shared secret read it from ``EPHEMERAL_SECRET`` or
prompt for it:

    # Generate a fresh channel secret and its mailbox addresses
    ephemeral-tool generate

    # Show the mailbox addresses of a channel
    ephemeral-tool addresses

    # Encrypt a message into an OP_RETURN payload
    ephemeral-tool encrypt <message>

    # Decrypt a payload copied from the ledger
    ephemeral-tool decrypt <payload>

    # Scan the mailboxes and print decrypted messages
    ephemeral-tool inbox

    # List UTXOs for a testnet address
    ephemeral-tool utxos <address>

    # Show the indexer's recommended fee rates
    ephemeral-tool fees

    # Broadcast a transaction signed by an external wallet
    ephemeral-tool broadcast <raw-hex>

Fund the sending address from a testnet faucet before broadcasting.
"""

from __future__ import annotations

import asyncio
import getpass
import logging
import os
import sys
from datetime import UTC, datetime

from ephemeral_channel.channel.models import Secret
from ephemeral_channel.config.settings import AppConfig
from ephemeral_channel.errors.channel_errors import ChannelError

_SECRET_ENV = "EPHEMERAL_SECRET"


def _read_secret() -> Secret:
    from ephemeral_channel.channel.secret import normalize

    raw = os.environ.get(_SECRET_ENV) or getpass.getpass("Secret phrase: ")
    return normalize(raw)


def _cmd_generate(config: AppConfig) -> None:
    """Generate a new channel: secret phrase → mailbox addresses."""
    from ephemeral_channel.channel.derivation import derive_addresses, mailbox_path
    from ephemeral_channel.channel.secret import generate_secret

    secret = generate_secret()
    mailboxes = derive_addresses(secret, config.channel.address_count)

    print("=" * 60)
    print("EPHEMERAL CHANNEL (TESTNET)")
    print("=" * 60)
    print()
    print(f"Secret phrase:  {secret.phrase}")
    print()
    print("Share the phrase with your correspondent over a trusted channel.")
    print()
    print("Mailbox addresses:")
    print("-" * 60)
    for mailbox in mailboxes:
        print(f"  [{mailbox.index}] {mailbox.address}  ({mailbox_path(mailbox.index)})")


def _cmd_addresses(config: AppConfig) -> None:
    """Show the mailbox addresses of an existing channel."""
    from ephemeral_channel.channel.derivation import derive_addresses

    mailboxes = derive_addresses(_read_secret(), config.channel.address_count)
    for mailbox in mailboxes:
        print(f"  [{mailbox.index}] {mailbox.address}")


def _cmd_encrypt(config: AppConfig, message: str) -> None:
    """Encrypt *message* and check that it fits the annotation field."""
    from ephemeral_channel.channel.builder import TransactionBuilder
    from ephemeral_channel.channel.cipher import encrypt
    from ephemeral_channel.channel.derivation import derive_encryption_key

    key = derive_encryption_key(
        _read_secret(),
        salt=config.channel.salt,
        iterations=config.channel.pbkdf2_iterations,
    )
    payload = encrypt(key, message)
    size = len(TransactionBuilder(config.fees).validate_payload(payload))
    print(payload)
    print(f"({size}/{config.fees.max_payload_bytes} bytes)", file=sys.stderr)


def _cmd_decrypt(config: AppConfig, payload: str) -> None:
    """Decrypt a payload under the channel key."""
    from ephemeral_channel.channel.cipher import decrypt
    from ephemeral_channel.channel.derivation import derive_encryption_key

    key = derive_encryption_key(
        _read_secret(),
        salt=config.channel.salt,
        iterations=config.channel.pbkdf2_iterations,
    )
    plaintext = decrypt(key, payload)
    if plaintext is None:
        print("Payload does not decrypt under this channel's key.")
        sys.exit(2)
    print(plaintext)


def _cmd_inbox(config: AppConfig) -> None:
    """Scan every mailbox and print the decrypted timeline."""
    from ephemeral_channel.channel.session import ChannelSession

    secret = _read_secret()

    async def _run() -> None:
        session = ChannelSession(config)
        try:
            await session.login(secret.phrase)
            messages = session.messages
            if not messages:
                print("No messages found.")
                return
            for message in messages:
                when = datetime.fromtimestamp(message.timestamp, tz=UTC)
                print(f"[{when:%Y-%m-%d %H:%M:%S}] {message.address}")
                print(f"    {message.content}")
        finally:
            await session.logout()

    asyncio.run(_run())


def _cmd_utxos(config: AppConfig, address: str) -> None:
    """List UTXOs for a testnet address via the indexer."""
    from ephemeral_channel.chain.mempool.client import MempoolClient

    async def _run() -> None:
        client = MempoolClient(config.indexer.url, timeout=config.indexer.timeout)
        await client.connect()
        try:
            utxos = await client.get_utxos(address, confirmed_only=False)
            if not utxos:
                print(f"No UTXOs found for {address}")
                return
            print(f"UTXOs for {address}:")
            print("-" * 80)
            total = 0
            for u in utxos:
                conf = "confirmed" if u.confirmed else "unconfirmed"
                print(f"  {u.outpoint}  {u.value:>12,} sats  ({conf})")
                total += u.value
            print("-" * 80)
            print(f"  Total: {total:>12,} sats  ({total / 1e8:.8f} tBTC)  [{len(utxos)} UTXOs]")
        finally:
            await client.close()

    asyncio.run(_run())


def _cmd_fees(config: AppConfig) -> None:
    """Print the indexer's recommended fee rates (sat/vB)."""
    from ephemeral_channel.chain.mempool.client import MempoolClient

    async def _run() -> None:
        client = MempoolClient(config.indexer.url, timeout=config.indexer.timeout)
        await client.connect()
        try:
            fees = await client.get_recommended_fees()
        finally:
            await client.close()
        print(f"  fastest:    {fees.fastest:g}")
        print(f"  half hour:  {fees.half_hour:g}")
        print(f"  hour:       {fees.hour:g}")
        print(f"  economy:    {fees.economy:g}")
        print(f"  minimum:    {fees.minimum:g}")

    asyncio.run(_run())


def _cmd_broadcast(config: AppConfig, raw_hex: str) -> None:
    """Broadcast a signed transaction and print its txid."""
    from ephemeral_channel.chain.mempool.client import MempoolClient

    async def _run() -> None:
        client = MempoolClient(config.indexer.url, timeout=config.indexer.timeout)
        await client.connect()
        try:
            txid = await client.broadcast(raw_hex)
        finally:
            await client.close()
        print(txid)

    asyncio.run(_run())


def main() -> None:
    """CLI entry point."""
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)

    config = AppConfig()
    logging.basicConfig(
        level=logging.DEBUG if config.debug else config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    cmd = sys.argv[1].lower()
    try:
        if cmd == "generate":
            _cmd_generate(config)
        elif cmd == "addresses":
            _cmd_addresses(config)
        elif cmd == "encrypt":
            if len(sys.argv) < 3:
                print("Usage: ephemeral-tool encrypt <message>")
                sys.exit(1)
            _cmd_encrypt(config, " ".join(sys.argv[2:]))
        elif cmd == "decrypt":
            if len(sys.argv) < 3:
                print("Usage: ephemeral-tool decrypt <payload>")
                sys.exit(1)
            _cmd_decrypt(config, sys.argv[2])
        elif cmd == "inbox":
            _cmd_inbox(config)
        elif cmd == "utxos":
            if len(sys.argv) < 3:
                print("Usage: ephemeral-tool utxos <address>")
                sys.exit(1)
            _cmd_utxos(config, sys.argv[2])
        elif cmd == "fees":
            _cmd_fees(config)
        elif cmd == "broadcast":
            if len(sys.argv) < 3:
                print("Usage: ephemeral-tool broadcast <raw-hex>")
                sys.exit(1)
            _cmd_broadcast(config, sys.argv[2])
        else:
            print(f"Unknown command: {cmd}")
            print(__doc__)
            sys.exit(1)
    except ChannelError as exc:
        print(f"Error ({exc.code}): {exc.message}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
