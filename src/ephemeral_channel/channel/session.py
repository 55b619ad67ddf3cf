"""ChannelSession — one logged-in view of a shared-secret channel.

Owns the derived mailboxes and channel key, the decrypted timeline, the
queue of outbound instructions waiting for a signer, and the scanner's
seen-set. Nothing is persisted; logging out forgets everything.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import TYPE_CHECKING

import httpx

from ephemeral_channel.chain.mempool.client import MempoolClient
from ephemeral_channel.channel.builder import TransactionBuilder, UnsignedTransaction
from ephemeral_channel.channel.cipher import decrypt, encrypt
from ephemeral_channel.channel.derivation import derive_addresses, derive_encryption_key
from ephemeral_channel.channel.models import (
    ChannelMessage,
    EncryptionKey,
    InboxEntry,
    InscriptionResult,
    MailboxAddress,
    MessageDirection,
    OutboundInstruction,
    Secret,
)
from ephemeral_channel.channel.scanner import ChannelScanner, IndexerSource, LocalInboxSource
from ephemeral_channel.channel.secret import normalize
from ephemeral_channel.config.settings import AppConfig
from ephemeral_channel.errors.chain_errors import IndexerError, SignerError
from ephemeral_channel.errors.channel_errors import ChannelError
from ephemeral_channel.errors.definitions import SessionError, ValidationError, ValidationReason
from ephemeral_channel.metrics.collector import ChannelMetrics

if TYPE_CHECKING:
    from ephemeral_channel.channel.signer import TransactionSigner

logger = logging.getLogger(__name__)

_ERR_NOT_LOGGED_IN = "Session not logged in. Call login() first."


class ChannelSession:
    """Stateful client of a single channel.

    Usage::

        session = ChannelSession(AppConfig())
        await session.login("abandon abandon ... about")
        instruction = await session.send_message("hello")
        result = await session.inscribe(instruction.id, "tb1q...", signer)
        new = await session.check_for_messages()
        await session.logout()
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        client: MempoolClient | None = None,
        metrics: ChannelMetrics | None = None,
        local_inbox: LocalInboxSource | None = None,
    ) -> None:
        """Initialize a logged-out session.

        Args:
            config: Application configuration; defaults are used when omitted.
            client: Indexer client. One is created from ``config.indexer``
                (and closed on logout) when omitted.
            metrics: Metrics sink; a private registry honouring
                ``config.metrics.enabled`` is used when omitted.
            local_inbox: Shared direct-delivery queue.
        """
        self._config = config or AppConfig()
        self._owns_client = client is None
        self._client = client or MempoolClient(
            self._config.indexer.url, timeout=self._config.indexer.timeout
        )
        self._metrics = metrics or ChannelMetrics(enabled=self._config.metrics.enabled)
        self._local = local_inbox or LocalInboxSource()
        self._builder = TransactionBuilder(self._config.fees)
        self._scanner = ChannelScanner(
            IndexerSource(
                self._client,
                max_concurrency=self._config.indexer.max_concurrency,
                metrics=self._metrics,
            ),
            fallbacks=[self._local],
            metrics=self._metrics,
        )

        self._secret: Secret | None = None
        self._key: EncryptionKey | None = None
        self._addresses: list[MailboxAddress] = []
        self._messages: dict[str, ChannelMessage] = {}
        self._pending: dict[str, OutboundInstruction] = {}
        self._results: dict[str, InscriptionResult] = {}
        self._outbound_count = 0
        self._send_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_logged_in(self) -> bool:
        return self._secret is not None

    @property
    def addresses(self) -> list[MailboxAddress]:
        return list(self._addresses)

    @property
    def messages(self) -> list[ChannelMessage]:
        """The decrypted timeline, oldest first."""
        return sorted(self._messages.values(), key=lambda message: message.timestamp)

    @property
    def pending_outbound(self) -> list[OutboundInstruction]:
        return list(self._pending.values())

    @property
    def inscription_results(self) -> dict[str, InscriptionResult]:
        return dict(self._results)

    @property
    def scanner(self) -> ChannelScanner:
        return self._scanner

    @property
    def metrics(self) -> ChannelMetrics:
        return self._metrics

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def login(self, raw_secret: str, *, scan: bool = True) -> list[MailboxAddress]:
        """Open the channel named by *raw_secret*.

        Derives the mailboxes and channel key off the event loop, then (unless
        *scan* is False) runs an initial inbox scan.

        Raises:
            SessionError: If the session is already logged in.
            ValidationError: If the phrase is malformed.
            DerivationError: If key derivation fails.
        """
        if self.is_logged_in:
            msg = "Session already logged in. Call logout() first."
            raise SessionError(msg)

        secret = normalize(raw_secret)
        channel = self._config.channel
        addresses = await asyncio.to_thread(derive_addresses, secret, channel.address_count)
        key = await asyncio.to_thread(
            derive_encryption_key,
            secret,
            salt=channel.salt,
            iterations=channel.pbkdf2_iterations,
        )

        if not self._client.is_connected:
            await self._client.connect()

        self._secret = secret
        self._key = key
        self._addresses = addresses
        logger.info("Channel session opened with %d mailboxes", len(addresses))

        if scan:
            await self.check_for_messages()
        return self.addresses

    async def logout(self) -> None:
        """Forget the secret, key, timeline and seen-set."""
        self._secret = None
        self._key = None
        self._addresses = []
        self._messages.clear()
        self._pending.clear()
        self._results.clear()
        self._outbound_count = 0
        self._scanner.reset()
        if self._owns_client:
            await self._client.close()
        logger.info("Channel session closed")

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send_message(self, text: str) -> OutboundInstruction:
        """Encrypt *text* and queue it for the next mailbox in rotation.

        The i-th message of the session goes to mailbox ``i mod m``. Nothing
        is recorded if the message is blank or its envelope would not fit
        the annotation field.

        Raises:
            ValidationError: ``EMPTY_MESSAGE`` or ``PAYLOAD_TOO_LARGE``.
        """
        _, key = self._require_login()
        message = text.strip()
        if not message:
            raise ValidationError(ValidationReason.EMPTY_MESSAGE, "Message cannot be empty")

        async with self._send_lock:
            envelope = encrypt(key, message)
            self._builder.validate_payload(envelope)

            mailbox = self._addresses[self._outbound_count % len(self._addresses)]
            now = time.time()
            instruction = OutboundInstruction(
                id=uuid.uuid4().hex,
                address=mailbox.address,
                payload=envelope,
                created_at=now,
                message=message,
            )
            self._outbound_count += 1
            self._pending[instruction.id] = instruction
            self._messages[instruction.id] = ChannelMessage(
                id=instruction.id,
                direction=MessageDirection.OUTBOUND,
                content=message,
                encrypted=envelope,
                address=mailbox.address,
                timestamp=now,
            )

        logger.info("Queued outbound message for mailbox %d", mailbox.index)
        return instruction

    def acknowledge_outbound(self, instruction_id: str) -> None:
        """Drop an instruction from the pending queue (no-op if unknown)."""
        self._pending.pop(instruction_id, None)

    async def prepare_transaction(
        self,
        instruction_id: str,
        sender_address: str,
        fee_rate: float | None = None,
    ) -> UnsignedTransaction:
        """Fund a pending instruction from *sender_address*'s confirmed outputs.

        Without an explicit *fee_rate* the configured rate is used, or the
        indexer's half-hour estimate when ``fees.use_recommended`` is set.

        Raises:
            SessionError: Unknown instruction.
            IndexerError: The sender's outputs could not be fetched.
            ValidationError / InsufficientFundsError / MissingScriptError:
                From the builder.
        """
        self._require_login()
        instruction = self._pending.get(instruction_id)
        if instruction is None:
            msg = f"No pending outbound instruction {instruction_id}"
            raise SessionError(msg)

        rate = await self._resolve_fee_rate(fee_rate)
        utxos = await self._client.get_utxos(sender_address)
        with self._metrics.track_build_transaction():
            unsigned = self._builder.build_transaction(
                sender_address, instruction.address, instruction.payload, utxos, rate
            )
        self._metrics.record_transaction_built()
        return unsigned

    async def inscribe(
        self,
        instruction_id: str,
        sender_address: str,
        signer: TransactionSigner,
        fee_rate: float | None = None,
    ) -> InscriptionResult:
        """Build, sign and broadcast a pending instruction.

        The instruction is acknowledged only after the broadcast succeeds;
        on any failure it stays pending and can be retried.

        Raises:
            SignerError: The signer failed to sign or broadcast.
            IndexerError: A network timeout while talking to the signer.
        """
        unsigned = await self.prepare_transaction(instruction_id, sender_address, fee_rate)
        try:
            signed = await signer.sign_transaction(unsigned.to_psbt_base64())
            txid = await signer.broadcast_transaction(signed)
        except ChannelError:
            raise
        except httpx.TimeoutException as exc:
            msg = f"Timed out broadcasting instruction {instruction_id}"
            raise IndexerError(msg) from exc
        except Exception as exc:
            msg = f"Signer failed for instruction {instruction_id}: {exc}"
            raise SignerError(msg) from exc

        result = InscriptionResult(
            instruction_id=instruction_id,
            txid=txid,
            address=unsigned.target_address,
            fee=unsigned.fee,
            change=unsigned.change,
        )
        self.acknowledge_outbound(instruction_id)
        self._results[instruction_id] = result
        logger.info(
            "Broadcast instruction %s as tx %s (fee %d sats)", instruction_id, txid, result.fee
        )
        return result

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def check_for_messages(self) -> list[ChannelMessage]:
        """Scan the mailboxes and merge newly decrypted messages.

        Entries that do not decrypt are dropped silently. Echoes of this
        session's own outbound envelopes are not duplicated as inbound.

        Returns:
            The new messages, oldest first.
        """
        secret, key = self._require_login()
        entries = await self._scanner.scan(secret, self._addresses)

        own = {
            message.encrypted
            for message in self._messages.values()
            if message.direction == MessageDirection.OUTBOUND
        }
        fresh: list[ChannelMessage] = []
        for entry in entries:
            if entry.payload in own:
                continue
            content = decrypt(key, entry.payload)
            if content is None:
                self._metrics.record_undecryptable()
                continue
            fresh.append(_inbound_message(entry, content))

        if fresh:
            self._metrics.record_decrypted(len(fresh))
            self._messages.update((message.id, message) for message in fresh)
            logger.info("Received %d new messages", len(fresh))
        return fresh

    async def import_inbound(
        self, payload: str, address: str | None = None
    ) -> ChannelMessage | None:
        """Decrypt a payload obtained out of band and add it to the timeline.

        Returns:
            The new message, or None if the payload is not for this channel.

        Raises:
            ValidationError: ``EMPTY_MESSAGE`` if the payload is blank.
        """
        _, key = self._require_login()
        envelope = payload.strip()
        if not envelope:
            raise ValidationError(
                ValidationReason.EMPTY_MESSAGE, "Inbound payload cannot be empty"
            )

        content = decrypt(key, envelope)
        if content is None:
            logger.info("Imported payload did not decrypt under the channel key")
            return None

        message = ChannelMessage(
            id=uuid.uuid4().hex,
            direction=MessageDirection.INBOUND,
            content=content,
            encrypted=envelope,
            address=(address or "").strip() or self._addresses[0].address,
            timestamp=time.time(),
        )
        self._messages[message.id] = message
        self._metrics.record_decrypted()
        return message

    def deliver_directly(
        self,
        payload: str,
        address: str,
        sender_address: str | None = None,
    ) -> InboxEntry:
        """Queue a payload in the local inbox, bypassing the ledger.

        It is picked up by a later :meth:`check_for_messages` of any session
        on the same channel sharing this local inbox, when the indexer has
        nothing new.
        """
        secret, _ = self._require_login()
        return self._local.enqueue(
            secret, address=address, payload=payload, sender_address=sender_address
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _require_login(self) -> tuple[Secret, EncryptionKey]:
        if self._secret is None or self._key is None:
            raise SessionError(_ERR_NOT_LOGGED_IN)
        return self._secret, self._key

    async def _resolve_fee_rate(self, fee_rate: float | None) -> float:
        """Explicit rate, else the indexer's half-hour estimate if enabled, else config."""
        if fee_rate is not None:
            return fee_rate
        fees = self._config.fees
        if fees.use_recommended:
            try:
                recommended = await self._client.get_recommended_fees()
            except IndexerError as exc:
                logger.warning(
                    "Recommended fees unavailable, using %s sat/vB: %s", fees.fee_rate, exc
                )
            else:
                if recommended.half_hour > 0:
                    return recommended.half_hour
        return fees.fee_rate


def _inbound_message(entry: InboxEntry, content: str) -> ChannelMessage:
    return ChannelMessage(
        id=entry.txid,
        direction=MessageDirection.INBOUND,
        content=content,
        encrypted=entry.payload,
        address=entry.address,
        timestamp=entry.timestamp,
    )
