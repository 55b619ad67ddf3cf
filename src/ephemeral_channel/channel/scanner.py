"""Inbox scanning — find candidate payloads at the mailbox addresses.

A :class:`ChannelScanner` asks a primary :class:`EntrySource` (the ledger
indexer) for entries at every mailbox. When the primary has nothing, the
fallback sources (e.g. payloads delivered directly, off-ledger) are asked
instead. New entries are deduplicated against the session's seen-set and
returned oldest first; callers decrypt them and drop the ones that fail.
"""

from __future__ import annotations

import asyncio
import logging
import time
import unicodedata
import uuid
from typing import TYPE_CHECKING, Any, Protocol

from ephemeral_channel.btc.script import extract_op_return_data
from ephemeral_channel.btc.transaction import Transaction
from ephemeral_channel.channel.models import InboxEntry, MailboxAddress, Secret
from ephemeral_channel.errors.chain_errors import IndexerError
from ephemeral_channel.metrics.collector import ChannelMetrics
from ephemeral_channel.utils.crypto import sha256

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from ephemeral_channel.chain.mempool.client import MempoolClient

logger = logging.getLogger(__name__)

# Indexer metadata fields that may carry a first-seen time, in priority order.
_METADATA_TIME_FIELDS = ("received", "firstSeen", "first_seen", "time")


class EntrySource(Protocol):
    """Anything that yields candidate inbox entries for a set of mailboxes."""

    name: str

    async def fetch_entries(self, secret: Secret, mailboxes: Sequence[str]) -> list[InboxEntry]:
        ...


# ---------------------------------------------------------------------------
# Annotation extraction
# ---------------------------------------------------------------------------


def extract_annotation(raw_tx_hex: str) -> str | None:
    """Return the first non-empty UTF-8 OP_RETURN text in a raw transaction."""
    try:
        tx = Transaction.from_hex(raw_tx_hex)
    except ValueError:
        logger.debug("Could not decode raw transaction; ignoring")
        return None
    for output in tx.outputs:
        data = extract_op_return_data(output.script_pubkey)
        if not data:
            continue
        try:
            text = data.decode("utf-8").strip()
        except UnicodeDecodeError:
            continue
        if text:
            return text
    return None


def _positive_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return float(value) if value > 0 else None


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _pays_address(tx: Any, address: str) -> bool:
    """True if *tx* is a well-formed record with an output paying *address*."""
    if not isinstance(tx, dict):
        return False
    outputs = tx.get("vout")
    if not isinstance(outputs, list):
        return False
    return any(_as_dict(out).get("scriptpubkey_address") == address for out in outputs)


def _sender_address(inputs: Any) -> str | None:
    if not isinstance(inputs, list) or not inputs:
        return None
    sender = _as_dict(_as_dict(inputs[0]).get("prevout")).get("scriptpubkey_address")
    return sender if isinstance(sender, str) else None


# ---------------------------------------------------------------------------
# Indexer source
# ---------------------------------------------------------------------------


class IndexerSource:
    """Entries discovered on the ledger through an Esplora indexer.

    Mempool (unconfirmed) transactions are included; discovery favours
    latency, spending favours finality.
    """

    name = "indexer"

    def __init__(
        self,
        client: MempoolClient,
        *,
        max_concurrency: int = 4,
        metrics: ChannelMetrics | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._max_concurrency = max(1, max_concurrency)
        self._metrics = metrics
        self._clock = clock

    async def fetch_entries(self, secret: Secret, mailboxes: Sequence[str]) -> list[InboxEntry]:
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def scan_one(address: str) -> list[InboxEntry]:
            async with semaphore:
                return await self._scan_address(address)

        batches = await asyncio.gather(*(scan_one(address) for address in mailboxes))
        return [entry for batch in batches for entry in batch]

    async def _scan_address(self, address: str) -> list[InboxEntry]:
        try:
            txs = await self._client.get_address_txs(address)
        except IndexerError as exc:
            logger.warning("Failed to fetch transactions for %s: %s", address, exc)
            self._record_error()
            return []

        entries: list[InboxEntry] = []
        for tx in txs:
            if not _pays_address(tx, address):
                continue
            try:
                entry = await self._entry_for(tx, address)
            except IndexerError as exc:
                logger.warning("Failed to process transaction %s: %s", tx.get("txid"), exc)
                self._record_error()
                continue
            if entry is not None:
                entries.append(entry)
        return entries

    async def _entry_for(self, tx: dict[str, Any], address: str) -> InboxEntry | None:
        txid = tx.get("txid")
        if not isinstance(txid, str) or not txid:
            logger.warning("Skipping transaction without txid for %s", address)
            self._record_error()
            return None
        payload = extract_annotation(await self._client.get_raw_tx(txid))
        if not payload:
            return None

        status = _as_dict(tx.get("status"))
        sender = _sender_address(tx.get("vin"))
        logger.info(
            "Found payload in tx %s (%s)",
            txid,
            "confirmed" if status.get("confirmed") else "mempool",
        )
        return InboxEntry(
            txid=txid,
            address=address,
            payload=payload,
            timestamp=await self._resolve_timestamp(txid, status),
            sender_address=sender,
            source=self.name,
        )

    async def _resolve_timestamp(self, txid: str, status: dict[str, Any]) -> float:
        """Block time, then indexer first-seen time, then local receipt time."""
        block_time = _positive_number(status.get("block_time"))
        if block_time is not None:
            return block_time

        try:
            metadata = await self._client.get_tx_metadata(txid)
        except IndexerError as exc:
            logger.warning("Failed to fetch metadata for tx %s: %s", txid, exc)
            self._record_error()
            metadata = {}

        candidates = [metadata.get(name) for name in _METADATA_TIME_FIELDS]
        candidates.append(_as_dict(metadata.get("status")).get("block_time"))
        for candidate in candidates:
            seen = _positive_number(candidate)
            if seen is not None:
                return seen
        return self._clock()

    def _record_error(self) -> None:
        if self._metrics is not None:
            self._metrics.record_indexer_error()


# ---------------------------------------------------------------------------
# Local (direct delivery) source
# ---------------------------------------------------------------------------


class LocalInboxSource:
    """In-memory queue of payloads delivered outside the ledger.

    Best-effort and not authoritative: entries are handed out once and then
    dropped from the queue.
    """

    name = "local"

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._queues: dict[str, list[InboxEntry]] = {}
        self._clock = clock

    @staticmethod
    def inbox_key(secret: Secret) -> str:
        """Queue key for a channel; never the phrase itself."""
        return sha256(unicodedata.normalize("NFKD", secret.phrase).encode("utf-8")).hex()

    def enqueue(
        self,
        secret: Secret,
        *,
        address: str,
        payload: str,
        sender_address: str | None = None,
    ) -> InboxEntry:
        """Queue a payload for the next scan of *address*."""
        entry = InboxEntry(
            txid=uuid.uuid4().hex,
            address=address,
            payload=payload.strip(),
            timestamp=self._clock(),
            sender_address=sender_address,
            source=self.name,
        )
        self._queues.setdefault(self.inbox_key(secret), []).append(entry)
        return entry

    def pending(self, secret: Secret) -> int:
        return len(self._queues.get(self.inbox_key(secret), []))

    async def fetch_entries(self, secret: Secret, mailboxes: Sequence[str]) -> list[InboxEntry]:
        key = self.inbox_key(secret)
        wanted = set(mailboxes)
        queue = self._queues.get(key, [])
        matching = [entry for entry in queue if entry.address in wanted]
        if matching:
            self._queues[key] = [entry for entry in queue if entry.address not in wanted]
            logger.info("Found %d locally delivered entries", len(matching))
        return matching


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------


class ChannelScanner:
    """Session-scoped scanner owning the seen-set and a timestamp cursor.

    Scans are serialized: the seen-set has exactly one writer.
    """

    def __init__(
        self,
        source: EntrySource,
        *,
        fallbacks: Iterable[EntrySource] = (),
        metrics: ChannelMetrics | None = None,
    ) -> None:
        self._source = source
        self._fallbacks = list(fallbacks)
        self._metrics = metrics or ChannelMetrics()
        self._seen: set[str] = set()
        self._cursor: float | None = None
        self._lock = asyncio.Lock()

    @property
    def seen_ids(self) -> frozenset[str]:
        return frozenset(self._seen)

    @property
    def cursor(self) -> float | None:
        """Timestamp of the newest entry returned so far."""
        return self._cursor

    def reset(self) -> None:
        """Forget every seen id (end of session)."""
        self._seen.clear()
        self._cursor = None

    async def scan(
        self, secret: Secret, mailboxes: Sequence[MailboxAddress | str]
    ) -> list[InboxEntry]:
        """Return entries not seen before, sorted by ascending timestamp."""
        addresses = [str(mailbox) for mailbox in mailboxes]
        if not addresses:
            return []

        async with self._lock:
            with self._metrics.track_scan():
                entries = await self._collect(secret, addresses)

                fresh: dict[str, InboxEntry] = {}
                for entry in entries:
                    if entry.txid in self._seen or entry.txid in fresh:
                        continue
                    fresh[entry.txid] = entry
                ordered = sorted(fresh.values(), key=lambda entry: entry.timestamp)

                # Commit the whole batch at once.
                self._seen.update(fresh)
                if ordered:
                    newest = ordered[-1].timestamp
                    self._cursor = newest if self._cursor is None else max(self._cursor, newest)
            return ordered

    async def _collect(self, secret: Secret, addresses: list[str]) -> list[InboxEntry]:
        entries = await self._fetch(self._source, secret, addresses)
        if entries:
            return entries
        for fallback in self._fallbacks:
            entries.extend(await self._fetch(fallback, secret, addresses))
        return entries

    async def _fetch(
        self, source: EntrySource, secret: Secret, addresses: list[str]
    ) -> list[InboxEntry]:
        try:
            entries = await source.fetch_entries(secret, addresses)
        except IndexerError as exc:
            logger.warning("Entry source %s unavailable: %s", source.name, exc)
            self._metrics.record_indexer_error()
            return []
        if entries:
            self._metrics.record_discovered(source.name, len(entries))
        return list(entries)
