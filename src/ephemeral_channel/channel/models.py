"""Channel data model — secrets, mailboxes, outputs, inbox entries, messages."""

from __future__ import annotations

import enum
from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Key material
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Secret:
    """A normalized, checksum-valid 12-word shared phrase.

    Held only in memory; ``repr`` never reveals the words.
    """

    words: tuple[str, ...]

    @property
    def phrase(self) -> str:
        """The canonical single-space-separated phrase."""
        return " ".join(self.words)

    def __repr__(self) -> str:
        return f"Secret(<{len(self.words)} words>)"


@dataclass(frozen=True)
class MailboxAddress:
    """One derived receiving address of a channel."""

    index: int
    address: str
    network: str = "testnet"

    def __str__(self) -> str:
        return self.address


@dataclass(frozen=True)
class EncryptionKey:
    """The channel's 256-bit symmetric key."""

    key: bytes

    def __repr__(self) -> str:
        return "EncryptionKey(<256 bits>)"


# ---------------------------------------------------------------------------
# Ledger data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SpendableOutput:
    """An unspent output owned by the sender.

    Attributes:
        txid: Funding transaction id (display hex).
        vout: Output index in the funding transaction.
        value: Output value in satoshis.
        script_pubkey: Locking script hex, if known.
        confirmed: True once the funding transaction is mined.
    """

    txid: str
    vout: int
    value: int
    script_pubkey: str | None = None
    confirmed: bool = True

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass(frozen=True)
class InboxEntry:
    """A ledger (or locally delivered) record that may hold a channel payload.

    Attributes:
        txid: Transaction id, or a local identifier for direct deliveries.
        address: Mailbox the entry was found at.
        payload: Raw annotation text (base64 envelope when it is ours).
        timestamp: Epoch seconds used for ordering.
        sender_address: Address that funded the transaction, when known.
        source: Name of the entry source that produced it.
    """

    txid: str
    address: str
    payload: str
    timestamp: float
    sender_address: str | None = None
    source: str = "indexer"


# ---------------------------------------------------------------------------
# Session timeline
# ---------------------------------------------------------------------------


class MessageDirection(enum.StrEnum):
    """Which side of the channel wrote a message."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


@dataclass(frozen=True)
class ChannelMessage:
    """A decrypted message in the session timeline."""

    id: str
    direction: MessageDirection
    content: str
    encrypted: str
    address: str
    timestamp: float


@dataclass(frozen=True)
class OutboundInstruction:
    """A sent message waiting to be written to the ledger by a signer."""

    id: str
    address: str
    payload: str
    created_at: float
    message: str


@dataclass(frozen=True)
class InscriptionResult:
    """Outcome of a signed and broadcast outbound instruction."""

    instruction_id: str
    txid: str
    address: str
    fee: int
    change: int
