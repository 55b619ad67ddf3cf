"""Shared test fixtures for the ephemeral-channel test suite."""

from __future__ import annotations

import itertools
from typing import Any

import httpx
import pytest

from ephemeral_channel.btc.address import address_to_script
from ephemeral_channel.btc.script import op_return_script
from ephemeral_channel.btc.transaction import Transaction
from ephemeral_channel.chain.mempool.client import MempoolClient
from ephemeral_channel.channel.secret import normalize
from ephemeral_channel.config.settings import AppConfig, ChannelConfig

# BIP39 test vectors; both are checksum-valid 12-word phrases.
ABANDON_PHRASE = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)
LEGAL_PHRASE = "legal winner thank year wave sausage worth useful legal winner thank yellow"

INDEXER_URL = "https://mempool.space/testnet/api"


class FakeIndexer:
    """In-memory Esplora API served through ``httpx.MockTransport``.

    Tests register payload transactions and UTXOs; the handler answers the
    same routes the real indexer exposes.
    """

    def __init__(self) -> None:
        self.address_txs: dict[str, list[dict[str, Any]]] = {}
        self.raw: dict[str, str] = {}
        self.metadata: dict[str, dict[str, Any]] = {}
        self.utxos: dict[str, list[dict[str, Any]]] = {}
        self.broadcasts: list[str] = []
        self.recommended_fees: dict[str, Any] = {
            "fastestFee": 20,
            "halfHourFee": 12,
            "hourFee": 6,
            "economyFee": 3,
            "minimumFee": 1,
        }
        self.failing_paths: set[str] = set()
        self.requests: list[str] = []
        self._counter = itertools.count(1)

    def add_payload_tx(
        self,
        address: str,
        payload: str,
        *,
        block_time: int | None = None,
        sender_address: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Record a transaction paying dust to *address* with an OP_RETURN payload."""
        tx = Transaction()
        tx.add_input(next(self._counter).to_bytes(32, "little"), 0)
        tx.add_output(546, address_to_script(address))
        tx.add_output(0, op_return_script(payload.encode("utf-8")))
        txid = tx.txid()

        status: dict[str, Any] = {"confirmed": block_time is not None}
        if block_time is not None:
            status["block_time"] = block_time
        vin = [{"prevout": {"scriptpubkey_address": sender_address}}] if sender_address else []
        self.address_txs.setdefault(address, []).append(
            {
                "txid": txid,
                "status": status,
                "vin": vin,
                "vout": [{"scriptpubkey_address": address, "value": 546}, {"value": 0}],
            }
        )
        self.raw[txid] = tx.to_hex()
        self.metadata[txid] = metadata or {"txid": txid, "status": status}
        return txid

    def add_utxo(
        self,
        address: str,
        value: int,
        *,
        txid: str | None = None,
        vout: int = 0,
        confirmed: bool = True,
    ) -> None:
        self.utxos.setdefault(address, []).append(
            {
                "txid": txid or f"{next(self._counter):064x}",
                "vout": vout,
                "value": value,
                "status": {"confirmed": confirmed},
                "scriptpubkey": address_to_script(address).hex(),
            }
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/testnet/api")
        self.requests.append(path)
        if path in self.failing_paths:
            return httpx.Response(503, text="unavailable")

        parts = path.strip("/").split("/")
        if parts[0] == "address" and len(parts) == 3:
            address, kind = parts[1], parts[2]
            if kind == "txs":
                return httpx.Response(200, json=self.address_txs.get(address, []))
            if kind == "utxo":
                return httpx.Response(200, json=self.utxos.get(address, []))
        if parts[0] == "tx" and len(parts) == 3 and parts[2] == "hex":
            raw = self.raw.get(parts[1])
            return httpx.Response(200, text=raw) if raw else httpx.Response(404)
        if parts[0] == "tx" and len(parts) == 2:
            meta = self.metadata.get(parts[1])
            return httpx.Response(200, json=meta) if meta else httpx.Response(404)
        if path == "/v1/fees/recommended":
            return httpx.Response(200, json=self.recommended_fees)
        if path == "/tx" and request.method == "POST":
            body = request.content.decode()
            self.broadcasts.append(body)
            return httpx.Response(200, text=Transaction.from_hex(body).txid())
        return httpx.Response(404)

    def client(self) -> MempoolClient:
        client = MempoolClient(INDEXER_URL)
        client._client = httpx.AsyncClient(
            transport=httpx.MockTransport(self.handler),
            base_url=INDEXER_URL,
        )
        return client


@pytest.fixture
def secret():
    """The BIP39 'abandon ... about' channel secret."""
    return normalize(ABANDON_PHRASE)


@pytest.fixture
def foreign_secret():
    """A different, equally valid channel secret."""
    return normalize(LEGAL_PHRASE)


@pytest.fixture
def app_config() -> AppConfig:
    """Provide a test AppConfig with a cheap key-stretching cost."""
    return AppConfig(debug=True, channel=ChannelConfig(pbkdf2_iterations=1_000))


@pytest.fixture
def indexer() -> FakeIndexer:
    return FakeIndexer()
