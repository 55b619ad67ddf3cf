"""Esplora REST client — address history, raw transactions, UTXOs, broadcast.

Async HTTP client for the mempool.space (Esplora) testnet API:
- GET  /address/<addr>/txs
- GET  /address/<addr>/utxo
- GET  /tx/<txid>
- GET  /tx/<txid>/hex
- POST /tx
- GET  /v1/fees/recommended

Every transport or HTTP failure surfaces as :class:`IndexerError`.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any

import httpx

from ephemeral_channel.channel.models import SpendableOutput
from ephemeral_channel.errors.chain_errors import IndexerError

logger = logging.getLogger(__name__)

_DEFAULT_URL = "https://mempool.space/testnet/api"


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MempoolFees:
    """Recommended fee rates in sat/vB."""

    fastest: float
    half_hour: float
    hour: float
    economy: float
    minimum: float


def normalize_satoshis(value: Any) -> int:
    """Coerce an indexer-reported amount to integer satoshis.

    Some responses report BTC instead of satoshis; a fractional component
    is taken as BTC-denominated.

    Raises:
        ValueError: If the value is not a finite positive amount.
    """
    if isinstance(value, bool) or not isinstance(value, int | float):
        msg = f"Invalid UTXO value received: {value!r}"
        raise ValueError(msg)
    if not math.isfinite(value):
        msg = f"Invalid UTXO value received: {value!r}"
        raise ValueError(msg)
    if float(value).is_integer():
        return int(value)
    sats = round(value * 1e8)
    if sats <= 0:
        msg = f"Failed to normalise UTXO value: {value!r}"
        raise ValueError(msg)
    return sats


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class MempoolClient:
    """Async HTTP client for an Esplora-compatible indexer.

    Usage::

        client = MempoolClient()
        await client.connect()
        try:
            txs = await client.get_address_txs("tb1p...")
            utxos = await client.get_utxos("tb1p...")
        finally:
            await client.close()
    """

    def __init__(self, base_url: str = _DEFAULT_URL, *, timeout: float = 30.0) -> None:
        """Initialize the client.

        Args:
            base_url: API root, e.g. ``https://mempool.space/testnet/api``.
            timeout: Per-request timeout in seconds.
        """
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        """Create the underlying HTTP client."""
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Accept": "application/json"},
            timeout=self._timeout,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def is_connected(self) -> bool:
        """Check if the HTTP client is active."""
        return self._client is not None

    @property
    def base_url(self) -> str:
        return self._base_url

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_address_txs(self, address: str) -> list[dict[str, Any]]:
        """List transactions (confirmed and mempool) touching *address*."""
        data = _json(await self._request("GET", f"/address/{address}/txs"))
        if not isinstance(data, list):
            msg = f"Unexpected response for address {address} transactions"
            raise IndexerError(msg)
        return data

    async def get_raw_tx(self, txid: str) -> str:
        """Get raw transaction hex by txid."""
        resp = await self._request("GET", f"/tx/{txid}/hex")
        return resp.text.strip()

    async def get_tx_metadata(self, txid: str) -> dict[str, Any]:
        """Get the indexer's JSON view of a transaction."""
        data = _json(await self._request("GET", f"/tx/{txid}"))
        return data if isinstance(data, dict) else {}

    async def get_utxos(
        self, address: str, *, confirmed_only: bool = True
    ) -> list[SpendableOutput]:
        """Get unspent outputs for *address*.

        Malformed records and outputs whose value cannot be normalised are
        skipped. A missing ``scriptpubkey`` is resolved from the funding
        transaction; if that lookup fails the output is returned without a
        script.

        Args:
            address: Owner address.
            confirmed_only: Drop outputs whose funding tx is unconfirmed.
        """
        items = _json(await self._request("GET", f"/address/{address}/utxo"))
        if not isinstance(items, list):
            msg = f"Unexpected response for address {address} UTXOs"
            raise IndexerError(msg)
        funding_cache: dict[str, dict[str, Any]] = {}
        results: list[SpendableOutput] = []
        for item in items:
            outpoint = _outpoint(item)
            if outpoint is None:
                logger.warning("Skipping malformed UTXO record for %s: %r", address, item)
                continue
            txid, vout = outpoint
            status = item.get("status")
            confirmed = isinstance(status, dict) and bool(status.get("confirmed", False))
            if confirmed_only and not confirmed:
                continue
            try:
                value = normalize_satoshis(item.get("value"))
            except ValueError:
                logger.warning(
                    "Skipping UTXO %s:%s with invalid value %r", txid, vout, item.get("value")
                )
                continue
            script = item.get("scriptpubkey")
            if not isinstance(script, str) or not script:
                script = await self._resolve_script(txid, vout, funding_cache)
            results.append(
                SpendableOutput(
                    txid=txid,
                    vout=vout,
                    value=value,
                    script_pubkey=script,
                    confirmed=confirmed,
                )
            )
        return results

    async def broadcast(self, raw_tx_hex: str) -> str:
        """Broadcast a signed transaction and return its txid."""
        resp = await self._request("POST", "/tx", content=raw_tx_hex.strip())
        return resp.text.strip().strip('"')

    async def get_recommended_fees(self) -> MempoolFees:
        """Get the indexer's recommended fee rates."""
        data = _json(await self._request("GET", "/v1/fees/recommended"))
        if not isinstance(data, dict):
            msg = "Unexpected response for recommended fees"
            raise IndexerError(msg)
        try:
            return MempoolFees(
                fastest=float(data.get("fastestFee", 1)),
                half_hour=float(data.get("halfHourFee", 1)),
                hour=float(data.get("hourFee", 1)),
                economy=float(data.get("economyFee", 1)),
                minimum=float(data.get("minimumFee", 1)),
            )
        except (TypeError, ValueError) as exc:
            msg = f"Unexpected recommended fee values: {data}"
            raise IndexerError(msg) from exc

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _resolve_script(
        self, txid: str, vout: int, cache: dict[str, dict[str, Any]]
    ) -> str | None:
        try:
            if txid not in cache:
                cache[txid] = await self.get_tx_metadata(txid)
            outputs = cache[txid].get("vout")
            if not isinstance(outputs, list) or not 0 <= vout < len(outputs):
                return None
            output = outputs[vout]
            script = output.get("scriptpubkey") if isinstance(output, dict) else None
            return script if isinstance(script, str) and script else None
        except IndexerError:
            logger.warning("Failed to fetch funding tx %s for UTXO script", txid)
            return None

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        client = self._ensure_connected()
        try:
            resp = await client.request(method, path, **kwargs)
            resp.raise_for_status()
        except httpx.TimeoutException as exc:
            msg = f"Indexer request timed out: {method} {path}"
            raise IndexerError(msg) from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            msg = f"Indexer returned {status} for {method} {path}"
            raise IndexerError(msg, status_code=status) from exc
        except httpx.HTTPError as exc:
            msg = f"Indexer request failed: {method} {path}: {exc}"
            raise IndexerError(msg) from exc
        return resp

    def _ensure_connected(self) -> httpx.AsyncClient:
        if self._client is None:
            msg = "MempoolClient is not connected — call connect() first"
            raise RuntimeError(msg)
        return self._client


def _json(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError as exc:
        msg = f"Indexer returned malformed JSON for {resp.request.url}"
        raise IndexerError(msg) from exc


def _outpoint(item: Any) -> tuple[str, int] | None:
    """Return ``(txid, vout)`` of a UTXO record, or None if it is malformed."""
    if not isinstance(item, dict):
        return None
    txid, vout = item.get("txid"), item.get("vout")
    if not isinstance(txid, str) or not txid:
        return None
    if isinstance(vout, bool) or not isinstance(vout, int) or vout < 0:
        return None
    return txid, vout
