"""Metrics collector — Prometheus counters and histograms for a channel session.

- ``ephemeral_scans_total``
- ``ephemeral_entries_discovered_total`` (by source)
- ``ephemeral_messages_decrypted_total``
- ``ephemeral_entries_undecryptable_total``
- ``ephemeral_indexer_errors_total``
- ``ephemeral_transactions_built_total``
- ``ephemeral_scan_histogram`` / ``ephemeral_build_transaction_histogram``
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING

from prometheus_client import CollectorRegistry, Counter, Histogram

if TYPE_CHECKING:
    from collections.abc import Iterator


_PREFIX = "ephemeral"


class MetricsCollector:
    """Low-level Prometheus collector that owns the registry.

    Use :class:`ChannelMetrics` for the high-level tracking interface.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or CollectorRegistry()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying Prometheus registry."""
        return self._registry

    def histogram(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Histogram:
        """Register and return a Histogram."""
        return Histogram(name, doc, labels, registry=self._registry)

    def counter(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Counter:
        """Register and return a Counter."""
        return Counter(name, doc, labels, registry=self._registry)


class ChannelMetrics:
    """High-level metrics for one channel session.

    Histograms track operation duration in seconds. A disabled instance
    still registers its metrics but never records a sample.
    """

    def __init__(
        self, collector: MetricsCollector | None = None, *, enabled: bool = True
    ) -> None:
        self._collector = collector or MetricsCollector()
        self._enabled = enabled

        self._scans = self._collector.counter(
            f"{_PREFIX}_scans",
            "Completed inbox scans",
        )
        self._discovered = self._collector.counter(
            f"{_PREFIX}_entries_discovered",
            "New inbox entries found by a scan",
            ("source",),
        )
        self._decrypted = self._collector.counter(
            f"{_PREFIX}_messages_decrypted",
            "Inbox entries that decrypted under the channel key",
        )
        self._undecryptable = self._collector.counter(
            f"{_PREFIX}_entries_undecryptable",
            "Inbox entries not addressed to this channel",
        )
        self._indexer_errors = self._collector.counter(
            f"{_PREFIX}_indexer_errors",
            "Failed requests to the indexing service",
        )
        self._built = self._collector.counter(
            f"{_PREFIX}_transactions_built",
            "Unsigned transactions built",
        )

        self._scan_duration = self._collector.histogram(
            f"{_PREFIX}_scan_histogram",
            "Duration of inbox scans",
        )
        self._build_duration = self._collector.histogram(
            f"{_PREFIX}_build_transaction_histogram",
            "Duration of unsigned transaction builds",
        )

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying Prometheus registry."""
        return self._collector.registry

    @property
    def enabled(self) -> bool:
        return self._enabled

    # -- Counters --

    def record_discovered(self, source: str, count: int = 1) -> None:
        """Count entries discovered from *source*."""
        if self._enabled:
            self._discovered.labels(source=source).inc(count)

    def record_decrypted(self, count: int = 1) -> None:
        if self._enabled:
            self._decrypted.inc(count)

    def record_undecryptable(self, count: int = 1) -> None:
        if self._enabled:
            self._undecryptable.inc(count)

    def record_indexer_error(self) -> None:
        if self._enabled:
            self._indexer_errors.inc()

    def record_transaction_built(self) -> None:
        if self._enabled:
            self._built.inc()

    # -- Operation trackers (context managers) --

    @contextmanager
    def track_scan(self) -> Iterator[None]:
        """Track the duration of a scan and count it."""
        if not self._enabled:
            yield
            return
        start = time.monotonic()
        try:
            yield
        finally:
            self._scan_duration.observe(time.monotonic() - start)
            self._scans.inc()

    @contextmanager
    def track_build_transaction(self) -> Iterator[None]:
        """Track the duration of a transaction build."""
        if not self._enabled:
            yield
            return
        start = time.monotonic()
        try:
            yield
        finally:
            self._build_duration.observe(time.monotonic() - start)
