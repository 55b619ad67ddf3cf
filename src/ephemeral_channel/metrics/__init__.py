"""Metrics — Prometheus metrics collection."""

from __future__ import annotations

from ephemeral_channel.metrics.collector import ChannelMetrics, MetricsCollector

__all__ = ["ChannelMetrics", "MetricsCollector"]
