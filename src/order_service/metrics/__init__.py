"""Metrics — Prometheus metrics collection and exposure."""

from __future__ import annotations

from order_service.metrics.collector import MetricsCollector, ServiceMetrics

__all__ = ["MetricsCollector", "ServiceMetrics"]
