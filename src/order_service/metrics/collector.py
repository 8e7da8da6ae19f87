"""Metrics collector — Prometheus counters, gauges, histograms.

Service metrics:
- ``ordersvc_orders_total`` counter-vec  (completed, failed, duplicate)
- ``ordersvc_receipts_total`` counter-vec  (acknowledged, duplicate)
- ``ordersvc_relay_publish_total`` counter-vec  (accepted, rejected, failed)
- ``ordersvc_notifications_total`` counter-vec  (sent, failed)
- ``ordersvc_invoice_request_histogram``
- ``ordersvc_poll_tick_histogram``
- ``ordersvc_watermark_gauge``
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

if TYPE_CHECKING:
    from collections.abc import Iterator


_PREFIX = "ordersvc"


class MetricsCollector:
    """Low-level Prometheus collector that owns the registry.

    Use :class:`ServiceMetrics` for the high-level tracking interface.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or CollectorRegistry()

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying Prometheus registry."""
        return self._registry

    def gauge(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Gauge:
        """Register and return a Gauge."""
        return Gauge(name, doc, labels, registry=self._registry)

    def histogram(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Histogram:
        """Register and return a Histogram."""
        return Histogram(name, doc, labels, registry=self._registry)

    def counter(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Counter:
        """Register and return a Counter."""
        return Counter(name, doc, labels, registry=self._registry)


class ServiceMetrics:
    """High-level order service metrics.

    All histograms track operation duration in seconds.
    """

    def __init__(self, collector: MetricsCollector | None = None) -> None:
        self._collector = collector or MetricsCollector()

        # Outcome counters
        self._orders = self._collector.counter(
            f"{_PREFIX}_orders",
            "Orders handled, by result",
            ("result",),
        )
        self._receipts = self._collector.counter(
            f"{_PREFIX}_receipts",
            "Payment receipts handled, by result",
            ("result",),
        )
        self._relay_publish = self._collector.counter(
            f"{_PREFIX}_relay_publish",
            "Per-relay publish outcomes",
            ("outcome",),
        )
        self._notifications = self._collector.counter(
            f"{_PREFIX}_notifications",
            "Encrypted direct messages, by result",
            ("result",),
        )

        # Operation histograms
        self._invoice_request = self._collector.histogram(
            f"{_PREFIX}_invoice_request_histogram",
            "Duration of LNURL-pay invoice generation",
        )
        self._poll_tick = self._collector.histogram(
            f"{_PREFIX}_poll_tick_histogram",
            "Duration of subscription poll ticks",
            ("stream",),
        )

        self._watermark = self._collector.gauge(
            f"{_PREFIX}_watermark_gauge",
            "Current subscription watermark (unix seconds)",
            ("stream",),
        )

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying Prometheus registry."""
        return self._collector.registry

    # -- Counters --

    def record_order(self, result: str) -> None:
        """Count one order by result."""
        self._orders.labels(result=result).inc()

    def record_receipt(self, result: str) -> None:
        """Count one payment receipt by result."""
        self._receipts.labels(result=result).inc()

    def record_relay_publish(self, outcome: str) -> None:
        """Count one per-relay publish outcome."""
        self._relay_publish.labels(outcome=outcome).inc()

    def record_notification(self, result: str) -> None:
        """Count one direct message by result."""
        self._notifications.labels(result=result).inc()

    def set_watermark(self, stream: str, value: int) -> None:
        """Publish a subscription's watermark."""
        self._watermark.labels(stream=stream).set(value)

    # -- Operation trackers (context managers) --

    @contextmanager
    def track_invoice_request(self) -> Iterator[None]:
        """Track the duration of an invoice generation."""
        start = time.monotonic()
        try:
            yield
        finally:
            self._invoice_request.observe(time.monotonic() - start)

    @contextmanager
    def track_poll_tick(self, stream: str) -> Iterator[None]:
        """Track the duration of one poll tick."""
        start = time.monotonic()
        try:
            yield
        finally:
            self._poll_tick.labels(stream=stream).observe(time.monotonic() - start)
