"""Subscriptions — relay polling with watermarks and id dedup."""

from __future__ import annotations

from order_service.subscriptions.poller import Subscription, SubscriptionPoller

__all__ = ["Subscription", "SubscriptionPoller"]
