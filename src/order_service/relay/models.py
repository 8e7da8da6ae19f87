"""Relay transport data models — per-relay outcomes and URL handling."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from urllib.parse import urlsplit

# ``OK false`` prefixes that signal relay policy rather than a broken event
_SOFT_REJECTION_PREFIXES = (
    "restricted:",
    "blocked:",
    "auth-required:",
    "rate-limited:",
    "pow:",
)
_PAYMENT_MARKERS = ("pay on", "payment required", "paid relay")


class RelayOutcome(enum.StrEnum):
    """Classification of one relay's answer to a publish."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"  # soft: relay policy (paid, restricted, rate-limited)
    FAILED = "failed"  # hard: network, protocol, timeout, invalid


@dataclass(frozen=True, slots=True)
class RelayResult:
    """Outcome of publishing one event to one relay."""

    relay: str
    outcome: RelayOutcome
    message: str = ""

    @property
    def accepted(self) -> bool:
        """Whether the relay stored the event."""
        return self.outcome is RelayOutcome.ACCEPTED


def classify_ok(accepted: bool, message: str) -> RelayOutcome:
    """Classify a NIP-01 ``["OK", id, accepted, message]`` reply."""
    text = message.strip().lower()
    if accepted or text.startswith("duplicate:"):
        return RelayOutcome.ACCEPTED
    if text.startswith(_SOFT_REJECTION_PREFIXES) or any(m in text for m in _PAYMENT_MARKERS):
        return RelayOutcome.REJECTED
    return RelayOutcome.FAILED


def normalize_relay_url(url: str) -> str | None:
    """Normalize a relay URL, or return None if it is not a websocket URL.

    Lowercases scheme and host and strips a trailing slash from a bare host
    so that ``wss://Relay.Example/`` and ``wss://relay.example`` dedupe.
    """
    url = url.strip()
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if parts.scheme.lower() not in ("ws", "wss") or not parts.netloc:
        return None
    path = "" if parts.path in ("", "/") else parts.path
    query = f"?{parts.query}" if parts.query else ""
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}{path}{query}"


def merge_relays(*groups: list[str] | tuple[str, ...]) -> list[str]:
    """Union of relay lists, normalized, order-preserving, without duplicates."""
    seen: set[str] = set()
    merged: list[str] = []
    for group in groups:
        for url in group:
            normalized = normalize_relay_url(url)
            if normalized is None or normalized in seen:
                continue
            seen.add(normalized)
            merged.append(normalized)
    return merged
