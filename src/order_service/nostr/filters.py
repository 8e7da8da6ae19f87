"""Relay subscription filters (NIP-01 ``REQ`` filters)."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any


@dataclass(frozen=True, slots=True)
class Filter:
    """A single relay query filter.

    Attributes:
        kinds: Event kinds to match.
        authors: Author public keys (hex).
        p_tags: Values of ``#p`` tags to match (addressed-to).
        since: Lower bound on ``created_at`` (inclusive).
        limit: Maximum number of events a relay should return.
    """

    kinds: tuple[int, ...] = ()
    authors: tuple[str, ...] = ()
    p_tags: tuple[str, ...] = ()
    since: int | None = None
    limit: int | None = None

    def with_since(self, since: int) -> Filter:
        """Return a copy with a new ``since`` bound."""
        return replace(self, since=since)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the relay JSON form."""
        data: dict[str, Any] = {}
        if self.kinds:
            data["kinds"] = list(self.kinds)
        if self.authors:
            data["authors"] = list(self.authors)
        if self.p_tags:
            data["#p"] = list(self.p_tags)
        if self.since is not None:
            data["since"] = self.since
        if self.limit is not None:
            data["limit"] = self.limit
        return data
