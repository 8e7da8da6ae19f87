"""Nostr events (NIP-01) — templates, signed events, ids and signatures."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Self

from order_service.nostr.keys import schnorr_verify
from order_service.utils.crypto import sha256

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from order_service.nostr.keys import Keys

Tag = tuple[str, ...]

KIND_ENCRYPTED_DM = 4
KIND_RELAY_LIST = 10002


def now() -> int:
    """Current unix time truncated to seconds."""
    return int(time.time())


def normalize_tags(tags: Iterable[Sequence[Any]]) -> tuple[Tag, ...]:
    """Coerce raw JSON tag arrays into tuples of strings."""
    return tuple(tuple(str(v) for v in tag) for tag in tags)


def compute_event_id(
    pubkey: str,
    created_at: int,
    kind: int,
    tags: Sequence[Sequence[str]],
    content: str,
) -> str:
    """Hex sha256 of the canonical NIP-01 serialization."""
    payload = json.dumps(
        [0, pubkey, created_at, kind, [list(t) for t in tags], content],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return sha256(payload.encode("utf-8")).hex()


def tag_value(tags: Sequence[Tag], name: str) -> Tag | None:
    """Return the first tag whose discriminator is *name*."""
    for tag in tags:
        if tag and tag[0] == name:
            return tag
    return None


def tag_values(tags: Sequence[Tag], name: str) -> list[Tag]:
    """Return every tag whose discriminator is *name*, in order."""
    return [tag for tag in tags if tag and tag[0] == name]


@dataclass(frozen=True)
class EventTemplate:
    """An unsigned event, ready to be signed by an identity."""

    kind: int
    tags: tuple[Tag, ...] = ()
    content: str = ""
    created_at: int = field(default_factory=now)

    def sign(self, keys: Keys) -> SignedEvent:
        """Compute the id and sign it with *keys*."""
        event_id = compute_event_id(
            keys.public_key, self.created_at, self.kind, self.tags, self.content
        )
        sig = keys.sign(bytes.fromhex(event_id))
        return SignedEvent(
            id=event_id,
            pubkey=keys.public_key,
            created_at=self.created_at,
            kind=self.kind,
            tags=self.tags,
            content=self.content,
            sig=sig.hex(),
        )


@dataclass(frozen=True)
class SignedEvent:
    """A signed, content-addressed Nostr event. Immutable once created."""

    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: tuple[Tag, ...]
    content: str
    sig: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Build from the relay JSON form.

        Raises:
            ValueError: If a required field is missing or has the wrong type.
        """
        try:
            return cls(
                id=str(data["id"]),
                pubkey=str(data["pubkey"]),
                created_at=int(data["created_at"]),
                kind=int(data["kind"]),
                tags=normalize_tags(data.get("tags") or []),
                content=str(data.get("content", "")),
                sig=str(data["sig"]),
            )
        except (KeyError, TypeError) as exc:
            msg = f"malformed event: {exc}"
            raise ValueError(msg) from exc

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the relay JSON form."""
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(t) for t in self.tags],
            "content": self.content,
            "sig": self.sig,
        }

    def verify(self) -> bool:
        """Check that the id matches the content and the signature is valid."""
        expected = compute_event_id(self.pubkey, self.created_at, self.kind, self.tags, self.content)
        if expected != self.id:
            return False
        try:
            return schnorr_verify(
                bytes.fromhex(self.id), bytes.fromhex(self.pubkey), bytes.fromhex(self.sig)
            )
        except ValueError:
            return False

    def tag(self, name: str) -> Tag | None:
        """First tag named *name*, or None."""
        return tag_value(self.tags, name)
