"""Tests for relay query filters."""

from __future__ import annotations

from order_service.nostr.filters import Filter


class TestFilter:
    def test_empty_filter(self) -> None:
        assert Filter().to_dict() == {}

    def test_full_filter(self) -> None:
        f = Filter(kinds=(16,), authors=("aa",), p_tags=("bb",), since=100, limit=1)
        assert f.to_dict() == {
            "kinds": [16],
            "authors": ["aa"],
            "#p": ["bb"],
            "since": 100,
            "limit": 1,
        }

    def test_with_since_returns_copy(self) -> None:
        base = Filter(kinds=(17,), p_tags=("bb",), since=10)
        moved = base.with_since(20)
        assert moved.since == 20
        assert base.since == 10
        assert moved.kinds == base.kinds

    def test_since_zero_is_kept(self) -> None:
        assert Filter(since=0).to_dict() == {"since": 0}
