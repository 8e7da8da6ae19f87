"""Merchant-side order processing for Nostr marketplace orders."""

__version__ = "0.1.0"
