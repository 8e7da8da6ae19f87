"""Configuration — environment and YAML backed settings."""

from __future__ import annotations

from order_service.config.settings import AppConfig

__all__ = ["AppConfig"]
