"""Application settings loaded from environment variables and config files.

Configuration is loaded from (highest priority first):
1. Environment variables (prefix: ``ORDERSVC_``, nested via ``__``); the
   three process-boundary settings also accept their bare names
   ``MERCHANT_NSEC``, ``LIGHTNING_ADDRESS`` and ``FALLBACK_RELAYS``
2. A ``.env`` file in the working directory (same variable names)
3. YAML config file (``--config path`` or ``ORDERSVC_CONFIG_PATH`` env var)
4. Defaults defined here
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Any, Self

import yaml
from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from order_service.errors.definitions import (
    ErrMissingLightningAddress,
    ErrMissingNsec,
    ErrNoRelays,
)
from order_service.relay.models import normalize_relay_url

DEFAULT_FALLBACK_RELAYS = (
    "wss://relay.damus.io",
    "wss://nos.lol",
    "wss://relay.primal.net",
)

# ---------------------------------------------------------------------------
# Sub-config models
# ---------------------------------------------------------------------------


class RelayConfig(BaseSettings):
    """Relay transport and polling settings."""

    model_config = SettingsConfigDict(
        env_prefix="ORDERSVC_RELAY__",
        case_sensitive=False,
    )

    timeout: float = Field(default=8.0, gt=0, description="Per-relay operation deadline (s)")
    poll_interval: float = Field(default=5.0, gt=0, description="Seconds between poll ticks")
    poll_jitter: float = Field(default=1.0, ge=0)
    tick_timeout: float = Field(default=20.0, gt=0)
    relay_list_cache_ttl: float = Field(default=300.0, ge=0)


class LightningConfig(BaseSettings):
    """LNURL-pay client settings."""

    model_config = SettingsConfigDict(
        env_prefix="ORDERSVC_LIGHTNING__",
        case_sensitive=False,
    )

    timeout: float = Field(default=10.0, gt=0)


class ProcessingConfig(BaseSettings):
    """Order and receipt processing settings."""

    model_config = SettingsConfigDict(
        env_prefix="ORDERSVC_PROCESSING__",
        case_sensitive=False,
    )

    dm_delay: float = Field(default=2.0, ge=0, description="Pause before the invoice DM (s)")
    shutdown_grace: float = Field(default=10.0, ge=0)
    publish_status_updates: bool = False


class DedupConfig(BaseSettings):
    """Processed-id dedup set bounds."""

    model_config = SettingsConfigDict(
        env_prefix="ORDERSVC_DEDUP__",
        case_sensitive=False,
    )

    max_size: int = Field(default=100_000, gt=0)
    retention_seconds: float = Field(default=7 * 24 * 3600, gt=0)


class MetricsConfig(BaseSettings):
    """Prometheus metrics settings."""

    model_config = SettingsConfigDict(
        env_prefix="ORDERSVC_METRICS__",
        case_sensitive=False,
    )

    enabled: bool = False
    port: int = 9090


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


def _load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file and return its contents as a dict.

    Returns an empty dict if the file doesn't exist or is empty.
    """
    p = Path(path)
    if not p.exists():
        return {}
    text = p.read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    return data if isinstance(data, dict) else {}


class AppConfig(BaseSettings):
    """Top-level application configuration.

    Loads settings from environment variables (``ORDERSVC_`` prefix), a
    ``.env`` file, an optional YAML file, and built-in defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="ORDERSVC_",
        env_nested_delimiter="__",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False
    log_level: str = "INFO"
    config_path: str = ""

    merchant_nsec: str = Field(
        default="",
        repr=False,
        validation_alias=AliasChoices("ordersvc_merchant_nsec", "merchant_nsec"),
    )
    lightning_address: str = Field(
        default="",
        validation_alias=AliasChoices("ordersvc_lightning_address", "lightning_address"),
    )
    fallback_relays: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_FALLBACK_RELAYS),
        validation_alias=AliasChoices("ordersvc_fallback_relays", "fallback_relays"),
        description="Relays used until the merchant's own relay list is found",
    )

    relay: RelayConfig = Field(default_factory=RelayConfig)
    lightning: LightningConfig = Field(default_factory=LightningConfig)
    processing: ProcessingConfig = Field(default_factory=ProcessingConfig)
    dedup: DedupConfig = Field(default_factory=DedupConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    @model_validator(mode="before")
    @classmethod
    def _merge_yaml(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Merge YAML config file contents under the env var overrides."""
        config_path = values.get("config_path", "")
        if not config_path:
            return values
        yaml_data = _load_yaml(config_path)
        for key, val in yaml_data.items():
            if key not in values or values[key] is None:
                values[key] = val
            elif isinstance(val, dict) and isinstance(values.get(key), dict):
                values[key] = {**val, **values[key]}
        return values

    @field_validator("fallback_relays", mode="before")
    @classmethod
    def _split_relays(cls, value: Any) -> Any:
        """Accept a comma-separated string as well as a list."""
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("fallback_relays")
    @classmethod
    def _check_relays(cls, value: list[str]) -> list[str]:
        relays: list[str] = []
        for url in value:
            normalized = normalize_relay_url(url)
            if normalized is None:
                msg = f"relay URL must use ws:// or wss://: {url!r}"
                raise ValueError(msg)
            if normalized not in relays:
                relays.append(normalized)
        return relays

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            msg = f"unknown log level: {value!r}"
            raise ValueError(msg)
        return level

    def require_runtime_settings(self) -> None:
        """Check the settings the service cannot start without.

        Raises:
            ConfigError: If the nsec, the Lightning Address or every
                fallback relay is missing.
        """
        if not self.merchant_nsec.strip():
            raise ErrMissingNsec
        if not self.lightning_address.strip():
            raise ErrMissingLightningAddress
        if not self.fallback_relays:
            raise ErrNoRelays

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """Construct ``AppConfig`` loading defaults from a YAML file.

        Environment variables still override YAML values.
        """
        return cls(config_path=str(path))
