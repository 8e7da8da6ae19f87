"""Pre-built error instances for fixed failure messages."""

from __future__ import annotations

from order_service.errors.relay_errors import RelayError
from order_service.errors.service_errors import ConfigError, KeyDecodeError

# -- Keys ------------------------------------------------------------------

ErrInvalidBech32 = KeyDecodeError("invalid bech32 string")
ErrNotNsec = KeyDecodeError("expected an nsec-encoded secret key")
ErrInvalidSecretKey = KeyDecodeError("secret key is out of range for secp256k1")
ErrInvalidPubKey = KeyDecodeError("invalid x-only public key")

# -- Configuration ---------------------------------------------------------

ErrMissingNsec = ConfigError("missing required setting: merchant_nsec")
ErrMissingLightningAddress = ConfigError("missing required setting: lightning_address")
ErrNoRelays = ConfigError("at least one fallback relay is required")
ErrInvalidLightningAddress = ConfigError("Lightning Address failed validation")

# -- Relay -----------------------------------------------------------------

ErrTransportClosed = RelayError("relay transport is closed", code="transport-closed")
