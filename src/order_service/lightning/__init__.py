"""Lightning — LNURL-pay invoice generation for a Lightning Address."""

from __future__ import annotations

from order_service.lightning.gateway import InvoiceGateway
from order_service.lightning.models import InvoiceResponse, LightningAddress, PayParams

__all__ = ["InvoiceGateway", "InvoiceResponse", "LightningAddress", "PayParams"]
