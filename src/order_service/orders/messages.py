"""Human-readable notification texts sent to buyers by encrypted DM."""

from __future__ import annotations


def format_invoice_dm(order_id: str, amount_sats: int, invoice: str) -> str:
    """Invoice notification for a freshly quoted order."""
    return (
        f"⚡ Invoice for Order #{order_id[:8]}\n"
        "\n"
        f"Amount: {amount_sats:,} sats\n"
        "\n"
        "Pay with Lightning:\n"
        f"lightning:{invoice}\n"
        "\n"
        "Or copy the invoice and paste it in your wallet."
    )


def format_thank_you_dm(order_id: str) -> str:
    """Acknowledgement for a received payment receipt."""
    return (
        "✅ Thank you for your order!\n"
        "\n"
        f"Order #{order_id[:8]} has been paid.\n"
        "\n"
        "We'll process your order shortly and send shipping updates via Nostr DM."
    )
