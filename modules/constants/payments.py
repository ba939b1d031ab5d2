# modules/constants/payments.py

import os

# Static invoice shown when the processor cannot issue a real one
FALLBACK_INVOICE = os.getenv(
    "FALLBACK_LIGHTNING_INVOICE",
    "lnbc1500n1pjhm9j7pp5zq0q6p8p9p0p1p2p3p4p5p6p7p8p9p0p1p2p3p4p5p6p7p8p9p0p1",
)

FALLBACK_INVOICE_PREFIX = "fallback-"

# User-facing status messages
STATUS_MESSAGES = {
    "initializing": "Generating Lightning invoice...",
    "waiting": "Awaiting payment...",
    "confirming": "Payment detected, confirming...",
    "completed": "Payment confirmed successfully!",
    "failed": "Payment failed. Please try again.",
    "expired": "Payment expired. Please generate a new invoice.",
    "cancelled": "Payment cancelled by user",
}

__all__ = ("FALLBACK_INVOICE", "FALLBACK_INVOICE_PREFIX", "STATUS_MESSAGES")
