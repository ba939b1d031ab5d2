"""Idempotency and correlation helpers for the POS payment engine.

Keys produced here let the engine recognise repeated work: a second
"paid" observation for the same invoice, a second invoice request for
the same checkout.  The transaction id produced on completion is a
local correlation id only; it is not a settlement id issued by the
payment processor.

Functions provided:

* ``correlation_id(terminal_id)`` – fresh id sent with invoice creation.
* ``transaction_id(invoice_id, at)`` – local id for a completed payment.
"""

from __future__ import annotations

import secrets
import string
import uuid
from datetime import datetime
from typing import Optional

from shared.utils.time import to_timestamp_ms

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def correlation_id(terminal_id: str) -> str:
    """Return a unique correlation id for one invoice request."""
    return f"{terminal_id}-{uuid.uuid4().hex}"


def random_suffix(length: int = 9) -> str:
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))


def transaction_id(invoice_id: str, at: datetime, suffix: Optional[str] = None) -> str:
    """Return the local transaction id for a payment observed as paid.

    The id is derived from the invoice id and the observation time in
    milliseconds, plus a random suffix so that two terminals watching the
    same invoice never produce the same id.  Pass ``suffix`` to make the
    result fully deterministic.
    """
    return f"txn_{invoice_id}_{to_timestamp_ms(at)}_{suffix or random_suffix()}"
