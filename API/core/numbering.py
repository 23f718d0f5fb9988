"""
Document numbers for invoices and payments.

Format: <PREFIX>-<UTC yyyymmddHHMMSSffffff>-<8 hex chars>. Numbers sort by
creation time; the random suffix keeps same-microsecond numbers apart and
the unique constraints on the tables catch anything left.
"""

import secrets
from datetime import datetime, timezone
from typing import Optional

INVOICE_PREFIX = "INV"
PAYMENT_PREFIX = "PAY"


def generate_number(prefix: str, now: Optional[datetime] = None) -> str:
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return f"{prefix}-{now.strftime('%Y%m%d%H%M%S%f')}-{secrets.token_hex(4)}"


def generate_invoice_number(now: Optional[datetime] = None) -> str:
    return generate_number(INVOICE_PREFIX, now)


def generate_payment_number(now: Optional[datetime] = None) -> str:
    return generate_number(PAYMENT_PREFIX, now)
