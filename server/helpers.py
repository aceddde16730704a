import secrets
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

TWO_PLACES = Decimal("0.01")


def utc_now(timezone_aware: bool = False):
    now = datetime.now(tz=timezone.utc)
    if timezone_aware:
        return now
    return now.replace(tzinfo=None)


def new_id() -> str:
    return uuid.uuid4().hex


def generate_referral_code() -> str:
    """8 uppercase hex characters from 4 random bytes."""
    return secrets.token_hex(4).upper()


def to_decimal(value: Any) -> Decimal:
    """Parse a stored decimal-as-text value; missing or garbage counts as zero."""
    if value is None or value == "":
        return Decimal("0")
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")
    return result if result.is_finite() else Decimal("0")


def format_money(value: Any) -> str:
    return str(to_decimal(value).quantize(TWO_PLACES))

