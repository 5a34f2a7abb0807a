import re
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

from licensing.errors import ValidationError


EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')
PHONE_PATTERN = re.compile(r'^[0-9]{5,15}$')


def validate_email(email):
    return EMAIL_PATTERN.match(email) is not None


def validate_phone(phone):
    return PHONE_PATTERN.match(phone) is not None


def utc_now():
    """Default clock for every service."""
    return datetime.now(timezone.utc)


def as_utc(value):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value):
    value = as_utc(value)
    return value.isoformat() if value else None


def quantize_decimal(value, places='0.0001'):
    """Quantize decimal to fixed precision"""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(Decimal(places), rounding=ROUND_HALF_UP)


def to_decimal(value, field="value"):
    if value is None or value == "":
        raise ValidationError(f"{field} is required")
    try:
        value = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not value.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return value


def clean_str(value, field="value"):
    """Strip a text field; None becomes an empty string, other non-strings are rejected."""
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    return value.strip()


def to_int(value, field="value", default=None):
    if value is None or value == "":
        if default is not None:
            return default
        raise ValidationError(f"{field} is required")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")


def parse_datetime(value, field="time"):
    """Accepts ISO 8601 or 'YYYY-MM-DD HH:MM:SS'; returns aware UTC or None."""
    if not value:
        return None
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d"):
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    try:
        return as_utc(datetime.fromisoformat(value))
    except ValueError:
        raise ValidationError(f"{field} is not a valid datetime")
