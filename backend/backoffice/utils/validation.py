from __future__ import annotations
"""Reusable validation helpers for ledger and directory input.

Every helper either returns the normalized value (to enable inline usage) or
raises ``ValidationError`` with a message naming the offending field, e.g.
``missing beneficiary`` or ``salePrice must be >= 0``.
"""
import datetime
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Optional

from ..errors import ValidationError

_EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
TWO_PLACES = Decimal('0.01')
MAX_INTEGER_DIGITS = 15
MAX_FRACTION_DIGITS = 4


def validate_choice(value: Any, allowed: Iterable[str], field_name: str = 'status') -> str:
    """Validate that value is inside allowed."""
    if value not in tuple(allowed):
        raise ValidationError(f"{field_name} invalid")
    return value


def require_text(value: Any, field_name: str, max_length: Optional[int] = None) -> str:
    if value is None or not isinstance(value, str) or not value.strip():
        raise ValidationError(f"missing {field_name}")
    value = value.strip()
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{field_name} too long (max {max_length})")
    return value


def optional_text(value: Any, field_name: str, default: str = '') -> str:
    if value is None:
        return default
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be text")
    return value.strip()


def normalize_pnr(value: Any) -> str:
    return require_text(value, 'pnr', max_length=32).upper()


def normalize_email(value: Any) -> str:
    email = require_text(value, 'email', max_length=128).lower()
    if not _EMAIL_RE.match(email):
        raise ValidationError('email invalid')
    return email


def parse_decimal(value: Any, field_name: str, *, minimum: Optional[Decimal] = Decimal('0'),
                  strictly_positive: bool = False) -> Decimal:
    """Parse an amount into an exact Decimal.

    Floats are converted through ``str`` so ``0.1`` stays ``0.1``. Booleans,
    NaN and infinities are rejected, as are values beyond
    ``MAX_INTEGER_DIGITS`` integer or ``MAX_FRACTION_DIGITS`` fractional digits.
    """
    if value is None or value == '':
        raise ValidationError(f"missing {field_name}")
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field_name} must be a number")
    if not amount.is_zero() and amount.adjusted() >= MAX_INTEGER_DIGITS:
        raise ValidationError(f"{field_name} too large (max {MAX_INTEGER_DIGITS} integer digits)")
    _, digits, exponent = amount.as_tuple()
    if exponent > 0:
        # 1E+3 and 0E+99999 become plain integers before anything formats them
        amount = amount.quantize(Decimal('1'))
    elif exponent < -MAX_FRACTION_DIGITS:
        if not amount.is_zero():
            significant = ''.join(map(str, digits)).rstrip('0')
            if exponent + (len(digits) - len(significant)) < -MAX_FRACTION_DIGITS:
                raise ValidationError(f"{field_name} has too many decimal places (max {MAX_FRACTION_DIGITS})")
        # only zeros past the limit
        amount = amount.quantize(Decimal(1).scaleb(-MAX_FRACTION_DIGITS))
    if strictly_positive and amount <= 0:
        raise ValidationError(f"{field_name} must be > 0")
    if minimum is not None and amount < minimum:
        raise ValidationError(f"{field_name} must be >= {minimum}")
    return amount


def parse_date(value: Any, field_name: str, default: Optional[datetime.date] = None) -> datetime.date:
    if value is None or value == '':
        if default is not None:
            return default
        raise ValidationError(f"missing {field_name}")
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if isinstance(value, str):
        try:
            # accept both plain dates and full ISO timestamps
            return datetime.date.fromisoformat(value[:10])
        except ValueError:
            pass
    raise ValidationError(f"{field_name} must be an ISO date")


def format_amount(value: Decimal) -> str:
    """Two-place rendering for display; storage keeps the exact value."""
    return str(value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP))


__all__ = [
    'validate_choice', 'require_text', 'optional_text', 'normalize_pnr', 'normalize_email',
    'parse_decimal', 'parse_date', 'format_amount', 'TWO_PLACES', 'MAX_INTEGER_DIGITS',
    'MAX_FRACTION_DIGITS',
]
