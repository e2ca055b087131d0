"""
Module: crm_kernel.db.types
Responsibility: Annotated column aliases and the money helpers every
    module uses, so precision and rounding are identical across quotes,
    contracts, change orders, invoices, payments and commissions.
Architecture position: Kernel > DB.

Invariants enforced:
    - No floats for money.  ``to_money`` rejects float input outright.
    - ``round_money`` (half-up, two places) is the only rounding used for
      stored document amounts.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Annotated

from sqlalchemy import Numeric, String, Text

# 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Tax and commission rates (0.08 = 8%, or 5.0 = 5% for commission percentages)
Rate = Annotated[Decimal, Numeric(18, 9)]

# SHA-256 hash as hex string (64 characters)
PayloadHash = Annotated[str, String(64)]

ShortCode = Annotated[str, String(50)]

LongText = Annotated[str, Text]

MONEY_DECIMAL_PLACES = 2
ZERO = Decimal("0")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = ROUND_HALF_UP,
) -> Decimal:
    """Round a monetary value to ``decimal_places`` using half-up."""
    quantize_str = "0." + "0" * decimal_places
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def to_money(value: Decimal | int | str | None, field: str = "amount") -> Decimal:
    """
    Coerce caller input to a Decimal.

    Raises:
        ValidationError: for floats, blanks or unparseable strings.
    """
    from crm_kernel.exceptions import ValidationError

    if value is None:
        raise ValidationError(field, "is required")
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(field, "must be a Decimal, int or string, not float")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValidationError(field, f"not a number: {value!r}") from exc
    if not result.is_finite():
        raise ValidationError(field, "must be finite")
    return result


def line_total(quantity: Decimal, unit_price: Decimal) -> Decimal:
    """quantity x unit_price, rounded to cents."""
    return round_money(quantity * unit_price)


def apply_rate(amount: Decimal, rate: Decimal) -> Decimal:
    """amount x rate (rate expressed as a fraction), rounded to cents."""
    return round_money(amount * rate)
