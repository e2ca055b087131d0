"""
Quote pricing -- pure functions over line items.

    subtotal  = sum(round(quantity * unit_price))
    tax       = round((subtotal - discount) * tax_rate)
    total     = subtotal - discount + tax
"""

from collections.abc import Iterable
from decimal import Decimal

from crm_kernel.db.types import ZERO, apply_rate, line_total, round_money, to_money
from crm_kernel.exceptions import ValidationError
from crm_modules.quotes.models import LineItemInput, QuoteTotals


def normalize_line_item(item: LineItemInput, index: int) -> LineItemInput:
    """Validate one submitted line item and coerce its numbers."""
    description = (item.description or "").strip()
    if not description:
        raise ValidationError(f"line_items[{index}].description", "is required")
    quantity = to_money(item.quantity, f"line_items[{index}].quantity")
    unit_price = to_money(item.unit_price, f"line_items[{index}].unit_price")
    if quantity <= 0:
        raise ValidationError(f"line_items[{index}].quantity", "must be positive")
    if unit_price < 0:
        raise ValidationError(f"line_items[{index}].unit_price", "cannot be negative")
    return LineItemInput(
        description=description,
        quantity=quantity,
        unit_price=unit_price,
        unit=(item.unit or "ea").strip() or "ea",
        category=item.category,
    )


def validate_rate(rate: Decimal | int | str, field: str = "tax_rate") -> Decimal:
    value = to_money(rate, field)
    if value < 0 or value >= 1:
        raise ValidationError(field, "must be a fraction between 0 and 1")
    return value


def compute_totals(
    line_totals: Iterable[Decimal],
    discount_amount: Decimal = ZERO,
    tax_rate: Decimal = ZERO,
) -> QuoteTotals:
    subtotal = round_money(sum(line_totals, ZERO))
    discount = round_money(discount_amount)
    if discount < 0:
        raise ValidationError("discount_amount", "cannot be negative")
    if discount > subtotal:
        raise ValidationError("discount_amount", "cannot exceed the subtotal")
    taxable = subtotal - discount
    tax = apply_rate(taxable, tax_rate)
    return QuoteTotals(
        subtotal=subtotal,
        discount_amount=discount,
        tax_amount=tax,
        total_amount=taxable + tax,
    )


def totals_for_inputs(
    items: Iterable[LineItemInput],
    discount_amount: Decimal = ZERO,
    tax_rate: Decimal = ZERO,
) -> QuoteTotals:
    return compute_totals(
        (line_total(i.quantity, i.unit_price) for i in items),
        discount_amount,
        tax_rate,
    )
