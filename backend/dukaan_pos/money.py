# Overview: Fixed-point money and tax arithmetic. Every amount is integer cents.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN
from typing import Iterable

from .errors import ValidationError

"""
Pricing invariants (authoritative)

- Amounts are integer cents; floats never enter the arithmetic.
- Tax rates are integer basis points: 500 bps == 5%.
- Tax is computed per line as unit_price * quantity * rate and rounded to the
  cent with banker's rounding (half-even), then summed. Rounding error is
  therefore bounded by half a cent per line and never compounds.
- total == subtotal + tax, exactly.
"""

# Maximum price: $9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999
BPS_DENOMINATOR = 10_000
MAX_TAX_RATE_BPS = BPS_DENOMINATOR

_CENT = Decimal("0.01")


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal_cents: int
    tax_cents: int
    total_cents: int


def parse_money(value) -> int:
    """
    Convert a decimal amount ("10.00", "10", Decimal) into cents.

    Floats are rejected outright; more than two decimal places is an error
    rather than a silent rounding.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError("amount must be a decimal string, not a float")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"invalid amount: {value!r}")
    if amount != amount.quantize(_CENT):
        raise ValidationError("amount cannot have more than two decimal places")
    cents = int(amount * 100)
    if cents < 0:
        raise ValidationError("amount must be >= 0")
    if cents > MAX_PRICE_CENTS:
        raise ValidationError(f"amount cannot exceed {format_cents(MAX_PRICE_CENTS)}")
    return cents


def format_cents(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}{whole}.{frac:02d}"


def parse_tax_rate(value) -> int:
    """Accepts a fraction ("0.05") or a percentage ("5%") and returns basis points."""
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError("tax rate must be a decimal string, not a float")
    s = str(value).strip()
    percent = s.endswith("%")
    if percent:
        s = s[:-1].strip()
    try:
        rate = Decimal(s)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"invalid tax rate: {value!r}")
    if not rate.is_finite():
        raise ValidationError(f"invalid tax rate: {value!r}")
    bps = rate * (100 if percent else BPS_DENOMINATOR)
    if bps != bps.to_integral_value():
        raise ValidationError("tax rate cannot be finer than one basis point")
    bps = int(bps)
    if bps < 0 or bps > MAX_TAX_RATE_BPS:
        raise ValidationError("tax rate must be between 0 and 100%")
    return bps


def line_subtotal_cents(unit_price_cents: int, quantity: int) -> int:
    return unit_price_cents * quantity


def line_tax_cents(unit_price_cents: int, quantity: int, tax_rate_bps: int) -> int:
    exact = Decimal(unit_price_cents * quantity * tax_rate_bps) / BPS_DENOMINATOR
    return int(exact.quantize(Decimal(1), rounding=ROUND_HALF_EVEN))


def compute_totals(lines: Iterable[tuple[int, int, int]]) -> InvoiceTotals:
    """
    lines: (unit_price_cents, quantity, tax_rate_bps) per cart line.
    """
    subtotal = 0
    tax = 0
    for unit_price_cents, quantity, tax_rate_bps in lines:
        subtotal += line_subtotal_cents(unit_price_cents, quantity)
        tax += line_tax_cents(unit_price_cents, quantity, tax_rate_bps)
    return InvoiceTotals(subtotal_cents=subtotal, tax_cents=tax, total_cents=subtotal + tax)
