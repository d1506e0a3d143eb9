"""
storefront/pricing/tax.py
-------------------------
Tax calculator for unit prices.

Rounding rule: round half away from zero to 2 decimal places
(ROUND_HALF_UP on Decimal), applied at the moment each value is
derived. Cart aggregation sums these already-rounded values, so
rounding drift stays bounded per line rather than per cart.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Tuple


Q = Decimal('0.01')   # quantize target
HUNDRED = Decimal('100')


def to_decimal(value) -> Decimal:
    """Coerce int / str / Decimal / Numeric column value to Decimal (never via float)."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round2(value) -> Decimal:
    """Round to 2 dp, half away from zero."""
    return to_decimal(value).quantize(Q, rounding=ROUND_HALF_UP)


def compute_tax(price_excl, rate) -> Tuple[Decimal, Decimal]:
    """
    Derive the tax amount and tax-inclusive price for a price excluding tax.

        tax_amount = round2(price_excl * rate / 100)
        price_incl = round2(price_excl + tax_amount)

    Args:
        price_excl: unit price excluding tax
        rate:       tax rate in percent (7 means 7%)

    Returns:
        (tax_amount, price_incl) as Decimals with 2 dp
    """
    price_excl = to_decimal(price_excl)
    tax_amount = round2(price_excl * to_decimal(rate) / HUNDRED)
    price_incl = round2(price_excl + tax_amount)
    return tax_amount, price_incl
