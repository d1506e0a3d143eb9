"""
storefront/vouchers/validator.py
--------------------------------
Voucher eligibility checks and discount computation.

No writes happen here, only reads (the per-customer usage count).
Callers decide what a failed check means: apply_voucher rejects the
request, the recalculation engine silently detaches the voucher.
"""
from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Optional

from storefront import db, errors
from storefront.pricing.tax import HUNDRED, round2, to_decimal
from storefront.vouchers.models import DiscountType, Voucher
from storefront.vouchers.usage import customer_usage_count


def find_voucher(code: Optional[str]) -> Optional[Voucher]:
    """Look a voucher up by its code (exact match after trimming)."""
    if not code:
        return None
    return db.session.query(Voucher).filter(Voucher.code == code.strip()).first()


def validate_voucher(voucher: Optional[Voucher], subtotal_excl_tax,
                     customer_id: Optional[int] = None,
                     now: Optional[datetime] = None) -> Optional[str]:
    """
    Check a voucher against a candidate pre-tax subtotal.

    Order matters: the first failing check is the reported reason:
      1. exists and active                → INVALID_CODE
      2. inside [start_date, end_date]    → NOT_YET_ACTIVE / EXPIRED
      3. global usage cap                 → LIMIT_REACHED
      4. per-customer cap (known users)   → PER_CUSTOMER_LIMIT_REACHED
      5. minimum order amount             → BELOW_MINIMUM

    Returns None when the voucher is usable, else the reason code.
    """
    if voucher is None or not voucher.is_active:
        return errors.INVALID_CODE

    now = now or datetime.utcnow()
    if now < voucher.start_date:
        return errors.NOT_YET_ACTIVE
    if now > voucher.end_date:
        return errors.EXPIRED

    if voucher.usage_limit is not None and voucher.usage_count >= voucher.usage_limit:
        return errors.LIMIT_REACHED

    if voucher.usage_limit_per_customer is not None and customer_id is not None:
        if customer_usage_count(voucher, customer_id) >= voucher.usage_limit_per_customer:
            return errors.PER_CUSTOMER_LIMIT_REACHED

    if to_decimal(subtotal_excl_tax) < to_decimal(voucher.minimum_order_amount):
        return errors.BELOW_MINIMUM

    return None


def compute_discount(voucher: Voucher, subtotal_excl_tax) -> Decimal:
    """
    Discount amount for a validated voucher, bounded to [0, subtotal].

    percentage:   subtotal × value / 100, clamped to max_discount_amount if set
    fixed_amount: value
    """
    subtotal = to_decimal(subtotal_excl_tax)
    value    = to_decimal(voucher.discount_value)

    if voucher.discount_type == DiscountType.percentage:
        raw = round2(subtotal * value / HUNDRED)
        if voucher.max_discount_amount is not None:
            raw = min(raw, to_decimal(voucher.max_discount_amount))
    else:
        raw = value

    return round2(max(min(raw, subtotal), Decimal('0')))
