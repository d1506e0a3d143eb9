"""
storefront/cart/discounts.py
----------------------------
Attaching and detaching vouchers on a cart.

apply_voucher validates against the cart's *current* subtotal and
either rejects with the specific reason (cart untouched) or stores
the code and recalculates. From then on the recalculation engine
re-validates the voucher on every mutation and drops it silently
when it stops applying.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from storefront import db
from storefront.errors import CartError, EMPTY_CART
from storefront.pricing.tax import to_decimal
from storefront.vouchers.validator import compute_discount, find_voucher, validate_voucher
from storefront.cart.engine import recalculate
from storefront.cart.locking import lock_cart

logger = logging.getLogger(__name__)


def apply_voucher(cart, code: str, customer_id: Optional[int] = None,
                  now: Optional[datetime] = None):
    """Attach a voucher after validating it against the live subtotal."""
    cart = lock_cart(cart.id)
    if not cart.has_items:
        raise CartError(EMPTY_CART)

    voucher = find_voucher(code)
    reason  = validate_voucher(voucher, cart.subtotal_excl_tax,
                               customer_id=customer_id, now=now)
    if reason:
        raise CartError(reason)

    cart.voucher_code = voucher.code
    recalculate(cart, now=now)
    db.session.flush()
    logger.info(f"Cart {cart.id}: voucher {voucher.code!r} applied, discount {cart.discount_amount}")
    return cart


def remove_voucher(cart, now: Optional[datetime] = None):
    """Detach whatever voucher is on the cart and recalculate."""
    cart = lock_cart(cart.id)
    cart.voucher_code = None
    recalculate(cart, now=now)
    db.session.flush()
    return cart


def preview_voucher(cart, code: str, customer_id: Optional[int] = None,
                    now: Optional[datetime] = None) -> dict:
    """
    Dry run of apply_voucher: same checks, nothing written.

    Returns:
        {'voucher': Voucher, 'discount_amount': Decimal, 'new_subtotal': Decimal}
    """
    voucher  = find_voucher(code)
    subtotal = to_decimal(cart.subtotal_excl_tax)
    reason   = validate_voucher(voucher, subtotal, customer_id=customer_id, now=now)
    if reason:
        raise CartError(reason)

    discount = compute_discount(voucher, subtotal)
    return {
        'voucher':         voucher,
        'discount_amount': discount,
        'new_subtotal':    max(subtotal - discount, Decimal('0.00')),
    }
