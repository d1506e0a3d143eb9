"""
storefront/cart/items.py
------------------------
Line-item store: add / update quantity / remove / clear.

Each operation:
  1. locks the cart row (and, for stock checks, the product row)
  2. runs every check before the first write, so a CartError means
     the cart is exactly as it was
  3. mutates line items through the Cart.items relationship
  4. calls the recalculation engine
  5. returns the cart

MUST be called inside an open SQLAlchemy transaction; the caller
commits (or rolls back on CartError).
"""
import logging
from datetime import datetime
from typing import Optional

from storefront import db
from storefront.catalog.models import lock_product
from storefront.errors import (
    CartError, INVALID_QUANTITY, ITEM_NOT_IN_CART, OUT_OF_STOCK, PRODUCT_UNAVAILABLE,
)
from storefront.pricing.tax import compute_tax, to_decimal
from storefront.cart.engine import recalculate
from storefront.cart.locking import lock_cart
from storefront.cart.models import CartItem

logger = logging.getLogger(__name__)


# ── Helpers ───────────────────────────────────────────────────────

def find_line(cart, product_id: int) -> Optional[CartItem]:
    """The cart's line for product_id, or None."""
    for item in cart.items:
        if item.product_id == product_id:
            return item
    return None


def _check_stock(product_id: int, required_qty: int, require_active: bool = True):
    """Lock the product row and confirm it can supply required_qty units."""
    product = lock_product(product_id)
    if product is None or (require_active and not product.is_active):
        raise CartError(PRODUCT_UNAVAILABLE)
    if product.stock_quantity < required_qty:
        raise CartError(
            OUT_OF_STOCK,
            f'Insufficient stock for "{product.name}". '
            f'Available: {product.stock_quantity}, requested: {required_qty}.'
        )
    return product


def _require_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise CartError(INVALID_QUANTITY)
    return quantity


# ── Operations ────────────────────────────────────────────────────

def add_item(cart, product_id: int, quantity: int = 1, now: Optional[datetime] = None):
    """
    Add `quantity` units of a product.

    Existing line → quantity is increased, stock re-checked against the
    new total, price snapshot left untouched.
    New line      → price/tax snapshot captured from the catalog now.
    """
    quantity = _require_quantity(quantity)
    cart     = lock_cart(cart.id)
    line     = find_line(cart, product_id)
    new_qty  = quantity + (line.quantity if line else 0)

    product = _check_stock(product_id, new_qty)

    if line is not None:
        line.quantity = new_qty
    else:
        unit_tax, unit_incl = compute_tax(product.price_excl_tax, product.tax_rate)
        cart.items.append(CartItem(
            product_id          = product.id,
            quantity            = new_qty,
            unit_price_excl_tax = to_decimal(product.price_excl_tax),
            tax_rate            = to_decimal(product.tax_rate),
            unit_tax_amount     = unit_tax,
            unit_price_incl_tax = unit_incl,
        ))

    recalculate(cart, now=now)
    db.session.flush()
    logger.info(f"Cart {cart.id}: +{quantity} × product {product_id} (qty now {new_qty})")
    return cart


def update_quantity(cart, product_id: int, quantity: int, now: Optional[datetime] = None):
    """
    Set a line's absolute quantity. quantity <= 0 removes the line.
    Only quantity changes; the snapshot stays.
    """
    if isinstance(quantity, int) and not isinstance(quantity, bool) and quantity <= 0:
        return remove_item(cart, product_id, now=now)
    quantity = _require_quantity(quantity)

    cart = lock_cart(cart.id)
    line = find_line(cart, product_id)
    if line is None:
        raise CartError(ITEM_NOT_IN_CART)

    _check_stock(product_id, quantity, require_active=False)

    line.quantity = quantity
    recalculate(cart, now=now)
    db.session.flush()
    logger.info(f"Cart {cart.id}: product {product_id} qty set to {quantity}")
    return cart


def remove_item(cart, product_id: int, now: Optional[datetime] = None):
    """Delete the line for product_id if present, then recalculate."""
    cart = lock_cart(cart.id)
    line = find_line(cart, product_id)
    if line is not None:
        cart.items.remove(line)     # delete-orphan cascade issues the DELETE
        logger.info(f"Cart {cart.id}: product {product_id} removed")
    recalculate(cart, now=now)
    db.session.flush()
    return cart


def clear(cart):
    """
    Drop every line, the voucher and all totals in one step.
    The result is the empty-cart state by construction, so no
    recalculation pass is needed.
    """
    cart = lock_cart(cart.id)
    cart.items.clear()
    cart.reset()
    db.session.flush()
    logger.info(f"Cart {cart.id}: cleared")
    return cart
