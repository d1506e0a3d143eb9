"""
storefront/cart/lifecycle.py
----------------------------
Cart creation by identity, guest → user merge, deletion and the
read view exposed to checkout / UI.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.exc import IntegrityError

from storefront import db
from storefront.errors import CartError, MISSING_IDENTITY
from storefront.cart.engine import recalculate
from storefront.cart.items import add_item
from storefront.cart.locking import lock_carts
from storefront.cart.models import Cart

logger = logging.getLogger(__name__)


@dataclass
class SkippedItem:
    """A guest line that could not be moved into the user's cart."""
    product_id: int
    quantity:   int
    reason:     str

    def to_dict(self) -> dict:
        return {'product_id': self.product_id, 'quantity': self.quantity, 'reason': self.reason}


@dataclass
class MergeResult:
    """Outcome of merge_guest_cart."""
    cart:          Cart
    merged:        List[int] = field(default_factory=list)          # product ids
    skipped:       List[SkippedItem] = field(default_factory=list)
    guest_cart_id: Optional[int] = None                             # None once deleted


# ── Identity ──────────────────────────────────────────────────────

def _lookup(user_id: Optional[int], session_id: Optional[str]) -> Optional[Cart]:
    if user_id is not None:
        return Cart.query.filter_by(user_id=user_id).first()
    return Cart.query.filter_by(session_id=session_id).first()


def find_or_create(user_id: Optional[int] = None, session_id: Optional[str] = None) -> Cart:
    """
    Return the cart for this identity, creating an empty one if needed.

    A registered user takes precedence: when user_id is given the
    session token is ignored, so a cart never carries both.
    """
    if user_id is None and not session_id:
        raise CartError(MISSING_IDENTITY)
    if user_id is not None:
        session_id = None

    cart = _lookup(user_id, session_id)
    if cart is not None:
        return cart

    cart = Cart(user_id=user_id, session_id=session_id)
    cart.reset()
    db.session.add(cart)
    try:
        db.session.flush()
    except IntegrityError:
        # Another request created it between our SELECT and INSERT
        db.session.rollback()
        cart = _lookup(user_id, session_id)
        if cart is None:
            raise
        return cart

    logger.info(f"Cart {cart.id} created for "
                f"{'user ' + str(user_id) if user_id is not None else 'guest session'}")
    return cart


def get_cart(cart_id: int) -> Optional[dict]:
    """Read view of a cart (see cart_view), or None."""
    cart = db.session.get(Cart, cart_id)
    return cart_view(cart) if cart is not None else None


def delete_cart(cart: Cart) -> None:
    """Remove a cart and (by cascade) its line items."""
    logger.info(f"Cart {cart.id}: deleted")
    db.session.delete(cart)
    db.session.flush()


# ── Merge ─────────────────────────────────────────────────────────

def merge_guest_cart(session_id: str, user_id: int) -> Optional[MergeResult]:
    """
    Move a guest cart's lines into the user's cart on login.

    Each guest line goes through add_item on the user cart, so
    quantities combine and stock is re-checked. A line that is
    rejected (out of stock, product withdrawn) is NOT dropped: it is
    reported in MergeResult.skipped and left in the guest cart, which
    survives until it is empty. Merged lines are removed from the
    guest cart.

    Returns None when there is no guest cart for session_id.
    """
    guest = Cart.query.filter_by(session_id=session_id).first()
    if guest is None:
        return None

    user_cart = find_or_create(user_id=user_id)
    guest, user_cart = _lock_pair(guest.id, user_cart.id)

    result = MergeResult(cart=user_cart, guest_cart_id=guest.id)
    for line in list(guest.items):
        try:
            user_cart = add_item(user_cart, line.product_id, line.quantity)
        except CartError as exc:
            logger.warning(f"Merge guest cart {guest.id} → {user_cart.id}: "
                           f"product {line.product_id} skipped ({exc.code})")
            result.skipped.append(SkippedItem(line.product_id, line.quantity, exc.code))
            continue
        guest.items.remove(line)
        result.merged.append(line.product_id)

    result.cart = user_cart
    if guest.items:
        recalculate(guest)
        db.session.flush()
    else:
        delete_cart(guest)
        result.guest_cart_id = None

    logger.info(f"Merged guest cart into cart {user_cart.id}: "
                f"{len(result.merged)} merged, {len(result.skipped)} skipped")
    return result


def _lock_pair(guest_id: int, user_cart_id: int):
    locked = {c.id: c for c in lock_carts([guest_id, user_cart_id])}
    return locked[guest_id], locked[user_cart_id]


# ── View ──────────────────────────────────────────────────────────

def _money(value) -> str:
    return f"{value:.2f}"


def cart_view(cart: Cart) -> dict:
    """
    The cart as exposed to checkout and UI. Money values are 2-dp strings.
    """
    return {
        'id':                cart.id,
        'user_id':           cart.user_id,
        'session_id':        cart.session_id,
        'voucher_code':      cart.voucher_code,
        'has_items':         cart.has_items,
        'voucher_attached':  cart.voucher_attached,
        'items': [{
            'product_id':          item.product_id,
            'product_name':        item.product.name if item.product else None,
            'sku':                 item.product.sku if item.product else None,
            'quantity':            item.quantity,
            'unit_price_excl_tax': _money(item.unit_price_excl_tax),
            'tax_rate':            _money(item.tax_rate),
            'unit_tax_amount':     _money(item.unit_tax_amount),
            'unit_price_incl_tax': _money(item.unit_price_incl_tax),
            'line_subtotal':       _money(item.line_subtotal),
            'line_tax':            _money(item.line_tax),
            'line_total':          _money(item.line_total),
        } for item in cart.items],
        'subtotal_excl_tax': _money(cart.subtotal_excl_tax),
        'total_tax':         _money(cart.total_tax),
        'discount_amount':   _money(cart.discount_amount),
        'total_amount':      _money(cart.total_amount),
    }
