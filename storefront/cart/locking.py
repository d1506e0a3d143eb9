"""
storefront/cart/locking.py
--------------------------
Row-level locking for cart read-modify-write sequences.

Every cart mutation reads the full item set, computes totals and
writes them back. Without a lock two concurrent requests on the same
cart can each compute from a stale item set, and the last writer
silently clobbers a correct total:

    Tx A: reads items {P1}        → writes total for {P1}      ┐
    Tx B: reads items {P1}, adds P2 → writes total for {P1,P2} ┘ order decides

With SELECT … FOR UPDATE on the cart row, Tx B blocks until Tx A
commits and then reads A's result. The lock is released when the
caller's transaction commits or rolls back; routes own that.

SQLite (tests) ignores FOR UPDATE; the code path is the same.
"""
from typing import Iterable, List

from storefront import db
from storefront.errors import CartError, CART_NOT_FOUND


def lock_cart(cart_id: int):
    """
    Lock and reload one cart row.

    populate_existing() makes sure attributes already in the identity
    map are overwritten with what the database holds *after* the lock
    was granted, not what this session saw earlier.
    """
    from storefront.cart.models import Cart

    cart = (
        db.session.query(Cart)
        .filter(Cart.id == cart_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if cart is None:
        raise CartError(CART_NOT_FOUND)
    return cart


def lock_carts(cart_ids: Iterable[int]) -> List:
    """
    Lock several carts in ascending id order.

    A fixed order prevents deadlocks when two transactions need the
    same pair of rows (e.g. two merges touching the same user cart).
    """
    return [lock_cart(cid) for cid in sorted(set(cart_ids))]
