"""
storefront/vouchers/usage.py
----------------------------
Voucher usage counters (the checkout-side interface).

record_voucher_usage() is the ONLY place usage_count is incremented.
The cart engine never calls it: a cart can be abandoned, and counting
a use at apply time would burn the customer's allowance for nothing.

Concurrency mirrors the invoice-sequence approach: lock the voucher
row with SELECT … FOR UPDATE, increment, let the caller commit.
"""
import logging
from typing import List, Optional

from storefront import db
from storefront.vouchers.models import Voucher, VoucherUsage

logger = logging.getLogger(__name__)


def customer_usage_count(voucher: Voucher, user_id: Optional[int]) -> int:
    """How many times this customer has already used the voucher."""
    if user_id is None:
        return 0
    return (
        db.session.query(VoucherUsage)
        .filter(VoucherUsage.voucher_id == voucher.id,
                VoucherUsage.user_id == user_id)
        .count()
    )


def record_voucher_usage(voucher: Voucher, user_id: Optional[int] = None,
                         order_reference: Optional[str] = None) -> VoucherUsage:
    """
    Record one finalized use and bump the global counter.

    MUST be called inside the checkout transaction. The FOR UPDATE
    lock on the voucher row is held until the caller commits, so two
    checkouts racing for the last use serialise on this row.
    """
    locked = (
        db.session.query(Voucher)
        .filter(Voucher.id == voucher.id)
        .with_for_update()
        .populate_existing()
        .one()
    )
    usage = VoucherUsage(voucher_id=locked.id, user_id=user_id,
                         order_reference=order_reference)
    db.session.add(usage)
    locked.usage_count += 1
    db.session.flush()

    logger.info(f"Voucher {locked.code!r} used by user={user_id} order={order_reference!r} "
                f"({locked.usage_count}/{locked.usage_limit or '∞'})")
    return usage


def usage_history(voucher: Voucher) -> List[VoucherUsage]:
    """All recorded uses of a voucher, newest first."""
    return voucher.usages.order_by(VoucherUsage.used_at.desc(), VoucherUsage.id.desc()).all()
