"""
storefront/cart/engine.py
-------------------------
Cart recalculation engine.

recalculate() runs at the end of every mutating cart operation, on
a cart row the caller has already locked with SELECT … FOR UPDATE.
It is the only writer of the four cart totals (apart from clear,
which zeroes them directly).

Algorithm
─────────
1. Refresh each line's line_subtotal / line_tax / line_total from
   its unit snapshot × quantity (each rounded to 2 dp).
2. subtotal = Σ line_subtotal, tax = Σ line_tax, gross = Σ line_total.
3. No voucher (or no items) → discount 0, totals are the plain sums.
4. Voucher attached → re-validate against the fresh subtotal. If it
   no longer applies it is detached silently and step 3 is used.
   Otherwise discount = compute_discount(voucher, subtotal).
5. Tax on the discounted base is re-derived by a DiscountTaxStrategy:
     blended  (default): one cart-wide rate = tax / subtotal × 100
     pro_rata:           discount shared across lines by subtotal,
                          tax re-derived per line at its own rate
6. Write {subtotal, tax, discount, total} onto the cart together.

Carts can mix tax rates, so the blended rate is an approximation
under discount. It is the contract, not a bug; pro_rata exists so a
per-line model can be switched on via CART_DISCOUNT_TAX_STRATEGY
without touching anything else in this module.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_DOWN
from typing import Dict, List, Optional, Type

from flask import current_app

from storefront import errors
from storefront.pricing.tax import HUNDRED, Q, round2, to_decimal
from storefront.vouchers.validator import compute_discount, find_voucher, validate_voucher

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')


@dataclass
class CartTotals:
    """The four derived money values written onto a cart."""
    subtotal_excl_tax: Decimal = ZERO
    total_tax:         Decimal = ZERO
    discount_amount:   Decimal = ZERO
    total_amount:      Decimal = ZERO


# ── Discount-tax strategies ───────────────────────────────────────

class DiscountTaxStrategy:
    """Re-derives total tax once a cart-level discount has been taken off."""
    name = ''

    @classmethod
    def from_config(cls, cfg):
        return cls()

    def tax_after_discount(self, items, subtotal: Decimal, total_tax: Decimal,
                           discount: Decimal) -> Decimal:
        raise NotImplementedError


class BlendedRateStrategy(DiscountTaxStrategy):
    """
    new_tax = round2((subtotal - discount) × blended_rate / 100)
    where blended_rate = total_tax / subtotal × 100.
    """
    name = 'blended'

    def __init__(self, fallback_rate=Decimal('7')):
        self.fallback_rate = to_decimal(fallback_rate)

    @classmethod
    def from_config(cls, cfg):
        return cls(cfg.get('BLENDED_TAX_FALLBACK_RATE', Decimal('7')))

    def blended_rate(self, subtotal: Decimal, total_tax: Decimal) -> Decimal:
        if subtotal == 0:
            return self.fallback_rate
        return total_tax / subtotal * HUNDRED

    def tax_after_discount(self, items, subtotal, total_tax, discount):
        rate = self.blended_rate(subtotal, total_tax)
        return round2((subtotal - discount) * rate / HUNDRED)


class ProRataStrategy(DiscountTaxStrategy):
    """
    Share the discount across lines in proportion to line_subtotal,
    then re-derive each line's tax at that line's own rate.

    Allocation is largest-remainder: every share is rounded down to
    the cent and the leftover cents go to the lines with the biggest
    fractional parts (later lines win ties). Shares therefore sum to
    the discount exactly and each stays within [0, line_subtotal].
    """
    name = 'pro_rata'

    def allocate(self, items, subtotal: Decimal, discount: Decimal) -> List[Decimal]:
        if not items or subtotal == 0:
            return [ZERO for _ in items]

        exact  = [to_decimal(discount) * to_decimal(item.line_subtotal) / subtotal
                  for item in items]
        shares = [e.quantize(Q, rounding=ROUND_DOWN) for e in exact]

        leftover_cents = int((to_decimal(discount) - sum(shares, ZERO)) / Q)
        by_remainder = sorted(range(len(items)),
                              key=lambda i: (exact[i] - shares[i], i), reverse=True)
        for i in by_remainder[:leftover_cents]:
            shares[i] += Q
        return shares

    def tax_after_discount(self, items, subtotal, total_tax, discount):
        tax = ZERO
        for item, share in zip(items, self.allocate(items, subtotal, discount)):
            base = to_decimal(item.line_subtotal) - share
            tax += round2(base * to_decimal(item.tax_rate) / HUNDRED)
        return tax


STRATEGIES: Dict[str, Type[DiscountTaxStrategy]] = {
    BlendedRateStrategy.name: BlendedRateStrategy,
    ProRataStrategy.name:     ProRataStrategy,
}


def get_strategy(name: Optional[str] = None) -> DiscountTaxStrategy:
    """Build the configured strategy (CART_DISCOUNT_TAX_STRATEGY)."""
    cfg  = current_app.config
    name = name or cfg.get('CART_DISCOUNT_TAX_STRATEGY', BlendedRateStrategy.name)
    try:
        strategy_cls = STRATEGIES[name]
    except KeyError:
        raise ValueError(f'Unknown discount tax strategy: {name!r}')
    return strategy_cls.from_config(cfg)


# ── Engine ────────────────────────────────────────────────────────

def aggregate(items):
    """Refresh every line and return (subtotal, tax, gross) sums."""
    subtotal = tax = gross = ZERO
    for item in items:
        item.refresh_line_totals()
        subtotal += item.line_subtotal
        tax      += item.line_tax
        gross    += item.line_total
    return subtotal, tax, gross


def recalculate(cart, now: Optional[datetime] = None,
                strategy: Optional[DiscountTaxStrategy] = None) -> CartTotals:
    """
    Recompute and store all cart totals. See module docstring.

    MUST be called with the cart row locked by the current transaction.
    Never raises for voucher problems: an inapplicable voucher is
    detached and the cart falls back to undiscounted totals.
    """
    items = list(cart.items)
    subtotal, tax, gross = aggregate(items)

    if gross != subtotal + tax:
        logger.error(f"Cart {cart.id}: line totals out of balance "
                     f"(gross={gross} subtotal={subtotal} tax={tax})")

    totals = CartTotals(subtotal, tax, ZERO, gross)

    if not items:
        cart.detach_voucher(errors.EMPTY_CART)
    elif cart.voucher_code:
        voucher = find_voucher(cart.voucher_code)
        reason  = validate_voucher(voucher, subtotal, customer_id=cart.user_id, now=now)
        if reason:
            cart.detach_voucher(reason)
        else:
            discount   = compute_discount(voucher, subtotal)
            strategy   = strategy or get_strategy()
            new_tax    = strategy.tax_after_discount(items, subtotal, tax, discount)
            totals     = CartTotals(
                subtotal_excl_tax=subtotal,
                total_tax=new_tax,
                discount_amount=discount,
                total_amount=round2(subtotal - discount + new_tax),
            )

    cart.set_totals(totals.subtotal_excl_tax, totals.total_tax,
                    totals.discount_amount, totals.total_amount)
    return totals
