import logging
from datetime import datetime
from decimal import Decimal

from storefront import db
from storefront.pricing.tax import round2, to_decimal

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')


class Cart(db.Model):
    """
    A shopping cart owned by exactly one identity: a registered user
    OR an anonymous session token, never both and never neither.

    The four money columns are derived state written only by the
    recalculation engine (or zeroed by clear). The cart has no status
    column; its state is the pair (has_items, voucher_attached):

        empty,     no voucher   ← the only legal empty state
        populated, no voucher
        populated, voucher

    detach_voucher() is the single transition that drops a voucher
    the engine found to be no longer applicable.
    """
    __tablename__ = 'carts'

    id                = db.Column(db.Integer, primary_key=True)
    user_id           = db.Column(db.Integer, db.ForeignKey('users.id'), unique=True, nullable=True)
    session_id        = db.Column(db.String(128), unique=True, nullable=True)
    voucher_code      = db.Column(db.String(50), nullable=True)
    subtotal_excl_tax = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    total_tax         = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    discount_amount   = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    total_amount      = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    created_at        = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at        = db.Column(db.DateTime, nullable=False, default=datetime.utcnow,
                                  onupdate=datetime.utcnow)

    # ── Relationships ─────────────────────────────────────────────
    items = db.relationship('CartItem', backref='cart', lazy='select',
                            cascade='all, delete-orphan', order_by='CartItem.id')
    user  = db.relationship('User', lazy='select')

    __table_args__ = (
        db.CheckConstraint(
            '(user_id IS NULL AND session_id IS NOT NULL) OR '
            '(user_id IS NOT NULL AND session_id IS NULL)',
            name='check_cart_single_identity',
        ),
    )

    # ── State ─────────────────────────────────────────────────────
    @property
    def has_items(self) -> bool:
        return len(self.items) > 0

    @property
    def voucher_attached(self) -> bool:
        return self.voucher_code is not None

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    def detach_voucher(self, reason: str) -> None:
        """Drop the attached voucher because it no longer applies."""
        if self.voucher_code is None:
            return
        logger.info(f"Cart {self.id}: voucher {self.voucher_code!r} detached ({reason})")
        self.voucher_code = None

    def set_totals(self, subtotal, tax, discount, total) -> None:
        """Write all four totals together."""
        self.subtotal_excl_tax = subtotal
        self.total_tax         = tax
        self.discount_amount   = discount
        self.total_amount      = total

    def reset(self) -> None:
        """Empty-cart invariant: no voucher, every total zero."""
        self.voucher_code = None
        self.set_totals(ZERO, ZERO, ZERO, ZERO)

    def __repr__(self):
        owner = f"user={self.user_id}" if self.user_id else f"session={self.session_id!r}"
        return f"<Cart {self.id} {owner} total={self.total_amount}>"


class CartItem(db.Model):
    """
    One product line inside a Cart.

    The four unit_* / tax_rate columns are a snapshot taken when the
    line is first inserted. Re-adding the same product only bumps
    quantity, so later catalog price edits never reach this line.
    The line_* columns are derived from the snapshot and quantity.
    """
    __tablename__ = 'cart_items'

    id                  = db.Column(db.Integer, primary_key=True)
    cart_id             = db.Column(db.Integer, db.ForeignKey('carts.id', ondelete='CASCADE'),
                                    nullable=False, index=True)
    product_id          = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=False)
    quantity            = db.Column(db.Integer, nullable=False)
    unit_price_excl_tax = db.Column(db.Numeric(10, 2), nullable=False)
    tax_rate            = db.Column(db.Numeric(5, 2), nullable=False)
    unit_tax_amount     = db.Column(db.Numeric(10, 2), nullable=False)
    unit_price_incl_tax = db.Column(db.Numeric(10, 2), nullable=False)
    line_subtotal       = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    line_tax            = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    line_total          = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    added_at            = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    # ── Relationship ──────────────────────────────────────────────
    product = db.relationship('Product', lazy='select')

    __table_args__ = (
        db.UniqueConstraint('cart_id', 'product_id', name='uq_cart_item_product'),
        db.CheckConstraint('quantity > 0', name='check_cart_item_qty_positive'),
    )

    def refresh_line_totals(self) -> None:
        """Re-derive line_* from the unit snapshot and current quantity."""
        qty = Decimal(self.quantity)
        self.line_subtotal = round2(to_decimal(self.unit_price_excl_tax) * qty)
        self.line_tax      = round2(to_decimal(self.unit_tax_amount) * qty)
        self.line_total    = self.line_subtotal + self.line_tax

    def __repr__(self):
        return f"<CartItem cart={self.cart_id} product={self.product_id} qty={self.quantity}>"
