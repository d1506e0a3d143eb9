"""
storefront/vouchers/models.py
-----------------------------
Voucher and VoucherUsage models.

A Voucher carries one discount rule plus its eligibility constraints:

  percentage    → discount_value % of the pre-tax subtotal,
                  optionally capped by max_discount_amount
  fixed_amount  → discount_value off the pre-tax subtotal

The cart engine only ever reads vouchers. usage_count moves only
through storefront.vouchers.usage.record_voucher_usage, which the
checkout subsystem calls after a voucher-bearing cart is finalized.
"""
import enum
from datetime import datetime
from decimal import Decimal

from storefront import db


class DiscountType(enum.Enum):
    percentage   = "percentage"
    fixed_amount = "fixed_amount"


class VoucherStatus(enum.Enum):
    active   = "active"
    inactive = "inactive"


class Voucher(db.Model):
    """A promotional code with a discount rule and eligibility window."""
    __tablename__ = 'vouchers'

    id                       = db.Column(db.Integer, primary_key=True)
    code                     = db.Column(db.String(50), unique=True, nullable=False, index=True)
    name                     = db.Column(db.String(200), nullable=False)
    description              = db.Column(db.Text, nullable=True)
    discount_type            = db.Column(db.Enum(DiscountType), nullable=False)
    discount_value           = db.Column(db.Numeric(10, 2), nullable=False)
    max_discount_amount      = db.Column(db.Numeric(10, 2), nullable=True)    # percentage only
    minimum_order_amount     = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal('0.00'))
    start_date               = db.Column(db.DateTime, nullable=False)         # UTC
    end_date                 = db.Column(db.DateTime, nullable=False)         # UTC
    usage_limit              = db.Column(db.Integer, nullable=True)           # None = unlimited
    usage_limit_per_customer = db.Column(db.Integer, nullable=True)           # None = unlimited
    usage_count              = db.Column(db.Integer, nullable=False, default=0)
    status                   = db.Column(db.Enum(VoucherStatus), nullable=False,
                                         default=VoucherStatus.active)
    created_at               = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    usages = db.relationship('VoucherUsage', backref='voucher', lazy='dynamic',
                             cascade='all, delete-orphan')

    __table_args__ = (
        db.CheckConstraint('discount_value > 0', name='check_voucher_value_positive'),
        db.CheckConstraint('usage_count >= 0', name='check_voucher_usage_non_negative'),
    )

    @property
    def is_active(self) -> bool:
        return self.status == VoucherStatus.active

    def to_dict(self) -> dict:
        def money(v):
            return None if v is None else str(v)
        return {
            'id':                       self.id,
            'code':                     self.code,
            'name':                     self.name,
            'description':              self.description,
            'discount_type':            self.discount_type.value,
            'discount_value':           money(self.discount_value),
            'max_discount_amount':      money(self.max_discount_amount),
            'minimum_order_amount':     money(self.minimum_order_amount),
            'start_date':               self.start_date.isoformat(),
            'end_date':                 self.end_date.isoformat(),
            'usage_limit':              self.usage_limit,
            'usage_limit_per_customer': self.usage_limit_per_customer,
            'usage_count':              self.usage_count,
            'status':                   self.status.value,
        }

    def __repr__(self):
        return f'<Voucher {self.code!r} {self.discount_type.value} {self.discount_value}>'


class VoucherUsage(db.Model):
    """
    One finalized use of a voucher. Per-customer limits count these rows.
    user_id is NULL for guest checkouts.
    """
    __tablename__ = 'voucher_usage'

    id              = db.Column(db.Integer, primary_key=True)
    voucher_id      = db.Column(db.Integer, db.ForeignKey('vouchers.id', ondelete='CASCADE'),
                                nullable=False, index=True)
    user_id         = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    order_reference = db.Column(db.String(64), nullable=True)
    used_at         = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    user = db.relationship('User', lazy='select')

    def __repr__(self):
        return f'<VoucherUsage voucher={self.voucher_id} user={self.user_id} order={self.order_reference!r}>'
