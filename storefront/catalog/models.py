"""
storefront/catalog/models.py
----------------------------
Read-only view of the product catalog as the cart consumes it.

The catalog is owned by another subsystem. The cart reads exactly
four things from a product: status, stock_quantity, price_excl_tax
and tax_rate, and only at the moment a line item is first inserted
(price/tax) or its quantity changes (status/stock).
"""
import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from storefront import db
from storefront.pricing.tax import compute_tax


class ProductStatus(enum.Enum):
    active       = "active"
    inactive     = "inactive"
    out_of_stock = "out_of_stock"


class Product(db.Model):
    """A sellable product with a tax-exclusive price and its own tax rate."""
    __tablename__ = 'products'

    id             = db.Column(db.Integer, primary_key=True)
    sku            = db.Column(db.String(64), unique=True, nullable=False, index=True)
    name           = db.Column(db.String(200), nullable=False)
    price_excl_tax = db.Column(db.Numeric(10, 2), nullable=False)
    tax_rate       = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal('7.00'))
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    status         = db.Column(db.Enum(ProductStatus), nullable=False,
                               default=ProductStatus.active, index=True)
    created_at     = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at     = db.Column(db.DateTime, nullable=False, default=datetime.utcnow,
                               onupdate=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint('stock_quantity >= 0', name='check_stock_non_negative'),
        db.CheckConstraint('price_excl_tax > 0', name='check_price_positive'),
        db.CheckConstraint('tax_rate >= 0 AND tax_rate <= 100', name='check_tax_rate_valid'),
    )

    # ── Computed helpers ──────────────────────────────────────────
    @property
    def is_active(self) -> bool:
        return self.status == ProductStatus.active

    @property
    def price_incl_tax(self) -> Decimal:
        """Current tax-inclusive unit price, same rounding as cart snapshots."""
        return compute_tax(self.price_excl_tax, self.tax_rate)[1]

    def __repr__(self):
        return f"<Product {self.sku!r} {self.name!r}>"


# ── Catalog interface ─────────────────────────────────────────────

def get_product(product_id: int) -> Optional[Product]:
    """Return the product row, or None if it does not exist."""
    return db.session.get(Product, product_id)


def lock_product(product_id: int) -> Optional[Product]:
    """
    SELECT … FOR UPDATE on one product row.

    Used for the stock check inside add/update so that two concurrent
    carts cannot both pass the check against the same stock level.
    The lock is held until the caller's transaction ends.
    """
    return (
        db.session.query(Product)
        .filter(Product.id == product_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
