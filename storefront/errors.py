"""
storefront/errors.py
--------------------
Typed request-rejection errors for cart and voucher operations.

Every cart operation performs all of its checks before the first
write, so a CartError always means "nothing changed". Routes turn
it into {"error": code, "message": ...} with HTTP 400.
"""

PRODUCT_UNAVAILABLE        = 'PRODUCT_UNAVAILABLE'
OUT_OF_STOCK               = 'OUT_OF_STOCK'
INVALID_CODE               = 'INVALID_CODE'
NOT_YET_ACTIVE             = 'NOT_YET_ACTIVE'
EXPIRED                    = 'EXPIRED'
LIMIT_REACHED              = 'LIMIT_REACHED'
PER_CUSTOMER_LIMIT_REACHED = 'PER_CUSTOMER_LIMIT_REACHED'
BELOW_MINIMUM              = 'BELOW_MINIMUM'
MISSING_IDENTITY           = 'MISSING_IDENTITY'
INVALID_QUANTITY           = 'INVALID_QUANTITY'
ITEM_NOT_IN_CART           = 'ITEM_NOT_IN_CART'
EMPTY_CART                 = 'EMPTY_CART'
CART_NOT_FOUND             = 'CART_NOT_FOUND'

MESSAGES = {
    PRODUCT_UNAVAILABLE:        'Product not found or inactive.',
    OUT_OF_STOCK:               'Insufficient stock.',
    INVALID_CODE:               'Invalid voucher code.',
    NOT_YET_ACTIVE:             'Voucher not yet active.',
    EXPIRED:                    'Voucher has expired.',
    LIMIT_REACHED:              'Voucher usage limit reached.',
    PER_CUSTOMER_LIMIT_REACHED: 'You have reached the usage limit for this voucher.',
    BELOW_MINIMUM:              'Cart subtotal is below the voucher minimum order amount.',
    MISSING_IDENTITY:           'Either a user or a session id is required.',
    INVALID_QUANTITY:           'Quantity must be at least 1.',
    ITEM_NOT_IN_CART:           'Product is not in the cart.',
    EMPTY_CART:                 'Add items to the cart before applying a voucher.',
    CART_NOT_FOUND:             'Cart not found.',
}


class CartError(ValueError):
    """A cart or voucher operation was rejected; the cart is unchanged."""

    def __init__(self, code: str, message: str = None):
        self.code    = code
        self.message = message or MESSAGES.get(code, code)
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {'error': self.code, 'message': self.message}

    def __repr__(self):
        return f"<CartError {self.code}: {self.message}>"
