"""
storefront/cart/__init__.py
---------------------------
Shopping cart blueprint.
URL prefix: /cart
"""
from flask import Blueprint

cart = Blueprint('cart', __name__)

from storefront.cart import models  # noqa: F401, E402  registers Cart/CartItem with SQLAlchemy
from storefront.cart import routes  # noqa: F401, E402
