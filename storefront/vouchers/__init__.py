"""
storefront/vouchers/__init__.py
-------------------------------
Voucher administration blueprint.
URL prefix: /vouchers
"""
from flask import Blueprint

vouchers = Blueprint('vouchers', __name__)

from storefront.vouchers import models  # noqa: F401, E402  registers Voucher/VoucherUsage with SQLAlchemy
from storefront.vouchers import routes  # noqa: F401, E402
