"""
storefront/vouchers/forms.py
----------------------------
Validation for voucher create / edit payloads.
Returns a dict of field -> error_message.
An empty dict means all fields are valid.
"""
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from storefront.vouchers.models import DiscountType, VoucherStatus

REQUIRED_FIELDS = ('code', 'name', 'discount_type', 'discount_value',
                   'start_date', 'end_date', 'status')


def _text(data: dict, name: str, default: str = '') -> str:
    value = data.get(name)
    return default if value is None else str(value).strip()


def _decimal(raw: str):
    try:
        return Decimal(raw)
    except InvalidOperation:
        return None


def _datetime(raw: str):
    """ISO-8601 → naive UTC datetime (stored dates carry no tzinfo)."""
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def validate_voucher_payload(data: dict, partial: bool = False) -> dict:
    """
    Validate raw voucher fields from a JSON body or form.

    Args:
        data:    dict of raw values
        partial: True for edits, where absent fields keep their
                 current value and are not reported as missing

    Returns:
        dict of {field_name: error_message}, empty if all valid.
    """
    errors = {}

    def missing(name):
        return not partial and not _text(data, name)

    # ── code / name ───────────────────────────────────────────────
    if missing('code'):
        errors['code'] = 'Voucher code is required.'
    elif len(_text(data, 'code')) > 50:
        errors['code'] = 'Voucher code must be 50 characters or fewer.'

    if missing('name'):
        errors['name'] = 'Name is required.'
    elif len(_text(data, 'name')) > 200:
        errors['name'] = 'Name must be 200 characters or fewer.'

    # ── discount_type / discount_value ────────────────────────────
    dtype = _text(data, 'discount_type')
    if missing('discount_type'):
        errors['discount_type'] = 'Discount type is required.'
    elif dtype and dtype not in DiscountType.__members__:
        errors['discount_type'] = 'Discount type must be percentage or fixed_amount.'

    value_raw = _text(data, 'discount_value')
    if missing('discount_value'):
        errors['discount_value'] = 'Discount value is required.'
    elif value_raw:
        value = _decimal(value_raw)
        if value is None:
            errors['discount_value'] = 'Discount value must be a valid number.'
        elif value <= 0:
            errors['discount_value'] = 'Discount value must be greater than zero.'
        elif dtype == 'percentage' and value > 100:
            errors['discount_value'] = 'Percentage discount cannot exceed 100.'

    # ── optional money fields ─────────────────────────────────────
    for field in ('max_discount_amount', 'minimum_order_amount'):
        raw = _text(data, field)
        if raw:
            amount = _decimal(raw)
            if amount is None:
                errors[field] = 'Must be a valid number.'
            elif amount < 0:
                errors[field] = 'Cannot be negative.'

    # ── validity window ───────────────────────────────────────────
    start = end = None
    for field in ('start_date', 'end_date'):
        raw = _text(data, field)
        if missing(field):
            errors[field] = 'Date is required.'
        elif raw:
            parsed = _datetime(raw)
            if parsed is None:
                errors[field] = 'Date must be ISO-8601 (YYYY-MM-DD or YYYY-MM-DDTHH:MM).'
            elif field == 'start_date':
                start = parsed
            else:
                end = parsed
    if start and end and end <= start:
        errors['end_date'] = 'End date must be after start date.'

    # ── usage limits ──────────────────────────────────────────────
    for field in ('usage_limit', 'usage_limit_per_customer'):
        raw = _text(data, field)
        if raw:
            try:
                if int(raw) < 1:
                    errors[field] = 'Limit must be at least 1.'
            except ValueError:
                errors[field] = 'Limit must be a whole number.'

    status = _text(data, 'status')
    if status and status not in VoucherStatus.__members__:
        errors['status'] = 'Status must be active or inactive.'

    return errors


def parse_voucher_payload(data: dict, partial: bool = False) -> dict:
    """
    Convert validated raw fields to model-ready Python types.
    Call only after validate_voucher_payload returns no errors.
    With partial=True only the fields present in data are returned.
    """
    def present(name):
        # Blank clears a nullable field but never a required one
        if name in REQUIRED_FIELDS:
            return bool(_text(data, name))
        return name in data

    def optional_decimal(name):
        raw = _text(data, name)
        return Decimal(raw) if raw else None

    def optional_int(name):
        raw = _text(data, name)
        return int(raw) if raw else None

    parsed = {
        'code':                     lambda: _text(data, 'code'),
        'name':                     lambda: _text(data, 'name'),
        'description':              lambda: _text(data, 'description') or None,
        'discount_type':            lambda: DiscountType[_text(data, 'discount_type')],
        'discount_value':           lambda: Decimal(_text(data, 'discount_value')),
        'max_discount_amount':      lambda: optional_decimal('max_discount_amount'),
        'minimum_order_amount':     lambda: optional_decimal('minimum_order_amount') or Decimal('0'),
        'start_date':               lambda: _datetime(_text(data, 'start_date')),
        'end_date':                 lambda: _datetime(_text(data, 'end_date')),
        'usage_limit':              lambda: optional_int('usage_limit'),
        'usage_limit_per_customer': lambda: optional_int('usage_limit_per_customer'),
        'status':                   lambda: VoucherStatus[_text(data, 'status', 'active')],
    }

    if partial:
        return {name: build() for name, build in parsed.items() if present(name)}

    result = {name: build() for name, build in parsed.items()}
    if not present('usage_limit_per_customer'):
        result['usage_limit_per_customer'] = 1
    return result
