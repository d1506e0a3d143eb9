"""
storefront/vouchers/routes.py
-----------------------------
Admin JSON API for managing vouchers and inspecting their usage.
"""
from datetime import datetime

from flask import abort, current_app, jsonify, request
from sqlalchemy.exc import IntegrityError

from storefront import db
from storefront.auth.decorators import admin_required
from storefront.vouchers import vouchers
from storefront.vouchers.forms import parse_voucher_payload, validate_voucher_payload
from storefront.vouchers.models import DiscountType, Voucher, VoucherStatus
from storefront.vouchers.usage import usage_history


# ── Helpers ───────────────────────────────────────────────────────

def _payload() -> dict:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def _get_or_404(voucher_id: int) -> Voucher:
    voucher = db.session.get(Voucher, voucher_id)
    if voucher is None:
        abort(404)
    return voucher


def _validation_failed(errors: dict):
    return jsonify({'error': 'VALIDATION_ERROR',
                    'message': 'Voucher data is invalid.',
                    'fields': errors}), 400


def _duplicate_code(code: str):
    return jsonify({'error': 'DUPLICATE_CODE',
                    'message': f'Voucher code "{code}" already exists.'}), 400


def _cross_field_errors(voucher: Voucher) -> dict:
    """Checks that need the merged (stored + submitted) state of an edit."""
    errors = {}
    if voucher.end_date <= voucher.start_date:
        errors['end_date'] = 'End date must be after start date.'
    if voucher.discount_type == DiscountType.percentage and voucher.discount_value > 100:
        errors['discount_value'] = 'Percentage discount cannot exceed 100.'
    return errors


# ── List ──────────────────────────────────────────────────────────

@vouchers.route('/', methods=['GET'])
@admin_required
def index():
    """
    Query params:
        status      - 'active' | 'inactive'
        active_only - '1' → active status AND inside the validity window now
    """
    query = Voucher.query

    status = request.args.get('status', '').strip()
    if status:
        if status not in VoucherStatus.__members__:
            return _validation_failed({'status': 'Status must be active or inactive.'})
        query = query.filter(Voucher.status == VoucherStatus[status])

    if request.args.get('active_only') in ('1', 'true', 'yes'):
        now = datetime.utcnow()
        query = query.filter(Voucher.status == VoucherStatus.active,
                             Voucher.start_date <= now,
                             Voucher.end_date >= now)

    rows = query.order_by(Voucher.created_at.desc(), Voucher.id.desc()).all()
    return jsonify({'vouchers': [v.to_dict() for v in rows]})


@vouchers.route('/<int:voucher_id>', methods=['GET'])
@admin_required
def detail(voucher_id):
    return jsonify({'voucher': _get_or_404(voucher_id).to_dict()})


# ── Create ────────────────────────────────────────────────────────

@vouchers.route('/', methods=['POST'])
@admin_required
def create():
    data   = _payload()
    errors = validate_voucher_payload(data)
    if errors:
        return _validation_failed(errors)

    fields = parse_voucher_payload(data)
    if Voucher.query.filter_by(code=fields['code']).first():
        return _duplicate_code(fields['code'])

    voucher = Voucher(**fields)
    db.session.add(voucher)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        current_app.logger.warning(f"Voucher create rejected (IntegrityError): {exc}")
        return _duplicate_code(fields['code'])

    current_app.logger.info(f"Voucher {voucher.code!r} created")
    return jsonify({'voucher': voucher.to_dict()}), 201


# ── Edit ──────────────────────────────────────────────────────────

@vouchers.route('/<int:voucher_id>', methods=['PUT'])
@admin_required
def update(voucher_id):
    voucher = _get_or_404(voucher_id)
    data    = _payload()
    errors  = validate_voucher_payload(data, partial=True)
    if errors:
        return _validation_failed(errors)

    fields = parse_voucher_payload(data, partial=True)
    code   = fields.get('code')
    if code and code != voucher.code and Voucher.query.filter_by(code=code).first():
        return _duplicate_code(code)

    for name, value in fields.items():
        setattr(voucher, name, value)

    errors = _cross_field_errors(voucher)
    if errors:
        db.session.rollback()
        return _validation_failed(errors)

    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        current_app.logger.warning(f"Voucher {voucher_id} update rejected (IntegrityError): {exc}")
        return _duplicate_code(code or '')

    current_app.logger.info(f"Voucher {voucher.code!r} updated")
    return jsonify({'voucher': voucher.to_dict()})


# ── Delete ────────────────────────────────────────────────────────

@vouchers.route('/<int:voucher_id>', methods=['DELETE'])
@admin_required
def delete(voucher_id):
    """
    Hard delete (usage rows cascade). Carts still holding the code
    lose it on their next recalculation, which reports INVALID_CODE.
    """
    voucher = _get_or_404(voucher_id)
    code = voucher.code
    db.session.delete(voucher)
    db.session.commit()
    current_app.logger.info(f"Voucher {code!r} deleted")
    return jsonify({'message': f'Voucher "{code}" deleted.'})


# ── Usage ─────────────────────────────────────────────────────────

@vouchers.route('/<int:voucher_id>/usage', methods=['GET'])
@admin_required
def usage(voucher_id):
    voucher = _get_or_404(voucher_id)
    return jsonify({
        'voucher': voucher.to_dict(),
        'usage': [{
            'id':              u.id,
            'user_id':         u.user_id,
            'username':        u.user.username if u.user else None,
            'order_reference': u.order_reference,
            'used_at':         u.used_at.isoformat(),
        } for u in usage_history(voucher)],
    })
