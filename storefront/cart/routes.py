"""
storefront/cart/routes.py
-------------------------
JSON endpoints for the shopping cart.

Every mutating endpoint is one transaction:
  resolve identity → find-or-create cart → lock → mutate → recalculate
  → COMMIT → return the refreshed cart view.
A CartError rolls everything back and is returned as
{"error": CODE, "message": ...} with HTTP 400.
"""
from flask import current_app, jsonify, request, session
from sqlalchemy.exc import IntegrityError

from storefront import db
from storefront.auth.decorators import login_required
from storefront.errors import CartError, INVALID_QUANTITY, PRODUCT_UNAVAILABLE, INVALID_CODE
from storefront.cart import cart
from storefront.cart.discounts import apply_voucher, preview_voucher, remove_voucher
from storefront.cart.identity import resolve_identity
from storefront.cart.items import add_item, clear, remove_item, update_quantity
from storefront.cart.lifecycle import cart_view, find_or_create, merge_guest_cart


# ── Helpers ───────────────────────────────────────────────────────

def _payload() -> dict:
    """Accept JSON bodies and classic form posts alike."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def _int_field(data: dict, name: str, code: str, default=None) -> int:
    """JSON ints and digit strings only; 1.9 or "1.5" is rejected, never truncated."""
    raw = data.get(name, default)
    if raw is None or isinstance(raw, bool):
        raise CartError(code, f'{name} is required.')
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        text = raw.strip()
        digits = text[1:] if text[:1] in ('-', '+') else text
        if digits.isdigit() and digits.isascii():
            return int(text)
    raise CartError(code, f'{name} must be a whole number.')


def _run(operation):
    """Run one cart operation for the current identity as a single transaction."""
    user_id, session_id = resolve_identity()
    try:
        target = find_or_create(user_id=user_id, session_id=session_id)
        target = operation(target)
        db.session.commit()
    except CartError as exc:
        db.session.rollback()
        current_app.logger.warning(f"Cart request rejected ({exc.code}): {exc.message}")
        return jsonify(exc.to_dict()), 400
    except IntegrityError as exc:
        db.session.rollback()
        current_app.logger.error(f"Cart rollback (IntegrityError): {exc}")
        return jsonify({'error': 'CONFLICT',
                        'message': 'A database conflict occurred. Please try again.'}), 409
    return jsonify({'cart': cart_view(target)})


# ── Read ──────────────────────────────────────────────────────────

@cart.route('/', methods=['GET'])
def view():
    """Current cart for this user / guest session (created if missing)."""
    return _run(lambda c: c)


# ── Line items ────────────────────────────────────────────────────

@cart.route('/add-item', methods=['POST'])
def add():
    data = _payload()
    try:
        product_id = _int_field(data, 'product_id', PRODUCT_UNAVAILABLE)
        quantity   = _int_field(data, 'quantity', INVALID_QUANTITY, default=1)
    except CartError as exc:
        return jsonify(exc.to_dict()), 400
    return _run(lambda c: add_item(c, product_id, quantity))


@cart.route('/update-item', methods=['POST'])
def update():
    data = _payload()
    try:
        product_id = _int_field(data, 'product_id', PRODUCT_UNAVAILABLE)
        quantity   = _int_field(data, 'quantity', INVALID_QUANTITY)
    except CartError as exc:
        return jsonify(exc.to_dict()), 400
    return _run(lambda c: update_quantity(c, product_id, quantity))


@cart.route('/remove-item', methods=['POST'])
def remove():
    data = _payload()
    try:
        product_id = _int_field(data, 'product_id', PRODUCT_UNAVAILABLE)
    except CartError as exc:
        return jsonify(exc.to_dict()), 400
    return _run(lambda c: remove_item(c, product_id))


@cart.route('/clear', methods=['POST'])
def clear_cart():
    return _run(clear)


# ── Vouchers ──────────────────────────────────────────────────────

@cart.route('/voucher/apply', methods=['POST'])
def voucher_apply():
    code = (_payload().get('code') or '').strip()
    if not code:
        return jsonify(CartError(INVALID_CODE, 'Voucher code is required.').to_dict()), 400
    return _run(lambda c: apply_voucher(c, code, customer_id=c.user_id))


@cart.route('/voucher/remove', methods=['POST'])
def voucher_remove():
    return _run(remove_voucher)


@cart.route('/voucher/validate', methods=['POST'])
def voucher_validate():
    """Preview the discount a code would give right now, without applying it."""
    code = (_payload().get('code') or '').strip()
    if not code:
        return jsonify(CartError(INVALID_CODE, 'Voucher code is required.').to_dict()), 400

    user_id, session_id = resolve_identity()
    try:
        target  = find_or_create(user_id=user_id, session_id=session_id)
        preview = preview_voucher(target, code, customer_id=target.user_id)
        db.session.commit()     # persists a freshly created cart, nothing else
    except CartError as exc:
        db.session.rollback()
        return jsonify(exc.to_dict()), 400

    return jsonify({
        'voucher':         preview['voucher'].to_dict(),
        'discount_amount': f"{preview['discount_amount']:.2f}",
        'new_subtotal':    f"{preview['new_subtotal']:.2f}",
    })


# ── Merge ─────────────────────────────────────────────────────────

@cart.route('/merge', methods=['POST'])
@login_required
def merge():
    """Fold a guest cart into the logged-in user's cart."""
    guest_session_id = (_payload().get('guest_session_id') or '').strip()
    if not guest_session_id:
        return jsonify({'error': 'MISSING_IDENTITY',
                        'message': 'guest_session_id is required.'}), 400

    try:
        result = merge_guest_cart(guest_session_id, session['user_id'])
        if result is None:
            target  = find_or_create(user_id=session['user_id'])
            merged  = []
            skipped = []
        else:
            target  = result.cart
            merged  = result.merged
            skipped = [s.to_dict() for s in result.skipped]
        db.session.commit()
    except CartError as exc:
        db.session.rollback()
        current_app.logger.warning(f"Cart merge rejected ({exc.code}): {exc.message}")
        return jsonify(exc.to_dict()), 400
    except IntegrityError as exc:
        db.session.rollback()
        current_app.logger.error(f"Cart merge rollback (IntegrityError): {exc}")
        return jsonify({'error': 'CONFLICT',
                        'message': 'A database conflict occurred. Please try again.'}), 409

    return jsonify({'cart': cart_view(target), 'merged': merged, 'skipped': skipped})
