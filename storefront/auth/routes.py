from datetime import datetime

from flask import current_app, jsonify, request, session
from sqlalchemy.exc import IntegrityError

from storefront import db
from storefront.auth import auth
from storefront.auth.models import User
from storefront.errors import CartError
from storefront.cart.identity import guest_token
from storefront.cart.lifecycle import merge_guest_cart


@auth.route('/login', methods=['POST'])
def login():
    """
    Validate credentials and populate the session.

    If the request still carries a guest cart token, that cart is
    merged into the user's cart; lines that could not be moved are
    returned under 'skipped'.
    """
    data = request.get_json(silent=True) or request.form.to_dict()
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''

    # Basic presence validation
    if not username or not password:
        return jsonify({'error': 'VALIDATION_ERROR',
                        'message': 'Username and password are required.'}), 400

    user = User.query.filter_by(username=username).first()
    if user is None or not user.check_password(password):
        # Deliberately vague: don't reveal which field was wrong
        current_app.logger.warning(f"Failed login attempt for username: {username}")
        return jsonify({'error': 'INVALID_CREDENTIALS',
                        'message': 'Invalid username or password.'}), 401

    if not user.is_active:
        current_app.logger.warning(f"Login attempt for disabled account: {username}")
        return jsonify({'error': 'ACCOUNT_DISABLED',
                        'message': 'This account has been disabled.'}), 403

    # ── Populate session (only what's needed) ──
    session.clear()
    session['user_id'] = user.id
    session['role']    = user.role.value  # 'admin' or 'customer'
    session.permanent  = True             # respect PERMANENT_SESSION_LIFETIME

    user.last_login_at = datetime.utcnow()
    db.session.commit()
    current_app.logger.info(f"User {user.username} logged in successfully.")

    response = {'user': user.to_dict(), 'merged': [], 'skipped': []}

    token = guest_token()
    if token:
        try:
            result = merge_guest_cart(token, user.id)
            db.session.commit()
        except (CartError, IntegrityError) as exc:
            # Login still succeeds; the guest cart stays where it was
            db.session.rollback()
            current_app.logger.error(f"Guest cart merge on login failed: {exc}")
        else:
            if result is not None:
                response['merged']  = result.merged
                response['skipped'] = [s.to_dict() for s in result.skipped]

    return jsonify(response)


@auth.route('/logout', methods=['POST'])
def logout():
    """Clear the session. The user's cart stays stored for the next login."""
    session.clear()
    return jsonify({'message': 'You have been logged out.'})
