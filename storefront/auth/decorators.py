"""
storefront/auth/decorators.py
-----------------------------
Route-protection decorators for the JSON API.
Usage:
    from storefront.auth.decorators import login_required, admin_required

    @cart.route('/merge', methods=['POST'])
    @login_required
    def merge():
        ...

    @vouchers.route('/')
    @admin_required
    def list_vouchers():
        ...
"""
from functools import wraps
from flask import session, jsonify


def login_required(f):
    """
    Reject with 401 if the user is not authenticated.
    Checks for 'user_id' key in the Flask session.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        if 'user_id' not in session:
            return jsonify({'error': 'UNAUTHENTICATED', 'message': 'Please log in.'}), 401
        return f(*args, **kwargs)
    return decorated


def admin_required(f):
    """
    Allow access only to users with role == 'admin'.
    Unauthenticated callers get 401, authenticated non-admins 403.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        if 'user_id' not in session:
            return jsonify({'error': 'UNAUTHENTICATED', 'message': 'Please log in.'}), 401
        if session.get('role') != 'admin':
            return jsonify({'error': 'FORBIDDEN', 'message': 'Admin access required.'}), 403
        return f(*args, **kwargs)
    return decorated
