"""
storefront/cart/identity.py
---------------------------
Resolves who a cart request belongs to.

Registered user → Flask session['user_id'] (set by /auth/login)
Guest           → anonymous token in the CART_SESSION_HEADER header

Never returns both: a logged-in user's requests ignore the header.
"""
from typing import Optional, Tuple

from flask import current_app, request, session


def guest_token() -> Optional[str]:
    header = current_app.config.get('CART_SESSION_HEADER', 'X-Session-Id')
    token  = (request.headers.get(header) or '').strip()
    return token or None


def resolve_identity() -> Tuple[Optional[int], Optional[str]]:
    """Return (user_id, None) or (None, session_token) or (None, None)."""
    user_id = session.get('user_id')
    if user_id is not None:
        return user_id, None
    return None, guest_token()
