"""Middleware for buyer/operator context.

Authentication itself belongs to the auth collaborator; it leaves the
authenticated user id (and role) in the session and this module only reads them.
"""
from functools import wraps
from flask import session, g, jsonify, current_app

from storefront.exceptions import UnauthorizedError


def load_user_context():
    """
    Load current user into g (Flask's per-request global).

    Sets g.user_id and g.user_role; both None for anonymous requests.
    """
    g.user_id = session.get('user_id')
    g.user_role = session.get('role') if g.user_id else None


def require_login(f):
    """
    Decorator: Require an authenticated buyer.

    JSON API: answers 401 instead of redirecting to a login page.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('user_id') is None:
            return jsonify({'status': 'error', 'message': 'Você precisa estar logado para continuar.'}), 401
        return f(*args, **kwargs)
    return decorated_function


def require_operator(f):
    """
    Decorator: Require a store operator (admin or vendedor).

    Must be used AFTER require_login.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        allowed = current_app.config.get('OPERATOR_ROLES', ('admin',))
        if g.get('user_role') not in allowed:
            raise UnauthorizedError('Acesso restrito à equipe da loja.')
        return f(*args, **kwargs)
    return decorated_function
