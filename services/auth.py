"""Authentication helper utilities used by routes."""
from __future__ import annotations

from functools import wraps
from typing import Optional

from flask import current_app, g, jsonify
from flask_jwt_extended import (
    JWTManager,
    create_access_token,
    get_jwt,
    get_jwt_identity,
    verify_jwt_in_request,
)
from werkzeug.security import check_password_hash, generate_password_hash

from models import db, User

jwt = JWTManager()


def _auth_error(message: str, category: str, status: int):
    return jsonify({'message': message, 'error': category}), status


@jwt.unauthorized_loader
def _missing_token(reason: str):
    current_app.logger.warning('Rejected request without credential: %s', reason)
    return _auth_error('Access denied. No token provided.', 'unauthorized', 401)


@jwt.invalid_token_loader
def _invalid_token(reason: str):
    current_app.logger.warning('Rejected invalid token: %s', reason)
    return _auth_error('Invalid token. Access denied.', 'forbidden', 403)


@jwt.expired_token_loader
def _expired_token(jwt_header, jwt_payload):
    return _auth_error('Unauthorized: Invalid or expired token', 'unauthorized', 401)


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(user: Optional[User], password: str) -> bool:
    return user is not None and check_password_hash(user.password_hash, password or '')


def issue_token(user: User) -> str:
    return create_access_token(identity=str(user.id), additional_claims={'role': user.role})


def current_user_id() -> Optional[int]:
    identity = get_jwt_identity()
    try:
        return int(identity)
    except (TypeError, ValueError):
        return None


def current_role() -> Optional[str]:
    return get_jwt().get('role')


def get_current_user() -> Optional[User]:
    user_id = current_user_id()
    cached = g.get('_cached_user')
    if cached is not None and cached[0] == user_id:
        return cached[1]
    user = db.session.get(User, user_id) if user_id is not None else None
    g._cached_user = (user_id, user)
    return user


def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        verify_jwt_in_request()
        return view(*args, **kwargs)

    return wrapped


def admin_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        verify_jwt_in_request()
        if current_role() != 'admin':
            return _auth_error('Access denied, not an admin', 'forbidden', 403)
        return view(*args, **kwargs)

    return wrapped
