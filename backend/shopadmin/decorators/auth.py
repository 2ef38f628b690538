from functools import wraps
from typing import Optional

from flask import g
from flask_jwt_extended import verify_jwt_in_request, get_jwt_identity
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

from shopadmin import get_db
from shopadmin.constants.permissions import WILDCARD_RESOURCE
from shopadmin.errors import ForbiddenError, UnauthenticatedError
from shopadmin.models.authz import User
from shopadmin.services.access import resolve_access


def load_current_user() -> User:
    """Verify the bearer token and cache the active user on flask.g."""
    try:
        verify_jwt_in_request()
    except (JWTExtendedException, PyJWTError) as exc:
        raise UnauthenticatedError('Authentication required') from exc
    try:
        user_id = int(get_jwt_identity())
    except (TypeError, ValueError):
        raise UnauthenticatedError('Invalid token subject')
    user = get_db().get(User, user_id)
    if user is None or not user.is_active:
        raise UnauthenticatedError('User not found or inactive')
    g.current_user = user
    return user


def current_user() -> Optional[User]:
    return g.get('current_user')


def require_auth(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        load_current_user()
        return fn(*args, **kwargs)
    return wrapper


def require_access(module: str, action: Optional[str] = None, resource: str = WILDCARD_RESOURCE):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = load_current_user()
            decision = resolve_access(get_db(), user, module, action, resource)
            if not decision:
                raise ForbiddenError(
                    'Insufficient permissions',
                    required={'module': module, 'action': action, 'resource': resource},
                    reason=decision.source,
                )
            g.access_decision = decision
            return fn(*args, **kwargs)
        return wrapper
    return outer
