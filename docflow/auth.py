import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import wraps

import jwt
from flask import current_app, g, request

from errors import AuthenticationError, UnauthorizedError
from permissions import has_permission

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """The acting principal resolved from a bearer token."""

    user_id: int
    role_id: int | None
    role_name: str | None = None


def init_app(app):
    """Initialize authentication config."""
    app.config['JWT_SECRET'] = os.environ.get(
        'DOCFLOW_JWT_SECRET', app.secret_key
    )
    app.config['JWT_ACCESS_MINUTES'] = int(os.environ.get('JWT_ACCESS_MINUTES', 60))


def create_access_token(user, secret: str, minutes: int = 60) -> str:
    role = user.role
    payload = {
        'userId': user.id,
        'role': {'id': role.id, 'name': role.name} if role else None,
        'exp': datetime.utcnow() + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, secret, algorithm='HS256')


def decode_token(token: str, secret: str) -> Identity:
    try:
        data = jwt.decode(token, secret, algorithms=['HS256'])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError('Token expired') from None
    except jwt.InvalidTokenError:
        raise AuthenticationError('Invalid token') from None

    user_id = data.get('userId')
    if user_id is None:
        raise AuthenticationError('Token has no user')
    role = data.get('role') or {}
    return Identity(user_id=user_id, role_id=role.get('id'), role_name=role.get('name'))


def _bearer_token() -> str:
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token:
        raise AuthenticationError('No token provided')
    return token.strip()


def current_identity() -> Identity:
    identity = g.get('identity')
    if identity is None:
        identity = decode_token(_bearer_token(), current_app.config['JWT_SECRET'])
        g.identity = identity
    return identity


def token_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        current_identity()
        return view(*args, **kwargs)

    return wrapped


def permission_required(permission: str):
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            identity = current_identity()
            if not has_permission(identity.role_id, permission):
                logger.warning(
                    'Permission %s refused for user %s (role %s)',
                    permission,
                    identity.user_id,
                    identity.role_id,
                )
                raise UnauthorizedError(
                    'Forbidden: You do not have the required permission',
                    permission=permission,
                )
            return view(*args, **kwargs)

        return wrapped

    return decorator
