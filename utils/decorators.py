"""
Request guards.

jwt_required() resolves the bearer token into an AuthenticatedIdentity once
and hands it to the view as the `identity` keyword argument; the other
guards stack on top of it and apply one predicate from services.authz.
"""
from __future__ import annotations

from functools import wraps
from typing import Callable, Optional

from flask import request

from models.user import User
from services import current_services
from services.authz import (
    AuthenticatedIdentity,
    require_all_permissions,
    require_owner_or_permission,
    require_permission,
    require_role,
    require_self_or_role,
)
from services.errors import AccountDisabled, InvalidToken, Unauthenticated


def bearer_token() -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.split(" ", 1)[1].strip() or None


def resolve_identity(token: str) -> AuthenticatedIdentity:
    services = current_services()
    if services.tokens.is_blacklisted(token):
        raise InvalidToken("Token is invalid")
    claims = services.tokens.verify_access(token)

    # Roles and permissions come from the store, not the claims, so a revoked
    # grant stops working before the access token expires.
    user = services.storage.users().filter(User.id == claims.get("userId")).first()
    if user is None:
        raise InvalidToken("Token is invalid")
    if not user.is_active:
        raise AccountDisabled("User account is disabled")
    return AuthenticatedIdentity.from_user(user)


def jwt_required():
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            token = bearer_token()
            if token is None:
                raise Unauthenticated("Access token required")
            identity = resolve_identity(token)
            return fn(*args, identity=identity, **kwargs)

        return wrapper

    return decorator


def roles_required(required_roles: list[str]):
    """
    Allow access if the user has ANY of the required roles.
    """
    def decorator(fn):
        @wraps(fn)
        @jwt_required()
        def wrapper(*args, identity, **kwargs):
            require_role(identity, required_roles)
            return fn(*args, identity=identity, **kwargs)

        return wrapper

    return decorator


def permissions_required(required_permissions: list[str]):
    """Allow access if the user has ANY of the listed permissions."""
    def decorator(fn):
        @wraps(fn)
        @jwt_required()
        def wrapper(*args, identity, **kwargs):
            require_permission(identity, required_permissions)
            return fn(*args, identity=identity, **kwargs)

        return wrapper

    return decorator


def all_permissions_required(required_permissions: list[str]):
    def decorator(fn):
        @wraps(fn)
        @jwt_required()
        def wrapper(*args, identity, **kwargs):
            require_all_permissions(identity, required_permissions)
            return fn(*args, identity=identity, **kwargs)

        return wrapper

    return decorator


def owner_or_permission_required(get_owner_id: Callable[..., str], permissions: list[str]):
    """
    Owner of the resource passes; anyone else needs one of `permissions`.
    get_owner_id receives the view's keyword arguments.
    """
    def decorator(fn):
        @wraps(fn)
        @jwt_required()
        def wrapper(*args, identity, **kwargs):
            require_owner_or_permission(identity, get_owner_id(**kwargs), permissions)
            return fn(*args, identity=identity, **kwargs)

        return wrapper

    return decorator


def self_or_role_required(roles: list[str], param: str = "user_id"):
    def decorator(fn):
        @wraps(fn)
        @jwt_required()
        def wrapper(*args, identity, **kwargs):
            require_self_or_role(identity, kwargs.get(param), roles)
            return fn(*args, identity=identity, **kwargs)

        return wrapper

    return decorator
