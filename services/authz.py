"""
Authorization evaluation.

Everything here is pure: predicates look only at an AuthenticatedIdentity
(role names + effective permission names) and either return it or raise
Unauthenticated / Forbidden. Loading the identity is the request layer's job
(utils.decorators).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from services.errors import Forbidden, Unauthenticated


def flatten_permissions(user) -> list[str]:
    """
    Effective permissions: role permissions plus direct grants, de-duplicated.
    Order follows first appearance and carries no meaning.
    """
    names = [permission.name for role in user.roles for permission in role.permissions]
    names.extend(permission.name for permission in user.permissions)
    return list(dict.fromkeys(names))


@dataclass(frozen=True)
class AuthenticatedIdentity:
    user_id: str
    email: str
    role_names: tuple[str, ...] = ()
    permission_names: tuple[str, ...] = ()

    @classmethod
    def from_user(cls, user) -> "AuthenticatedIdentity":
        return cls(
            user_id=user.id,
            email=user.email,
            role_names=tuple(user.role_names),
            permission_names=tuple(flatten_permissions(user)),
        )

    def has_any_role(self, roles: Iterable[str]) -> bool:
        return not set(self.role_names).isdisjoint(roles)

    def has_any_permission(self, permissions: Iterable[str]) -> bool:
        return not set(self.permission_names).isdisjoint(permissions)

    def has_all_permissions(self, permissions: Iterable[str]) -> bool:
        return set(permissions).issubset(self.permission_names)


def _authenticated(identity: Optional[AuthenticatedIdentity]) -> AuthenticatedIdentity:
    if identity is None:
        raise Unauthenticated("User not authenticated")
    return identity


def require_role(identity, required: Iterable[str]) -> AuthenticatedIdentity:
    """Admit if the identity holds ANY of the listed roles."""
    identity = _authenticated(identity)
    required = list(required)
    if not identity.has_any_role(required):
        raise Forbidden(f"Access denied. Required roles: {', '.join(required)}")
    return identity


def require_permission(identity, required: Iterable[str]) -> AuthenticatedIdentity:
    """Admit if the identity holds ANY of the listed permissions."""
    identity = _authenticated(identity)
    required = list(required)
    if not identity.has_any_permission(required):
        raise Forbidden(f"Access denied. Required at least one of: {', '.join(required)}")
    return identity


def require_all_permissions(identity, required: Iterable[str]) -> AuthenticatedIdentity:
    identity = _authenticated(identity)
    required = list(required)
    if not identity.has_all_permissions(required):
        raise Forbidden(f"Access denied. Required all of: {', '.join(required)}")
    return identity


def require_owner_or_permission(identity, resource_owner_id: str, permissions: Iterable[str]) -> AuthenticatedIdentity:
    identity = _authenticated(identity)
    if identity.user_id == resource_owner_id:
        return identity
    if not identity.has_any_permission(permissions):
        raise Forbidden(
            "Access denied. You can only access your own resources or need appropriate permissions."
        )
    return identity


def require_self_or_role(identity, path_user_id: str, roles: Iterable[str]) -> AuthenticatedIdentity:
    identity = _authenticated(identity)
    if identity.user_id == path_user_id:
        return identity
    if not identity.has_any_role(roles):
        raise Forbidden(
            "Access denied. You can only access your own resources or need appropriate roles."
        )
    return identity
