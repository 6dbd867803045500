"""
Default permission / role catalogue.

seed_catalogue() is idempotent: existing rows are matched by name and only
missing permissions are attached, so it is safe to run on every deploy.
"""
import logging

from models.permission import Permission
from models.role import Role

logger = logging.getLogger(__name__)

PERMISSIONS = [
    ("read:users", "users", "read", "Read user information"),
    ("write:users", "users", "write", "Create and update users"),
    ("delete:users", "users", "delete", "Delete users"),
    ("read:roles", "roles", "read", "Read role information"),
    ("write:roles", "roles", "write", "Create and update roles"),
    ("delete:roles", "roles", "delete", "Delete roles"),
    ("read:permissions", "permissions", "read", "Read permission information"),
    ("write:permissions", "permissions", "write", "Create and update permissions"),
    ("delete:permissions", "permissions", "delete", "Delete permissions"),
    ("read:audit_logs", "audit_logs", "read", "Read audit logs"),
    ("read:profile", "profile", "read", "Read own profile"),
    ("write:profile", "profile", "write", "Update own profile"),
]

# name -> (description, is_default, permission names; None means "all")
ROLES = {
    "user": ("Standard user role", True, ["read:profile", "write:profile"]),
    "moderator": (
        "Moderator role with limited admin access",
        False,
        [
            "read:profile", "write:profile",
            "read:users", "read:roles", "read:permissions",
            "read:audit_logs",
        ],
    ),
    "admin": ("Administrator role with full access", False, None),
}


def seed_catalogue(storage) -> dict:
    """Create missing permissions and roles; return roles keyed by name."""
    with storage.transaction() as session:
        permissions = {p.name: p for p in session.query(Permission).all()}
        for name, resource, action, description in PERMISSIONS:
            if name not in permissions:
                permissions[name] = Permission(
                    name=name, resource=resource, action=action, description=description
                )
                session.add(permissions[name])

        roles = {r.name: r for r in session.query(Role).all()}
        for name, (description, is_default, granted) in ROLES.items():
            role = roles.get(name)
            if role is None:
                role = Role(name=name, description=description, is_default=is_default)
                session.add(role)
                roles[name] = role
            wanted = permissions.values() if granted is None else [permissions[g] for g in granted]
            for permission in wanted:
                if permission not in role.permissions:
                    role.permissions.append(permission)

    logger.info("Seeded %d permissions and %d roles", len(PERMISSIONS), len(ROLES))
    return roles
