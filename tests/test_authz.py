from datetime import timedelta

import pytest

from models import Permission, Role, User, find_default_role, utcnow
from services.authz import (
    AuthenticatedIdentity,
    flatten_permissions,
    require_all_permissions,
    require_owner_or_permission,
    require_permission,
    require_role,
    require_self_or_role,
)
from services.errors import Forbidden, Unauthenticated


@pytest.fixture
def moderator():
    return AuthenticatedIdentity(
        user_id="mod-1",
        email="mod@example.com",
        role_names=("moderator",),
        permission_names=("read:users", "read:roles", "read:permissions"),
    )


class TestFlattenPermissions:
    def test_union_of_role_and_direct_grants_without_duplicates(self):
        read = Permission(name="read:users", resource="users", action="read")
        write = Permission(name="write:users", resource="users", action="write")
        audit = Permission(name="read:audit_logs", resource="audit_logs", action="read")
        user = User(email="x@example.com")
        user.roles = [
            Role(name="a", permissions=[read, write]),
            Role(name="b", permissions=[read]),
        ]
        user.permissions = [write, audit]

        names = flatten_permissions(user)

        assert sorted(names) == ["read:audit_logs", "read:users", "write:users"]
        assert len(names) == len(set(names))

    def test_no_roles_no_permissions(self):
        assert flatten_permissions(User(email="x@example.com")) == []


class TestPredicates:
    def test_missing_identity_is_unauthenticated(self):
        for check in (
            lambda: require_role(None, ["admin"]),
            lambda: require_permission(None, ["read:users"]),
            lambda: require_all_permissions(None, ["read:users"]),
            lambda: require_owner_or_permission(None, "u1", ["read:users"]),
            lambda: require_self_or_role(None, "u1", ["admin"]),
        ):
            with pytest.raises(Unauthenticated):
                check()

    def test_any_role(self, moderator):
        assert require_role(moderator, ["admin", "moderator"]) is moderator
        with pytest.raises(Forbidden):
            require_role(moderator, ["admin"])

    def test_any_permission(self, moderator):
        assert require_permission(moderator, ["delete:users", "read:users"]) is moderator
        with pytest.raises(Forbidden):
            require_permission(moderator, ["delete:users"])

    def test_all_permissions(self, moderator):
        assert require_all_permissions(moderator, ["read:roles", "read:permissions"]) is moderator
        with pytest.raises(Forbidden):
            require_all_permissions(moderator, ["read:roles", "write:roles"])

    def test_owner_passes_without_permission(self):
        plain = AuthenticatedIdentity(user_id="u1", email="u1@example.com")
        assert require_owner_or_permission(plain, "u1", ["read:users"]) is plain
        with pytest.raises(Forbidden):
            require_owner_or_permission(plain, "u2", ["read:users"])

    def test_non_owner_with_permission_passes(self, moderator):
        assert require_owner_or_permission(moderator, "someone-else", ["read:users"]) is moderator

    def test_self_or_role(self, moderator):
        plain = AuthenticatedIdentity(user_id="u1", email="u1@example.com", role_names=("user",))
        assert require_self_or_role(plain, "u1", ["admin"]) is plain
        with pytest.raises(Forbidden):
            require_self_or_role(plain, "u2", ["admin"])
        assert require_self_or_role(moderator, "u2", ["admin", "moderator"]) is moderator


class TestIdentityFromUser:
    def test_snapshot_of_roles_and_permissions(self, storage, roles, make_user):
        user = make_user(role_names=("moderator",))
        identity = AuthenticatedIdentity.from_user(user)

        assert identity.user_id == user.id
        assert identity.role_names == ("moderator",)
        assert "read:users" in identity.permission_names
        assert "delete:users" not in identity.permission_names


class TestDefaultRole:
    def test_seeded_user_role_is_default(self, storage, roles):
        assert find_default_role(storage.get_session()).name == "user"

    def test_earliest_default_wins(self, storage, roles):
        with storage.transaction() as session:
            session.add(Role(name="aaa-later", is_default=True, created_at=utcnow() + timedelta(days=1)))
        assert find_default_role(storage.get_session()).name == "user"

    def test_name_breaks_ties(self, storage):
        created = utcnow() - timedelta(days=1)
        with storage.transaction() as session:
            session.add(Role(name="beta", is_default=True, created_at=created))
            session.add(Role(name="alpha", is_default=True, created_at=created))
        assert find_default_role(storage.get_session()).name == "alpha"

    def test_no_default_role(self, storage):
        assert find_default_role(storage.get_session()) is None
