"""HTTP surface: envelopes, status codes, cookies and route guards."""

import pytest

from models import RefreshToken, Role, User

from conftest import PASSWORD, api_login, bearer

NEW_PASSWORD = "N3w!Passw0rd"


def _user(storage, email):
    return storage.users().filter(User.email == email).one()


def _clears_refresh_cookie(resp):
    return any(h.startswith("refresh_token=;") for h in resp.headers.getlist("Set-Cookie"))


class TestEnvelope:
    def test_health(self, client):
        resp = client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "ok"

    def test_unknown_route(self, client):
        resp = client.get("/api/v1/nope")
        assert resp.status_code == 404
        body = resp.get_json()
        assert body["error"] == "NOT_FOUND"
        assert body["status"] == 404

    def test_validation_error_details(self, client):
        resp = client.post("/api/v1/auth/register", json={"email": "not-an-email", "password": "weak"})
        assert resp.status_code == 422
        body = resp.get_json()
        assert body["error"] == "VALIDATION_ERROR"
        assert set(body["details"]) == {"email", "password"}


class TestRegistrationFlow:
    def test_register_verify_login(self, client, storage, mailer):
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "Bob@Example.com", "password": PASSWORD, "first_name": "Bob"},
        )
        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["email"] == "bob@example.com"
        assert data["roles"] == ["user"]
        assert "password_hash" not in data
        assert "email_verification_token" not in data

        resp = client.post("/api/v1/auth/login", json={"email": "bob@example.com", "password": PASSWORD})
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "EMAIL_NOT_VERIFIED"

        token = _user(storage, "bob@example.com").email_verification_token
        resp = client.get(f"/api/v1/auth/verify-email?token={token}")
        assert resp.status_code == 200
        assert resp.get_json()["data"]["email_verified"] is True

        resp = client.post("/api/v1/auth/login", json={"email": "bob@example.com", "password": PASSWORD})
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["token_type"] == "bearer"
        assert data["user"]["email"] == "bob@example.com"
        assert client.get_cookie("refresh_token") is not None

    def test_duplicate_registration(self, client, make_user):
        make_user("bob@example.com")
        resp = client.post("/api/v1/auth/register", json={"email": "bob@example.com", "password": PASSWORD})
        assert resp.status_code == 409
        assert resp.get_json()["error"] == "ALREADY_EXISTS"

    def test_bad_verification_token(self, client):
        resp = client.get("/api/v1/auth/verify-email?token=abc")
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "INVALID_OR_EXPIRED_TOKEN"

    def test_enumeration_safe_endpoints(self, client, make_user):
        make_user("known@example.com", verified=False)
        for path in ("/api/v1/auth/forgot-password", "/api/v1/auth/resend-verification"):
            known = client.post(path, json={"email": "known@example.com"})
            unknown = client.post(path, json={"email": "unknown@example.com"})
            assert known.status_code == unknown.status_code == 200
            assert known.get_json() == unknown.get_json()


class TestLogin:
    def test_invalid_credentials(self, client, make_user):
        make_user()
        wrong = client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": "Wr0ng!Pass"})
        ghost = client.post("/api/v1/auth/login", json={"email": "ghost@example.com", "password": PASSWORD})
        assert wrong.status_code == ghost.status_code == 401
        assert wrong.get_json() == ghost.get_json()

    def test_disabled_account(self, client, make_user):
        make_user(active=False)
        resp = client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": PASSWORD})
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "ACCOUNT_DISABLED"


class TestSessions:
    def test_protected_route_requires_token(self, client):
        resp = client.get("/api/v1/users/profile")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "UNAUTHENTICATED"

    def test_garbage_token(self, client):
        resp = client.get("/api/v1/users/profile", headers=bearer("garbage"))
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "INVALID_TOKEN"

    def test_refresh_with_cookie_rotates(self, client, make_user):
        make_user()
        api_login(client, "alice@example.com")
        old_refresh = client.get_cookie("refresh_token").value

        resp = client.post("/api/v1/auth/refresh")
        assert resp.status_code == 200
        access = resp.get_json()["data"]["access_token"]
        assert client.get_cookie("refresh_token").value != old_refresh
        assert client.get("/api/v1/users/profile", headers=bearer(access)).status_code == 200

        replay = client.application.test_client().post(
            "/api/v1/auth/refresh", json={"refresh_token": old_refresh}
        )
        assert replay.status_code == 401
        assert replay.get_json()["error"] == "INVALID_TOKEN"

    def test_refresh_without_token(self, client):
        resp = client.post("/api/v1/auth/refresh")
        assert resp.status_code == 401

    def test_logout_blacklists_access_token(self, client, make_user):
        make_user()
        access = api_login(client, "alice@example.com")
        refresh = client.get_cookie("refresh_token").value

        resp = client.post("/api/v1/auth/logout", headers=bearer(access))
        assert resp.status_code == 200
        assert _clears_refresh_cookie(resp)

        resp = client.get("/api/v1/users/profile", headers=bearer(access))
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "INVALID_TOKEN"
        replay = client.post("/api/v1/auth/refresh", json={"refresh_token": refresh})
        assert replay.status_code == 401

    def test_logout_all_keeps_calling_session(self, app, make_user):
        make_user()
        phone, laptop = app.test_client(), app.test_client()
        access = api_login(phone, "alice@example.com")
        api_login(laptop, "alice@example.com")

        resp = phone.post("/api/v1/auth/logout-all", headers=bearer(access))
        assert resp.status_code == 200
        assert resp.get_json()["data"]["revoked"] == 1

        assert laptop.post("/api/v1/auth/refresh").status_code == 401
        assert phone.post("/api/v1/auth/refresh").status_code == 200

    def test_disabled_user_token_stops_working(self, client, storage, make_user):
        user = make_user()
        access = api_login(client, "alice@example.com")
        with storage.transaction() as session:
            session.get(User, user.id).is_active = False

        resp = client.get("/api/v1/users/profile", headers=bearer(access))
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "ACCOUNT_DISABLED"


class TestPasswordRoutes:
    def test_reset_password(self, client, storage, make_user):
        make_user()
        client.post("/api/v1/auth/forgot-password", json={"email": "alice@example.com"})
        token = _user(storage, "alice@example.com").password_reset_token

        resp = client.post("/api/v1/auth/reset-password", json={"token": token, "new_password": NEW_PASSWORD})
        assert resp.status_code == 200
        api_login(client, "alice@example.com", NEW_PASSWORD)

    def test_reset_password_rejects_weak_password(self, client):
        resp = client.post("/api/v1/auth/reset-password", json={"token": "t", "new_password": "password"})
        assert resp.status_code == 422
        assert "new_password" in resp.get_json()["details"]

    def test_change_password_signs_out_everywhere(self, client, make_user):
        make_user()
        access = api_login(client, "alice@example.com")
        refresh = client.get_cookie("refresh_token").value

        wrong = client.post(
            "/api/v1/auth/change-password",
            json={"current_password": "Wr0ng!Pass", "new_password": NEW_PASSWORD},
            headers=bearer(access),
        )
        assert wrong.status_code == 401
        assert wrong.get_json()["error"] == "INVALID_CREDENTIALS"

        resp = client.patch(
            "/api/v1/users/password",
            json={"current_password": PASSWORD, "new_password": NEW_PASSWORD},
            headers=bearer(access),
        )
        assert resp.status_code == 200
        replay = client.post("/api/v1/auth/refresh", json={"refresh_token": refresh})
        assert replay.status_code == 401


class TestProfileRoutes:
    def test_get_and_update_profile(self, client, make_user):
        make_user()
        access = api_login(client, "alice@example.com")

        resp = client.patch("/api/v1/users/profile", json={"first_name": "Alicia"}, headers=bearer(access))
        assert resp.status_code == 200
        assert resp.get_json()["data"]["first_name"] == "Alicia"

        data = client.get("/api/v1/users/profile", headers=bearer(access)).get_json()["data"]
        assert data["first_name"] == "Alicia"
        assert set(data["permissions"]) == {"read:profile", "write:profile"}

    def test_delete_account(self, client, storage, make_user):
        user = make_user()
        access = api_login(client, "alice@example.com")

        wrong = client.delete("/api/v1/users/account", json={"password": "Wr0ng!Pass"}, headers=bearer(access))
        assert wrong.status_code == 401

        resp = client.delete("/api/v1/users/account", json={"password": PASSWORD}, headers=bearer(access))
        assert resp.status_code == 200
        assert storage.users().filter(User.id == user.id).first() is None
        assert storage.get_session().query(RefreshToken).filter(RefreshToken.user_id == user.id).count() == 0

    def test_user_by_id_is_self_or_staff(self, app, make_user):
        alice = make_user()
        bob = make_user("bob@example.com")
        make_user("mod@example.com", role_names=("moderator",))
        client = app.test_client()
        alice_access = api_login(client, "alice@example.com")
        mod_access = api_login(client, "mod@example.com")

        assert client.get(f"/api/v1/users/{alice.id}", headers=bearer(alice_access)).status_code == 200
        other = client.get(f"/api/v1/users/{bob.id}", headers=bearer(alice_access))
        assert other.status_code == 403
        assert other.get_json()["error"] == "FORBIDDEN"
        assert client.get(f"/api/v1/users/{bob.id}", headers=bearer(mod_access)).status_code == 200

    def test_sessions_owner_or_permission(self, app, make_user):
        alice = make_user()
        make_user("bob@example.com")
        make_user("mod@example.com", role_names=("moderator",))
        client = app.test_client()
        alice_access = api_login(client, "alice@example.com")
        bob_access = api_login(client, "bob@example.com")
        mod_access = api_login(client, "mod@example.com")

        own = client.get(f"/api/v1/users/{alice.id}/sessions", headers=bearer(alice_access))
        assert own.status_code == 200
        assert len(own.get_json()["data"]) == 1
        assert client.get(f"/api/v1/users/{alice.id}/sessions", headers=bearer(bob_access)).status_code == 403
        assert client.get(f"/api/v1/users/{alice.id}/sessions", headers=bearer(mod_access)).status_code == 200


class TestAdminRoutes:
    @pytest.fixture
    def staff(self, app, make_user):
        make_user("admin@example.com", role_names=("admin",))
        make_user("mod@example.com", role_names=("moderator",))
        target = make_user("target@example.com", first_name="Target")
        client = app.test_client()
        return {
            "client": client,
            "admin": api_login(client, "admin@example.com"),
            "mod": api_login(client, "mod@example.com"),
            "user": api_login(client, "target@example.com"),
            "target_id": target.id,
        }

    def test_listing_requires_staff_role(self, staff):
        client = staff["client"]
        resp = client.get("/api/v1/admin/users", headers=bearer(staff["user"]))
        assert resp.status_code == 403

        resp = client.get("/api/v1/admin/users?limit=2", headers=bearer(staff["mod"]))
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["meta"]["total"] == 3
        assert body["meta"]["total_pages"] == 2
        assert len(body["data"]) == 2

    def test_listing_filters(self, staff):
        client = staff["client"]
        resp = client.get("/api/v1/admin/users?role=admin", headers=bearer(staff["admin"]))
        assert [u["email"] for u in resp.get_json()["data"]] == ["admin@example.com"]

        resp = client.get("/api/v1/admin/users?search=TARGET", headers=bearer(staff["admin"]))
        assert [u["email"] for u in resp.get_json()["data"]] == ["target@example.com"]

    def test_moderator_cannot_modify(self, staff):
        resp = staff["client"].patch(
            f"/api/v1/admin/users/{staff['target_id']}/status",
            json={"is_active": False},
            headers=bearer(staff["mod"]),
        )
        assert resp.status_code == 403

    def test_deactivate_user(self, staff):
        client = staff["client"]
        resp = client.patch(
            f"/api/v1/admin/users/{staff['target_id']}/status",
            json={"is_active": False},
            headers=bearer(staff["admin"]),
        )
        assert resp.status_code == 200
        assert resp.get_json()["data"]["is_active"] is False

        resp = client.get("/api/v1/users/profile", headers=bearer(staff["user"]))
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "ACCOUNT_DISABLED"

    def test_update_user_email_conflict(self, staff):
        resp = staff["client"].patch(
            f"/api/v1/admin/users/{staff['target_id']}",
            json={"email": "mod@example.com"},
            headers=bearer(staff["admin"]),
        )
        assert resp.status_code == 409

    def test_assign_and_remove_roles(self, staff, storage):
        client = staff["client"]
        moderator_id = storage.get_session().query(Role).filter(Role.name == "moderator").one().id

        missing = client.put(
            f"/api/v1/admin/users/{staff['target_id']}/roles",
            json={"role_ids": [moderator_id, "no-such-role"]},
            headers=bearer(staff["admin"]),
        )
        assert missing.status_code == 404

        resp = client.put(
            f"/api/v1/admin/users/{staff['target_id']}/roles",
            json={"role_ids": [moderator_id]},
            headers=bearer(staff["admin"]),
        )
        assert resp.status_code == 200
        assert resp.get_json()["data"]["roles"] == ["moderator"]

        # Effective immediately, without a new token
        listing = client.get("/api/v1/admin/users", headers=bearer(staff["user"]))
        assert listing.status_code == 200

        resp = client.delete(
            f"/api/v1/admin/users/{staff['target_id']}/roles/{moderator_id}",
            headers=bearer(staff["admin"]),
        )
        assert resp.get_json()["data"]["roles"] == []

    def test_delete_user(self, staff, storage):
        client = staff["client"]
        assert client.delete(f"/api/v1/admin/users/{staff['target_id']}", headers=bearer(staff["mod"])).status_code == 403

        resp = client.delete(f"/api/v1/admin/users/{staff['target_id']}", headers=bearer(staff["admin"]))
        assert resp.status_code == 200
        assert storage.users().filter(User.id == staff["target_id"]).first() is None

    def test_protected_admin_cannot_be_deleted(self, staff, storage):
        admin_id = _user(storage, "admin@example.com").id
        resp = staff["client"].delete(f"/api/v1/admin/users/{admin_id}", headers=bearer(staff["admin"]))
        assert resp.status_code == 403

    def test_roles_catalogue_needs_both_permissions(self, staff):
        client = staff["client"]
        resp = client.get("/api/v1/admin/roles", headers=bearer(staff["mod"]))
        assert resp.status_code == 200
        assert {r["name"] for r in resp.get_json()["data"]} == {"admin", "moderator", "user"}
        assert client.get("/api/v1/admin/roles", headers=bearer(staff["user"])).status_code == 403
