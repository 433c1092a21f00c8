"""
tests/test_api_routes.py -- Integration tests for the auth, user and role routes.

These tests exercise the full stack: FastAPI routing -> auth dependency injection
-> AuthorizationEngine -> UserStore -> response model serialization. Unit testing
the policies alone would miss the verdict -> HTTP mapping, the error envelope
and the WWW-Authenticate header, so integration tests are the right tool here.

Coverage:
  - 401 vs 403: missing/garbage/expired tokens vs insufficient role/level/capability
  - Auth routes: register, login, refresh, me, session
  - Non-finite token timestamps -> 401 / anonymous; passwords over 72 UTF-8 bytes -> 422
  - Users: level-gated list, mentor-gated learners, ownership-or-admin on /users/{id}
  - Role assignment takes effect on the target's next request, same token
  - Roles: list, create (admin), delete (super_admin only), deleted role -> role_not_found
  - Store failure -> generic 500, never 401/403

Fixtures used (from conftest.py):
  - api: ApiContext with one principal + access token per default role, plus "norole".
    Tests that mutate roles or principals create their own principals first.
"""

from __future__ import annotations

from jose import jwt
from sqlalchemy.exc import OperationalError

from auth.models import Role, TokenKind
from conftest import PASSWORD, ApiContext, add_principal
from core.config import get_settings


def _token_for(api: ApiContext, principal) -> dict[str, str]:
    token = api.engine.verifier.issue(principal.id, principal.email, principal.role_id)
    return {"Authorization": f"Bearer {token}"}


def _error(resp) -> dict:
    return resp.json()["error"]


def _raw_token(principal, **claims) -> str:
    """Sign arbitrary claims with the live access secret."""
    payload = {"sub": principal.id, "email": principal.email, "iat": 0, "exp": 0, "type": "access"}
    payload.update(claims)
    return jwt.encode(payload, get_settings().jwt_secret, algorithm="HS256")


# ---------------------------------------------------------------------------
# Authentication failures (401)
# ---------------------------------------------------------------------------


class TestAuthenticationFailures:
    """Credential problems are 401 with a WWW-Authenticate challenge."""

    def test_missing_token(self, api: ApiContext) -> None:
        resp = api.client.get("/api/v1/auth/me")
        assert resp.status_code == 401, resp.text
        assert _error(resp)["code"] == "no_token"
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    def test_garbage_token(self, api: ApiContext) -> None:
        resp = api.client.get("/api/v1/auth/me", headers={"Authorization": "Bearer garbage"})
        assert resp.status_code == 401
        assert _error(resp)["code"] == "invalid_token"

    def test_non_bearer_scheme(self, api: ApiContext) -> None:
        resp = api.client.get("/api/v1/auth/me", headers={"Authorization": "Basic dXNlcjpwYXNz"})
        assert resp.status_code == 401
        assert _error(resp)["code"] == "no_token"

    def test_refresh_token_rejected_as_access(self, api: ApiContext) -> None:
        dev = api.principals["developer"]
        refresh = api.engine.verifier.issue(dev.id, dev.email, kind=TokenKind.refresh)
        resp = api.client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {refresh}"})
        assert resp.status_code == 401
        assert _error(resp)["code"] == "invalid_token"

    def test_non_finite_expiry_is_invalid_token(self, api: ApiContext) -> None:
        dev = api.principals["developer"]
        token = _raw_token(dev, exp=float("inf"))
        resp = api.client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401, resp.text
        assert _error(resp)["code"] == "invalid_token"

    def test_non_finite_expiry_is_anonymous_session(self, api: ApiContext) -> None:
        dev = api.principals["developer"]
        token = _raw_token(dev, exp=float("nan"))
        resp = api.client.get("/api/v1/auth/session", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200, resp.text
        assert resp.json()["authenticated"] is False

    def test_deactivated_principal(self, api: ApiContext) -> None:
        quitter = add_principal(api.store, "quitter@example.com", "developer")
        headers = _token_for(api, quitter)
        api.store.update_user(quitter.id, is_active=False)
        resp = api.client.get("/api/v1/auth/me", headers=headers)
        assert resp.status_code == 401
        assert _error(resp)["code"] == "principal_inactive"

    def test_deleted_principal(self, api: ApiContext) -> None:
        ghost = add_principal(api.store, "ghost@example.com", "developer")
        headers = _token_for(api, ghost)
        api.store.delete_user(ghost.id)
        resp = api.client.get("/api/v1/auth/me", headers=headers)
        assert resp.status_code == 401
        assert _error(resp)["code"] == "principal_not_found"


# ---------------------------------------------------------------------------
# Auth routes
# ---------------------------------------------------------------------------


class TestRegister:
    def test_register_beginner_gets_developer_role(self, api: ApiContext) -> None:
        body = {
            "full_name": "Grace Hopper",
            "email": "Grace@Example.com",
            "password": "compilers-rule",
            "experience_level": "beginner",
        }
        resp = api.client.post("/api/v1/auth/register", json=body)
        assert resp.status_code == 201, resp.text
        assert resp.headers["Cache-Control"] == "no-store"
        data = resp.json()
        assert data["user"]["email"] == "grace@example.com"
        assert data["user"]["role"] == "developer"
        assert "hashed_password" not in data["user"]
        assert data["access_token"] and data["refresh_token"]
        assert data["token_type"] == "bearer"

        me = api.client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"})
        assert me.status_code == 200
        assert me.json()["user"]["id"] == data["user"]["id"]

    def test_register_senior_gets_mentor_role(self, api: ApiContext) -> None:
        body = {
            "full_name": "Linus",
            "email": "linus@example.com",
            "password": "kernel-hacker",
            "experience_level": "senior",
        }
        resp = api.client.post("/api/v1/auth/register", json=body)
        assert resp.status_code == 201, resp.text
        assert resp.json()["user"]["role"] == "mentor"

    def test_register_duplicate_email(self, api: ApiContext) -> None:
        body = {"full_name": "Dup", "email": "developer@example.com", "password": "whatever-123"}
        resp = api.client.post("/api/v1/auth/register", json=body)
        assert resp.status_code == 409
        assert _error(resp)["code"] == "conflict"

    def test_register_short_password(self, api: ApiContext) -> None:
        body = {"full_name": "Shorty", "email": "shorty@example.com", "password": "short"}
        resp = api.client.post("/api/v1/auth/register", json=body)
        assert resp.status_code == 422
        assert _error(resp)["code"] == "validation_error"

    def test_register_invalid_email(self, api: ApiContext) -> None:
        body = {"full_name": "Nomail", "email": "not-an-email", "password": "long-enough-1"}
        assert api.client.post("/api/v1/auth/register", json=body).status_code == 422

    def test_register_password_over_72_bytes(self, api: ApiContext) -> None:
        """40 characters but 80 bytes: rejected before bcrypt sees it."""
        body = {"full_name": "Accent", "email": "accent@example.com", "password": "\u00e9" * 40}
        resp = api.client.post("/api/v1/auth/register", json=body)
        assert resp.status_code == 422, resp.text
        assert _error(resp)["code"] == "validation_error"
        assert api.store.get_by_email("accent@example.com") is None

    def test_register_multibyte_password_within_limit(self, api: ApiContext) -> None:
        body = {"full_name": "Accent", "email": "accent-ok@example.com", "password": "\u00e9" * 36}
        assert api.client.post("/api/v1/auth/register", json=body).status_code == 201


class TestLogin:
    def test_login_success(self, api: ApiContext) -> None:
        resp = api.client.post("/api/v1/auth/login", json={"email": "MENTOR@example.com", "password": PASSWORD})
        assert resp.status_code == 200, resp.text
        assert resp.headers["Cache-Control"] == "no-store"
        data = resp.json()
        assert data["user"]["role"] == "mentor"
        assert data["expires_in"] > 0
        assert data["refresh_expires_in"] > data["expires_in"]

    def test_login_wrong_password(self, api: ApiContext) -> None:
        resp = api.client.post("/api/v1/auth/login", json={"email": "mentor@example.com", "password": "nope-nope"})
        assert resp.status_code == 401
        assert _error(resp)["code"] == "bad_credentials"

    def test_login_unknown_email_looks_the_same(self, api: ApiContext) -> None:
        resp = api.client.post("/api/v1/auth/login", json={"email": "nobody@example.com", "password": PASSWORD})
        assert resp.status_code == 401
        assert _error(resp)["code"] == "bad_credentials"


class TestRefresh:
    def test_refresh_issues_new_access_token(self, api: ApiContext) -> None:
        login = api.client.post("/api/v1/auth/login", json={"email": "developer@example.com", "password": PASSWORD})
        refresh_token = login.json()["refresh_token"]

        resp = api.client.post("/api/v1/auth/refresh", json={"refresh_token": refresh_token})
        assert resp.status_code == 200, resp.text
        access = resp.json()["access_token"]

        me = api.client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {access}"})
        assert me.status_code == 200
        assert me.json()["user"]["email"] == "developer@example.com"

    def test_access_token_is_not_a_refresh_token(self, api: ApiContext) -> None:
        resp = api.client.post("/api/v1/auth/refresh", json={"refresh_token": api.tokens["developer"]})
        assert resp.status_code == 401
        assert _error(resp)["code"] == "invalid_token"

    def test_refresh_for_deleted_principal(self, api: ApiContext) -> None:
        gone = add_principal(api.store, "gone-refresh@example.com", "developer")
        refresh = api.engine.verifier.issue(gone.id, gone.email, kind=TokenKind.refresh)
        api.store.delete_user(gone.id)
        resp = api.client.post("/api/v1/auth/refresh", json={"refresh_token": refresh})
        assert resp.status_code == 401


class TestMeAndSession:
    def test_me_reports_level_and_capabilities(self, api: ApiContext) -> None:
        resp = api.client.get("/api/v1/auth/me", headers=api.headers("admin"))
        assert resp.status_code == 200
        data = resp.json()
        assert data["user"]["role"] == "admin"
        assert data["role_level"] == 4
        assert sorted(data["capabilities"]) == ["admin", "mentor"]

    def test_me_without_role(self, api: ApiContext) -> None:
        data = api.client.get("/api/v1/auth/me", headers=api.headers("norole")).json()
        assert data["user"]["role"] is None
        assert data["role_level"] == 0
        assert data["capabilities"] == []

    def test_session_anonymous(self, api: ApiContext) -> None:
        resp = api.client.get("/api/v1/auth/session")
        assert resp.status_code == 200
        assert resp.json() == {"authenticated": False, "user": None}

    def test_session_garbage_token_is_anonymous(self, api: ApiContext) -> None:
        resp = api.client.get("/api/v1/auth/session", headers={"Authorization": "Bearer garbage"})
        assert resp.status_code == 200
        assert resp.json()["authenticated"] is False

    def test_session_authenticated(self, api: ApiContext) -> None:
        resp = api.client.get("/api/v1/auth/session", headers=api.headers("moderator"))
        data = resp.json()
        assert data["authenticated"] is True
        assert data["user"]["role"] == "moderator"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class TestUserCollection:
    def test_list_users_requires_moderator_level(self, api: ApiContext) -> None:
        resp = api.client.get("/api/v1/users", headers=api.headers("developer"))
        assert resp.status_code == 403
        error = _error(resp)
        assert error["code"] == "insufficient_level"
        assert error["detail"]["required"] == 3
        assert error["detail"]["current"] == 1
        assert "WWW-Authenticate" not in resp.headers

    def test_same_level_role_is_still_denied(self, api: ApiContext) -> None:
        resp = api.client.get("/api/v1/users", headers=api.headers("event_organizer"))
        assert resp.status_code == 403

    def test_list_users_as_moderator(self, api: ApiContext) -> None:
        resp = api.client.get("/api/v1/users", headers=api.headers("moderator"))
        assert resp.status_code == 200
        emails = {u["email"] for u in resp.json()}
        assert "admin@example.com" in emails

    def test_list_users_without_role(self, api: ApiContext) -> None:
        resp = api.client.get("/api/v1/users", headers=api.headers("norole"))
        assert resp.status_code == 403
        assert _error(resp)["code"] == "no_role"

    def test_learners_requires_mentor_capability(self, api: ApiContext) -> None:
        resp = api.client.get("/api/v1/users/learners", headers=api.headers("event_organizer"))
        assert resp.status_code == 403
        assert _error(resp)["code"] == "missing_capability"

    def test_learners_as_mentor(self, api: ApiContext) -> None:
        add_principal(api.store, "newbie@example.com", "developer", experience_level="beginner")
        resp = api.client.get("/api/v1/users/learners", headers=api.headers("mentor"))
        assert resp.status_code == 200
        assert "newbie@example.com" in {u["email"] for u in resp.json()}

    def test_create_user_as_admin(self, api: ApiContext) -> None:
        body = {"full_name": "Made By Admin", "email": "made@example.com", "role": "moderator"}
        resp = api.client.post("/api/v1/users", json=body, headers=api.headers("admin"))
        assert resp.status_code == 201, resp.text
        assert resp.json()["role"] == "moderator"

    def test_create_user_unknown_role(self, api: ApiContext) -> None:
        body = {"full_name": "Wizard", "email": "wizard@example.com", "role": "wizard"}
        resp = api.client.post("/api/v1/users", json=body, headers=api.headers("admin"))
        assert resp.status_code == 400
        assert _error(resp)["code"] == "invalid_role"

    def test_create_user_password_over_72_bytes(self, api: ApiContext) -> None:
        body = {"full_name": "Accent", "email": "accent-admin@example.com", "password": "\u00e9" * 40}
        resp = api.client.post("/api/v1/users", json=body, headers=api.headers("admin"))
        assert resp.status_code == 422, resp.text

    def test_create_user_requires_admin(self, api: ApiContext) -> None:
        body = {"full_name": "Sneaky", "email": "sneaky@example.com"}
        resp = api.client.post("/api/v1/users", json=body, headers=api.headers("moderator"))
        assert resp.status_code == 403
        assert _error(resp)["code"] == "missing_capability"


class TestUserOwnership:
    def test_owner_without_role_reads_own_record(self, api: ApiContext) -> None:
        me = api.principals["norole"]
        resp = api.client.get(f"/api/v1/users/{me.id}", headers=api.headers("norole"))
        assert resp.status_code == 200
        assert resp.json()["email"] == "norole@example.com"

    def test_non_owner_is_denied(self, api: ApiContext) -> None:
        other = api.principals["mentor"]
        resp = api.client.get(f"/api/v1/users/{other.id}", headers=api.headers("developer"))
        assert resp.status_code == 403
        assert _error(resp)["code"] == "not_owner_not_admin"

    def test_non_owner_cannot_probe_missing_ids(self, api: ApiContext) -> None:
        resp = api.client.get("/api/v1/users/does-not-exist", headers=api.headers("developer"))
        assert resp.status_code == 403

    def test_admin_reads_other_record(self, api: ApiContext) -> None:
        other = api.principals["developer"]
        resp = api.client.get(f"/api/v1/users/{other.id}", headers=api.headers("admin"))
        assert resp.status_code == 200
        assert resp.json()["role"] == "developer"

    def test_admin_missing_user_is_404(self, api: ApiContext) -> None:
        resp = api.client.get("/api/v1/users/does-not-exist", headers=api.headers("admin"))
        assert resp.status_code == 404

    def test_owner_updates_profile(self, api: ApiContext) -> None:
        owner = add_principal(api.store, "editor@example.com", "developer")
        resp = api.client.put(
            f"/api/v1/users/{owner.id}",
            json={"full_name": "Edited Name", "experience_level": "mid_level"},
            headers=_token_for(api, owner),
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["full_name"] == "Edited Name"
        assert resp.json()["experience_level"] == "mid_level"

    def test_update_password_over_72_bytes(self, api: ApiContext) -> None:
        owner = api.principals["developer"]
        resp = api.client.put(
            f"/api/v1/users/{owner.id}",
            json={"password": "\u00e9" * 40},
            headers=api.headers("developer"),
        )
        assert resp.status_code == 422, resp.text

    def test_empty_update_is_400(self, api: ApiContext) -> None:
        owner = api.principals["developer"]
        resp = api.client.put(f"/api/v1/users/{owner.id}", json={}, headers=api.headers("developer"))
        assert resp.status_code == 400
        assert _error(resp)["code"] == "no_changes"

    def test_update_to_taken_email_is_409(self, api: ApiContext) -> None:
        owner = add_principal(api.store, "clash@example.com", "developer")
        resp = api.client.put(
            f"/api/v1/users/{owner.id}",
            json={"email": "admin@example.com"},
            headers=_token_for(api, owner),
        )
        assert resp.status_code == 409

    def test_owner_deletes_self(self, api: ApiContext) -> None:
        owner = add_principal(api.store, "leaving@example.com", None)
        headers = _token_for(api, owner)
        assert api.client.delete(f"/api/v1/users/{owner.id}", headers=headers).status_code == 204
        assert api.client.get("/api/v1/auth/me", headers=headers).status_code == 401


class TestRoleAssignment:
    def test_promotion_applies_to_existing_token(self, api: ApiContext) -> None:
        dev = add_principal(api.store, "promote-me@example.com", "developer")
        headers = _token_for(api, dev)
        assert api.client.get("/api/v1/users", headers=headers).status_code == 403

        resp = api.client.put(f"/api/v1/users/{dev.id}/role", json={"role": "Moderator"}, headers=api.headers("admin"))
        assert resp.status_code == 200, resp.text
        assert resp.json()["role"] == "moderator"

        assert api.client.get("/api/v1/users", headers=headers).status_code == 200

    def test_assign_requires_admin(self, api: ApiContext) -> None:
        target = api.principals["developer"]
        resp = api.client.put(
            f"/api/v1/users/{target.id}/role",
            json={"role": "super_admin"},
            headers=api.headers("moderator"),
        )
        assert resp.status_code == 403
        assert _error(resp)["code"] == "missing_capability"

    def test_assign_unknown_role(self, api: ApiContext) -> None:
        target = api.principals["developer"]
        resp = api.client.put(f"/api/v1/users/{target.id}/role", json={"role": "wizard"}, headers=api.headers("admin"))
        assert resp.status_code == 400

    def test_assign_to_missing_user(self, api: ApiContext) -> None:
        resp = api.client.put("/api/v1/users/nobody/role", json={"role": "mentor"}, headers=api.headers("admin"))
        assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


class TestRoles:
    def test_list_roles(self, api: ApiContext) -> None:
        resp = api.client.get("/api/v1/roles", headers=api.headers("developer"))
        assert resp.status_code == 200
        roles = {r["name"]: r for r in resp.json()}
        assert roles["super_admin"]["level"] == 5
        assert roles["mentor"]["mentor"] is True
        assert roles["event_organizer"]["mentor"] is False

    def test_list_roles_requires_auth(self, api: ApiContext) -> None:
        assert api.client.get("/api/v1/roles").status_code == 401

    def test_create_role_as_admin(self, api: ApiContext) -> None:
        resp = api.client.post(
            "/api/v1/roles",
            json={"name": "Speaker", "description": "Gives talks"},
            headers=api.headers("admin"),
        )
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["name"] == "speaker"
        assert data["level"] == 0
        assert data["admin"] is False

    def test_create_duplicate_role(self, api: ApiContext) -> None:
        resp = api.client.post("/api/v1/roles", json={"name": "developer"}, headers=api.headers("admin"))
        assert resp.status_code == 409

    def test_delete_role_requires_super_admin(self, api: ApiContext) -> None:
        role_id = api.store.create_role(Role(name="temp_admin_only"))
        resp = api.client.delete(f"/api/v1/roles/{role_id}", headers=api.headers("admin"))
        assert resp.status_code == 403
        error = _error(resp)
        assert error["code"] == "insufficient_role"
        assert error["detail"] == {"required": ["super_admin"], "current": "admin"}

    def test_delete_missing_role(self, api: ApiContext) -> None:
        resp = api.client.delete("/api/v1/roles/no-such-role", headers=api.headers("super_admin"))
        assert resp.status_code == 404

    def test_deleted_role_is_role_not_found(self, api: ApiContext) -> None:
        role_id = api.store.create_role(Role(name="doomed"))
        holder = add_principal(api.store, "doomed@example.com", "doomed")
        headers = _token_for(api, holder)

        resp = api.client.delete(f"/api/v1/roles/{role_id}", headers=api.headers("super_admin"))
        assert resp.status_code == 204

        denied = api.client.get("/api/v1/users", headers=headers)
        assert denied.status_code == 403
        assert _error(denied)["code"] == "role_not_found"

        # Ownership does not depend on the role.
        own = api.client.get(f"/api/v1/users/{holder.id}", headers=headers)
        assert own.status_code == 200
        assert own.json()["role"] is None


# ---------------------------------------------------------------------------
# Infrastructure failures
# ---------------------------------------------------------------------------


class TestStoreFailure:
    def test_store_error_is_500_not_401(self, api: ApiContext, monkeypatch) -> None:
        def _broken(user_id):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(api.store, "get_by_id", _broken)
        resp = api.client.get("/api/v1/auth/me", headers=api.headers("developer"))
        assert resp.status_code == 500
        assert _error(resp)["code"] == "internal_error"
        assert "locked" not in resp.text
