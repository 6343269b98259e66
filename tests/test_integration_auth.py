"""Integration tests for the account lifecycle over HTTP.

Covers:
- Signup and email confirmation
- Login and logout
- Password reset and update
- Profile update
- Deactivation and reactivation
"""

import pytest
from fastapi.testclient import TestClient

from tourauth import app as app_module
from tourauth.service.runtime import reset_runtime_for_tests

BASE = "/api/v1/users"
EMAIL = "alice@example.com"
PASSWORD = "pass1234!"
NEW_PASSWORD = "n3w-pass-phrase"


@pytest.fixture
def runtime(clock, mailer):
    runtime = reset_runtime_for_tests(clock=clock)
    runtime.notifier.mailer = mailer
    return runtime


@pytest.fixture
def client(runtime):
    return TestClient(app_module.app)


def _signup(client, email=EMAIL, **overrides):
    body = {"name": "Alice Walker", "email": email, "password": PASSWORD, "passwordConfirm": PASSWORD}
    body.update(overrides)
    return client.post(f"{BASE}/signup", json=body)


@pytest.fixture
def confirmed(client, mailer):
    """Sign up and confirm; returns the token from the confirmation response."""
    assert _signup(client).status_code == 202
    response = client.patch(f"{BASE}/confirmEmail/{mailer.last_confirmation_token()}")
    assert response.status_code == 200, response.text
    return response.json()["data"]["token"]


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


class TestSignupFlow:
    def test_signup_returns_pending_without_token(self, client, mailer):
        response = _signup(client)

        assert response.status_code == 202
        data = response.json()["data"]
        assert data["pending"] is True
        assert data["email"] == EMAIL
        assert "token" not in data
        assert "jwt" not in response.cookies
        assert mailer.sent[-1]["to"] == EMAIL

    def test_login_before_confirmation_is_forbidden(self, client):
        _signup(client)
        response = client.post(f"{BASE}/login", json={"email": EMAIL, "password": PASSWORD})

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "forbidden"

    def test_confirmation_logs_the_account_in(self, client, mailer):
        _signup(client)
        response = client.patch(f"{BASE}/confirmEmail/{mailer.last_confirmation_token()}")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["user"]["email_confirmed"] is True
        assert "password_hash" not in data["user"]
        assert client.cookies.get("jwt") == data["token"]

    def test_confirmation_link_expires(self, client, mailer, clock):
        _signup(client)
        clock.advance(minutes=11)

        response = client.patch(f"{BASE}/confirmEmail/{mailer.last_confirmation_token()}")
        assert response.status_code == 400

    def test_duplicate_signup_conflicts(self, client, confirmed):
        response = _signup(client)
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "conflict"

    def test_pending_signup_conflicts(self, client):
        _signup(client)
        assert _signup(client).status_code == 409

    def test_password_mismatch(self, client):
        response = _signup(client, passwordConfirm="something-else")
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"

    def test_malformed_email(self, client):
        response = _signup(client, email="not-an-email")
        assert response.status_code == 400

    def test_missing_fields(self, client):
        response = client.post(f"{BASE}/signup", json={"email": EMAIL})
        assert response.status_code == 400

    def test_admin_role_not_granted(self, client, mailer):
        _signup(client, role="admin")
        response = client.patch(f"{BASE}/confirmEmail/{mailer.last_confirmation_token()}")
        assert response.json()["data"]["user"]["role"] == "user"

    def test_mail_failure_allows_retry(self, client, mailer):
        mailer.fail = True
        response = _signup(client)
        assert response.status_code == 502
        assert response.json()["error"]["code"] == "upstream_error"

        mailer.fail = False
        assert _signup(client).status_code == 202


class TestLoginLogout:
    def test_login_and_me_via_cookie(self, client, confirmed):
        client.cookies.clear()
        response = client.post(f"{BASE}/login", json={"email": EMAIL, "password": PASSWORD})

        assert response.status_code == 200
        me = client.get(f"{BASE}/me")
        assert me.status_code == 200
        assert me.json()["data"]["user"]["email"] == EMAIL

    def test_wrong_password(self, client, confirmed):
        response = client.post(f"{BASE}/login", json={"email": EMAIL, "password": "wrong-pass"})

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "incorrect email or password"

    def test_me_requires_token(self, client):
        response = client.get(f"{BASE}/me")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"

    def test_logout_expires_cookie(self, client, confirmed):
        response = client.get(f"{BASE}/logout")

        assert response.status_code == 200
        assert "Max-Age=0" in response.headers["set-cookie"]

    def test_request_id_is_echoed(self, client):
        response = client.get(f"{BASE}/me", headers={"X-Request-ID": "req-abc-123"})

        assert response.headers["X-Request-ID"] == "req-abc-123"
        assert response.json()["request_id"] == "req-abc-123"


class TestPasswordFlows:
    def test_forgot_unknown_email(self, client):
        response = client.post(f"{BASE}/forgotPassword", json={"email": "nobody@example.com"})
        assert response.status_code == 404

    def test_reset_password_invalidates_old_tokens(self, client, mailer, confirmed):
        client.cookies.clear()
        assert client.post(f"{BASE}/forgotPassword", json={"email": EMAIL}).status_code == 200

        response = client.patch(
            f"{BASE}/resetPassword/{mailer.last_reset_token()}",
            json={"password": NEW_PASSWORD, "passwordConfirm": NEW_PASSWORD},
        )
        assert response.status_code == 200
        fresh = response.json()["data"]["token"]

        client.cookies.clear()
        assert client.get(f"{BASE}/me", headers=_bearer(confirmed)).status_code == 401
        assert client.get(f"{BASE}/me", headers=_bearer(fresh)).status_code == 200

    def test_update_password(self, client, confirmed):
        client.cookies.clear()
        response = client.patch(
            f"{BASE}/updatePassword",
            headers=_bearer(confirmed),
            json={
                "currentPassword": PASSWORD,
                "newPassword": NEW_PASSWORD,
                "newPasswordConfirm": NEW_PASSWORD,
            },
        )
        assert response.status_code == 200
        fresh = response.json()["data"]["token"]

        client.cookies.clear()
        assert client.get(f"{BASE}/me", headers=_bearer(confirmed)).status_code == 401
        assert client.get(f"{BASE}/me", headers=_bearer(fresh)).status_code == 200

    def test_update_password_same_password(self, client, confirmed):
        client.cookies.clear()
        response = client.patch(
            f"{BASE}/updatePassword",
            headers=_bearer(confirmed),
            json={
                "currentPassword": PASSWORD,
                "newPassword": PASSWORD,
                "newPasswordConfirm": PASSWORD,
            },
        )
        assert response.status_code == 400


class TestProfileAndDeactivation:
    def test_update_profile(self, client, confirmed):
        response = client.patch(
            f"{BASE}/updateProfileInfo", headers=_bearer(confirmed), json={"name": "Alice W."}
        )

        assert response.status_code == 200
        assert response.json()["data"]["user"]["name"] == "Alice W."

    def test_deactivate_then_reactivate(self, client, confirmed):
        client.cookies.clear()
        response = client.request(
            "DELETE", f"{BASE}/deleteAccount", headers=_bearer(confirmed), json={"password": PASSWORD}
        )
        assert response.status_code == 204

        assert client.get(f"{BASE}/me", headers=_bearer(confirmed)).status_code == 401
        login = client.post(f"{BASE}/login", json={"email": EMAIL, "password": PASSWORD})
        assert login.status_code == 401

        client.cookies.clear()
        response = client.post(
            f"{BASE}/reActivateAccount", json={"email": EMAIL, "password": PASSWORD}
        )
        assert response.status_code == 200
        assert response.json()["data"]["user"]["active"] is True

        client.cookies.clear()
        assert client.get(f"{BASE}/me", headers=_bearer(confirmed)).status_code == 200

    def test_deactivate_wrong_password(self, client, confirmed):
        client.cookies.clear()
        response = client.request(
            "DELETE", f"{BASE}/deleteAccount", headers=_bearer(confirmed), json={"password": "nope-nope"}
        )
        assert response.status_code == 401
        assert client.get(f"{BASE}/me", headers=_bearer(confirmed)).status_code == 200


def test_healthz_reports_memory_store(client):
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json()["checks"]["database"]["type"] == "memory"
