"""Integration tests for admin user management.

Admins are never created through signup; the tests seed them straight into
the store the same way the bootstrap script does.
"""

import pytest
from fastapi.testclient import TestClient

from tourauth import app as app_module
from tourauth.service.runtime import reset_runtime_for_tests
from tourauth.storage.models import Role

BASE = "/api/v1/users"


@pytest.fixture
def runtime(clock, mailer):
    runtime = reset_runtime_for_tests(clock=clock)
    runtime.notifier.mailer = mailer
    return runtime


@pytest.fixture
def client(runtime):
    return TestClient(app_module.app)


def _seed(runtime, email, role=Role.USER):
    account = runtime.store.create_account(
        name=email.split("@")[0].title(),
        email=email,
        password_hash=runtime.hasher.hash("pass1234!"),
        role=role,
        email_confirmed=True,
    )
    return account, {"Authorization": f"Bearer {runtime.codec.issue(account.id)}"}


@pytest.fixture
def admin(runtime):
    return _seed(runtime, "admin@example.com", Role.ADMIN)


@pytest.fixture
def guide(runtime):
    return _seed(runtime, "guide@example.com", Role.GUIDE)


class TestAdminAccess:
    def test_non_admin_is_forbidden(self, client, guide):
        _, headers = guide
        response = client.get(f"{BASE}/", headers=headers)

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "forbidden"

    def test_anonymous_is_unauthorized(self, client):
        assert client.get(f"{BASE}/").status_code == 401


class TestUserManagement:
    def test_list_users(self, client, admin, guide):
        _, headers = admin
        response = client.get(f"{BASE}/", headers=headers)

        assert response.status_code == 200
        emails = {u["email"] for u in response.json()["data"]["items"]}
        assert emails == {"admin@example.com", "guide@example.com"}

    def test_list_filters_by_role(self, client, admin, guide):
        _, headers = admin
        response = client.get(f"{BASE}/", headers=headers, params={"role": "guide"})

        items = response.json()["data"]["items"]
        assert [u["email"] for u in items] == ["guide@example.com"]

    def test_list_hides_inactive_unless_asked(self, client, runtime, admin, guide):
        _, headers = admin
        runtime.store.update_account(guide[0].id, active=False)

        visible = client.get(f"{BASE}/", headers=headers).json()["data"]["items"]
        everyone = client.get(
            f"{BASE}/", headers=headers, params={"include_inactive": "true"}
        ).json()["data"]["items"]
        assert len(visible) == 1
        assert len(everyone) == 2

    def test_get_user(self, client, admin, guide):
        _, headers = admin
        response = client.get(f"{BASE}/{guide[0].id}", headers=headers)

        assert response.status_code == 200
        assert response.json()["data"]["user"]["role"] == "guide"

    def test_get_missing_user(self, client, admin):
        _, headers = admin
        assert client.get(f"{BASE}/no-such-id", headers=headers).status_code == 404

    def test_promote_user(self, client, admin, guide):
        _, headers = admin
        response = client.patch(
            f"{BASE}/{guide[0].id}", headers=headers, json={"role": "lead-guide"}
        )

        assert response.status_code == 200
        assert response.json()["data"]["user"]["role"] == "lead-guide"

    def test_patch_ignores_password_fields(self, client, runtime, admin, guide):
        _, headers = admin
        before = runtime.store.get_account(guide[0].id).password_hash
        response = client.patch(
            f"{BASE}/{guide[0].id}", headers=headers, json={"password": "hijacked!!"}
        )

        assert response.status_code == 400
        assert runtime.store.get_account(guide[0].id).password_hash == before

    def test_patch_rejects_unknown_role(self, client, admin, guide):
        _, headers = admin
        response = client.patch(f"{BASE}/{guide[0].id}", headers=headers, json={"role": "owner"})
        assert response.status_code == 400

    def test_delete_user(self, client, runtime, admin, guide):
        _, headers = admin
        response = client.delete(f"{BASE}/{guide[0].id}", headers=headers)

        assert response.status_code == 204
        assert runtime.store.get_account(guide[0].id, include_inactive=True) is None
        assert client.delete(f"{BASE}/{guide[0].id}", headers=headers).status_code == 404

    def test_admin_cannot_delete_self(self, client, admin):
        account, headers = admin
        assert client.delete(f"{BASE}/{account.id}", headers=headers).status_code == 400

    def test_deleted_user_token_stops_working(self, client, admin, guide):
        _, admin_headers = admin
        _, guide_headers = guide
        client.delete(f"{BASE}/{guide[0].id}", headers=admin_headers)

        assert client.get(f"{BASE}/me", headers=guide_headers).status_code == 401


class TestBootstrapScript:
    def test_creates_then_reports_existing_admin(self, runtime):
        from scripts.bootstrap_admin import bootstrap_admin

        created = bootstrap_admin("root@example.com", "Sup3r-Secret-Pass!", name="Root")
        assert created["status"] == "created"
        assert runtime.store.get_account(created["account_id"]).role is Role.ADMIN

        again = bootstrap_admin("root@example.com", "Sup3r-Secret-Pass!")
        assert again["status"] == "already_admin"

    def test_promotes_existing_account(self, runtime, guide):
        from scripts.bootstrap_admin import bootstrap_admin

        result = bootstrap_admin("guide@example.com", "ignored-password")
        assert result["status"] == "promoted"
        assert runtime.store.get_account(guide[0].id).role is Role.ADMIN
