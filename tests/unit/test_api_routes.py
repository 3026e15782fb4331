"""API route tests with FastAPI TestClient

Authentication is replaced through dependency_overrides; the database is the
per-test SQLite file from the temp_db fixture.
"""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from unittest.mock import AsyncMock, Mock, patch

import pytest
from fastapi.testclient import TestClient

from subzero.api.app import app
from subzero.api.middleware.user_auth import AuthenticatedUser, get_current_user
from subzero.api.routes.gmail import get_oauth_service, get_sync_orchestrator
from subzero.errors import ConfigurationError, CredentialError
from subzero.gmail.oauth import GmailOAuthService, OAuthClientConfig
from subzero.observability.telemetry import time_block
from subzero.storage import MailAccountRepository
from subzero.subscriptions.repository import SubscriptionRepository
from subzero.subscriptions.service import SubscriptionService
from subzero.subscriptions.sync import NO_ACCOUNTS_ERROR, SyncResult
from subzero.utils.error_sanitizer import GENERIC_MESSAGES

USER = AuthenticatedUser(id="user-1", email="me@example.com", name="Me")


@pytest.fixture
def client(temp_db):
    app.dependency_overrides[get_current_user] = lambda: USER
    yield TestClient(app)
    app.dependency_overrides.clear()


def override(dependency, value):
    app.dependency_overrides[dependency] = lambda: value


def subscription_body(**overrides):
    body = {
        "name": "Netflix",
        "amount": 649,
        "billing_cycle": "monthly",
        "category": "Streaming",
        "renewal_date": "2026-11-05",
        "currency": "INR",
    }
    body.update(overrides)
    return body


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "SubZero API"
        assert "llm" in data and "gmail_oauth" in data

    def test_health_reports_sync_latency(self, client):
        with time_block("sync.total"):
            pass

        latency = client.get("/health").json()["latency_ms"]

        assert latency["sync.total"]["count"] == 1
        assert latency["gmail.scan"] == {
            "count": 0,
            "min": 0.0,
            "max": 0.0,
            "avg": 0.0,
            "p50": 0.0,
            "p95": 0.0,
        }

    def test_root(self, client):
        assert client.get("/").json()["status"] == "running"


class TestAuthRequired:
    def test_routes_reject_missing_token(self, temp_db):
        app.dependency_overrides.clear()
        client = TestClient(app)

        for path in ("/api/subscriptions", "/api/gmail/accounts", "/api/analytics/burn"):
            assert client.get(path).status_code == 401


class TestSubscriptions:
    def test_create_and_list(self, client):
        created = client.post("/api/subscriptions", json=subscription_body())

        assert created.status_code == 201
        data = created.json()
        assert data["verified"] is True
        assert data["source"] == "manual"
        assert data["renewal_date"] == "2026-11-05"

        listed = client.get("/api/subscriptions").json()
        assert [s["id"] for s in listed] == [data["id"]]

    def test_create_rejects_invalid_body(self, client):
        response = client.post("/api/subscriptions", json=subscription_body(amount=-1))

        assert response.status_code == 422
        assert "amount" in response.json()["invalid_fields"]

    def test_update(self, client):
        sub_id = client.post("/api/subscriptions", json=subscription_body()).json()["id"]

        response = client.patch(
            f"/api/subscriptions/{sub_id}", json={"amount": 20, "currency": "USD"}
        )

        assert response.status_code == 200
        assert response.json()["amount_in_base_currency"] == 1660

    def test_update_blank_name_is_400(self, client):
        sub_id = client.post("/api/subscriptions", json=subscription_body()).json()["id"]

        response = client.patch(f"/api/subscriptions/{sub_id}", json={"name": "  "})

        assert response.status_code == 400

    def test_update_unknown_is_404(self, client):
        response = client.patch("/api/subscriptions/missing", json={"amount": 5})

        assert response.status_code == 404

    def test_verify_and_delete(self, client):
        result = SubscriptionService().persist(
            "user-1", subscription_body(), source="ai-detected"
        )

        verified = client.post(f"/api/subscriptions/{result.id}/verify")
        assert verified.status_code == 200
        assert verified.json()["verified"] is True

        assert client.delete(f"/api/subscriptions/{result.id}").status_code == 200
        assert client.delete(f"/api/subscriptions/{result.id}").status_code == 404

    def test_store_failure_is_500_without_details(self, client):
        sub_id = client.post("/api/subscriptions", json=subscription_body()).json()["id"]

        with patch.object(
            SubscriptionRepository,
            "verify",
            side_effect=sqlite3.OperationalError("no such table: subscriptions"),
        ):
            response = client.post(f"/api/subscriptions/{sub_id}/verify")

        assert response.status_code == 500
        assert response.json() == {"detail": GENERIC_MESSAGES[500]}

    def test_other_users_subscription_is_hidden(self, client):
        result = SubscriptionService().persist("user-2", subscription_body())

        assert client.post(f"/api/subscriptions/{result.id}/verify").status_code == 404
        assert client.delete(f"/api/subscriptions/{result.id}").status_code == 404
        assert client.get("/api/subscriptions").json() == []


class TestAnalytics:
    def test_burn_series(self, client):
        for amount in (100, 200, 300):
            body = subscription_body(name=f"S{amount}", amount=amount)
            client.post("/api/subscriptions", json=body)

        data = client.get("/api/analytics/burn").json()

        assert len(data["points"]) == 12
        assert data["points"][5]["actual"] == 600
        assert data["points"][5]["projected"] == 600
        assert data["points"][0]["optimized"] is None
        assert data["annual_savings"] == 1440

    def test_stats(self, client):
        body = subscription_body(billing_cycle="yearly", amount=1200)
        client.post("/api/subscriptions", json=body)

        data = client.get("/api/analytics/stats").json()

        assert data["active_count"] == 1
        assert data["total_monthly_spend"] == 100
        assert data["total_yearly_spend"] == 1200

    def test_insights(self, client):
        for name in ("Netflix", "Hotstar", "Prime"):
            client.post("/api/subscriptions", json=subscription_body(name=name, amount=20))

        data = client.get("/api/analytics/insights").json()

        assert [i["type"] for i in data["insights"]] == ["kill"]
        assert data["insights"][0]["title"] == "Streaming Service Fatigue"
        assert data["estimated_monthly_savings"] == 0
        assert "analyzed_at" in data


class TestGmail:
    def test_connect_returns_consent_url(self, client):
        oauth = Mock()
        oauth.authorization_url.return_value = "https://accounts.google.com/o/oauth2/auth?x=1"
        override(get_oauth_service, oauth)

        response = client.get("/api/gmail/connect")

        assert response.status_code == 200
        assert response.json()["url"].startswith("https://accounts.google.com")
        oauth.authorization_url.assert_called_once_with("user-1")

    def test_connect_unconfigured_is_503(self, client):
        oauth = Mock()
        oauth.authorization_url.side_effect = ConfigurationError("Missing Google OAuth env vars")
        override(get_oauth_service, oauth)

        assert client.get("/api/gmail/connect").status_code == 503

    def test_callback_connects_and_redirects(self, client):
        oauth = Mock()
        oauth.verify_state.return_value = "user-1"
        override(get_oauth_service, oauth)

        response = client.get(
            "/api/gmail/callback",
            params={"code": "auth-code", "state": "signed-state"},
            follow_redirects=False,
        )

        assert response.status_code == 307
        assert response.headers["location"].endswith("/dashboard?sync=connected")
        oauth.verify_state.assert_called_once_with("signed-state")
        oauth.connect_account.assert_called_once_with("user-1", "auth-code")

    def test_callback_rejects_forged_state(self, client):
        oauth = GmailOAuthService(OAuthClientConfig("id", "secret", "http://localhost/cb"))
        override(get_oauth_service, oauth)

        with patch.object(oauth, "connect_account") as connect_account:
            response = client.get(
                "/api/gmail/callback",
                params={"code": "auth-code", "state": "user-2:1700000000:deadbeef"},
                follow_redirects=False,
            )

        assert response.headers["location"].endswith("sync=error")
        connect_account.assert_not_called()

    def test_callback_accepts_state_from_connect(self, client):
        oauth = GmailOAuthService(OAuthClientConfig("id", "secret", "http://localhost/cb"))
        override(get_oauth_service, oauth)

        with patch.object(oauth, "connect_account") as connect_account:
            response = client.get(
                "/api/gmail/callback",
                params={"code": "auth-code", "state": oauth.sign_state("user-1")},
                follow_redirects=False,
            )

        assert response.headers["location"].endswith("sync=connected")
        connect_account.assert_called_once_with("user-1", "auth-code")

    def test_callback_denied(self, client):
        override(get_oauth_service, Mock())

        response = client.get(
            "/api/gmail/callback", params={"error": "access_denied"}, follow_redirects=False
        )

        assert response.headers["location"].endswith("sync=denied")

    def test_callback_failure_redirects_with_error(self, client):
        oauth = Mock()
        oauth.verify_state.return_value = "user-1"
        oauth.connect_account.side_effect = CredentialError("Token exchange failed")
        override(get_oauth_service, oauth)

        response = client.get(
            "/api/gmail/callback",
            params={"code": "bad", "state": "signed-state"},
            follow_redirects=False,
        )

        assert response.headers["location"].endswith("sync=error")

    def test_callback_missing_code_is_400(self, client):
        override(get_oauth_service, Mock())

        assert client.get("/api/gmail/callback", params={"state": "user-1"}).status_code == 400

    def test_accounts_hide_credentials(self, client):
        MailAccountRepository.upsert("user-1", "a@gmail.com", "secret-ciphertext")

        data = client.get("/api/gmail/accounts").json()

        assert len(data) == 1
        assert data[0]["email"] == "a@gmail.com"
        assert "encrypted_credentials" not in data[0]

    def test_disconnect(self, client):
        account = MailAccountRepository.upsert("user-1", "a@gmail.com", "c")

        assert client.delete(f"/api/gmail/accounts/{account.id}").json() == {
            "status": "deleted",
            "id": account.id,
        }
        assert client.delete(f"/api/gmail/accounts/{account.id}").status_code == 404

    def test_sync(self, client):
        orchestrator = Mock()
        orchestrator.sync = AsyncMock(
            return_value=SyncResult(success=True, added=2, scanned=7, accounts_scanned=2)
        )
        override(get_sync_orchestrator, orchestrator)

        response = client.post("/api/gmail/sync")

        assert response.json() == {
            "success": True,
            "added": 2,
            "scanned": 7,
            "accounts_scanned": 2,
            "error": None,
            "skipped": False,
        }
        orchestrator.sync.assert_awaited_once_with("user-1", after=None)

    def test_sync_without_accounts(self, client):
        response = client.post("/api/gmail/sync")

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["error"] == NO_ACCOUNTS_ERROR

    def test_auto_sync_skipped_when_fresh(self, client):
        orchestrator = Mock()
        orchestrator.auto_sync = AsyncMock(return_value=None)
        override(get_sync_orchestrator, orchestrator)

        data = client.post("/api/gmail/auto-sync").json()

        assert data["skipped"] is True
        assert data["success"] is True


class TestSettingsAndNotifications:
    def test_settings_default_and_update(self, client):
        assert client.get("/api/settings/notifications").json() == {
            "email": True,
            "dashboard": True,
        }

        client.put("/api/settings/notifications", json={"email": False, "dashboard": True})

        assert client.get("/api/settings/notifications").json() == {
            "email": False,
            "dashboard": True,
        }

    def test_notifications_list_empty(self, client):
        assert client.get("/api/notifications").json() == []


class TestCron:
    def test_unconfigured_secret_is_503(self, client, monkeypatch):
        monkeypatch.delenv("SUBZERO_CRON_SECRET", raising=False)

        assert client.get("/api/cron/send-reminders?secret=x").status_code == 503

    def test_wrong_secret_is_401(self, client, monkeypatch):
        monkeypatch.setenv("SUBZERO_CRON_SECRET", "right")

        assert client.get("/api/cron/send-reminders?secret=wrong").status_code == 401
        assert client.get("/api/cron/send-reminders").status_code == 401

    def test_send_reminders(self, client, monkeypatch):
        monkeypatch.setenv("SUBZERO_CRON_SECRET", "right")
        renewal = datetime.now(UTC).date().isoformat()
        SubscriptionService().persist("user-1", subscription_body(renewal_date=renewal))

        data = client.get("/api/cron/send-reminders?secret=right").json()

        assert data["success"] is True
        assert data["reminded"] == 1
        assert data["notifications"] == 1
        assert len(client.get("/api/notifications").json()) == 1
