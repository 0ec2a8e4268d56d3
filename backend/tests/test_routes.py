"""
HTTP surface: authentication and role guards, domain errors mapped to their
status codes with an error_code, and the public pricing and plan endpoints.
"""
import pytest
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from auth import create_access_token
from diligence.errors import InsufficientCredits, MonthlyQuotaExceeded, PaymentNotCompleted
from diligence.models.notifications import NotificationLog


def _auth(user_id="u1", role="USER"):
    return {"Authorization": f"Bearer {create_access_token({'user_id': user_id, 'role': role})}"}


def _accounts_db(role="USER", status="ACTIVE"):
    db = MagicMock()
    db.users.find_one = AsyncMock(return_value={"status": status, "role": role})
    return db


class TestPublicEndpoints:

    def test_health_and_version(self, client):
        assert client.get("/api/health").json()["status"] == "healthy"
        version = client.get("/api/version").json()
        assert version["version"]
        assert "commit_sha" in version

    def test_plans(self, client):
        plans = client.get("/api/subscription-plans").json()["plans"]
        assert len(plans) == 4
        assert plans[0]["plan_type"] == "BASIC_FREE"

    def test_consultation_quote(self, client):
        response = client.post(
            "/api/pricing/quote/consultation",
            json={"consultation_type": "DUE_DILIGENCE", "duration_minutes": 45},
        )
        assert response.status_code == 200
        assert response.json()["price"] == 300

    def test_unsupported_duration_is_400(self, client):
        response = client.post(
            "/api/pricing/quote/consultation",
            json={"consultation_type": "DUE_DILIGENCE", "duration_minutes": 50},
        )
        assert response.status_code == 400
        assert response.json()["detail"]["error_code"] == "INVALID_PRICING_INPUT"

    def test_validation_error_has_request_id(self, client):
        response = client.post("/api/pricing/quote/report", json={"report_type": "NOPE"})
        assert response.status_code == 422
        body = response.json()
        assert len(body["request_id"]) == 36
        assert body["detail"]


class TestAuthGuards:

    def test_missing_token(self, client):
        assert client.get("/api/dashboard/quota").status_code == 401

    def test_inactive_account(self, client):
        with patch("middleware.database.get_db", return_value=_accounts_db(status="SUSPENDED")):
            response = client.get("/api/dashboard/quota", headers=_auth())
        assert response.status_code == 403

    def test_user_cannot_reach_admin_routes(self, client):
        with patch("middleware.database.get_db", return_value=_accounts_db(role="USER")):
            response = client.get("/api/admin/notifications/history", headers=_auth(role="ADMIN"))
        assert response.status_code == 403

    def test_admin_cannot_bulk_review(self, client):
        with patch("middleware.database.get_db", return_value=_accounts_db(role="ADMIN")):
            response = client.put(
                "/api/admin/expert-applications",
                json={"expert_ids": ["EXP-1"], "action": "APPROVE"},
                headers=_auth("admin-1", "ADMIN"),
            )
        assert response.status_code == 403


class TestErrorMapping:

    def test_quota_exceeded_is_429(self, client):
        with patch("middleware.database.get_db", return_value=_accounts_db()), \
             patch("diligence.routes.projects.project_service.submit_project", new_callable=AsyncMock,
                   side_effect=MonthlyQuotaExceeded("Monthly project limit of 1 reached")):
            response = client.post("/api/projects", json={"name": "Rollup X"}, headers=_auth())
        assert response.status_code == 429
        assert response.json()["detail"]["error_code"] == "MONTHLY_QUOTA_EXCEEDED"

    def test_unpaid_activation_is_402(self, client):
        with patch("middleware.database.get_db", return_value=_accounts_db()), \
             patch("diligence.routes.subscriptions.subscription_service.activate_subscription", new_callable=AsyncMock,
                   side_effect=PaymentNotCompleted("Payment for Premium has not completed")):
            response = client.post(
                "/api/subscriptions/activate",
                json={"plan_type": "BASIC_MONTHLY", "amount": 299},
                headers=_auth(),
            )
        assert response.status_code == 402
        assert response.json()["detail"]["error_code"] == "PAYMENT_NOT_COMPLETED"

    def test_unexpected_error_is_500(self, client):
        with patch("middleware.database.get_db", return_value=_accounts_db()), \
             patch("diligence.routes.subscriptions.credit_service.get_usage_report", new_callable=AsyncMock,
                   side_effect=RuntimeError("mongo timeout")):
            response = client.get("/api/subscriptions/usage", headers=_auth())
        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to get subscription usage"

    def test_insufficient_credits_is_402(self, client):
        with patch("middleware.database.get_db", return_value=_accounts_db()), \
             patch("diligence.routes.bookings.booking_service.book_consultation", new_callable=AsyncMock,
                   side_effect=InsufficientCredits("No consultation credits remaining")):
            response = client.post(
                "/api/sessions/book",
                json={
                    "consultation_type": "STRATEGIC_ADVISORY",
                    "duration_minutes": 30,
                    "scheduled_at": "2030-01-01T10:00:00+00:00",
                },
                headers=_auth(),
            )
        assert response.status_code == 402


class TestDashboardAndAdmin:

    def test_mark_read_needs_ids_or_all(self, client):
        with patch("middleware.database.get_db", return_value=_accounts_db()):
            response = client.patch("/api/dashboard/notifications", json={}, headers=_auth())
        assert response.status_code == 400

    def test_expiry_check_rejects_non_positive_days(self, client):
        with patch("middleware.database.get_db", return_value=_accounts_db(role="ADMIN")):
            response = client.post(
                "/api/admin/notifications/subscription-expiry",
                json={"days_to_check": [7, 0]},
                headers=_auth("admin-1", "ADMIN"),
            )
        assert response.status_code == 400

    def test_send_reports_delivery_result(self, client):
        log = NotificationLog(notification_type="admin_message", email_sent=False, error_message="bounced")
        with patch("middleware.database.get_db", return_value=_accounts_db(role="ADMIN")), \
             patch("diligence.routes.admin_notifications.notification_service.send_admin_message",
                   new_callable=AsyncMock, return_value=log):
            response = client.post(
                "/api/admin/notifications/users/u1/send",
                json={"subject": "Hello", "message": "Your report is ready"},
                headers=_auth("admin-1", "ADMIN"),
            )
        assert response.status_code == 200
        assert response.json() == {"success": False, "log_id": log.log_id, "error": "bounced"}

    def test_admin_cannot_suspend_themselves(self, client):
        with patch("middleware.database.get_db", return_value=_accounts_db(role="ADMIN")):
            response = client.patch(
                "/api/admin/users/admin-1/status",
                json={"status": "SUSPENDED"},
                headers=_auth("admin-1", "ADMIN"),
            )
        assert response.status_code == 409
        assert response.json()["detail"]["error_code"] == "INVALID_STATUS_TRANSITION"
