"""
Tests for the admin notification summary: time windows, expiration buckets,
suspicious logins and best-effort fetching.
"""
import pytest
import sys
from pathlib import Path
from datetime import datetime, timezone, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from diligence.models.notifications import ExpirationBucket, NotificationLog
from diligence.services.notification_summary import (
    aggregate_notification_summary,
    build_notification_summary,
    classify_expiration,
    days_remaining,
)

NOW = datetime(2026, 4, 20, 12, 0, 0, tzinfo=timezone.utc)


def _log(hours_ago, email_sent=True, notification_type="admin_message"):
    return NotificationLog(
        notification_type=notification_type,
        email_sent=email_sent,
        created_at=NOW - timedelta(hours=hours_ago),
    )


class TestExpirationBuckets:

    def test_days_remaining_rounds_up(self):
        assert days_remaining(NOW + timedelta(days=6, hours=1), NOW) == 7
        assert days_remaining(NOW + timedelta(days=7), NOW) == 7
        assert days_remaining(NOW + timedelta(microseconds=1), NOW) == 1

    def test_seven_days_is_urgent_not_critical(self):
        assert classify_expiration(7) == ExpirationBucket.URGENT

    def test_three_days_is_critical_not_urgent(self):
        assert classify_expiration(3) == ExpirationBucket.CRITICAL
        assert classify_expiration(4) == ExpirationBucket.URGENT

    def test_negative_is_expired(self):
        assert classify_expiration(-1) == ExpirationBucket.EXPIRED

    def test_later_than_a_week_is_not_bucketed(self):
        assert classify_expiration(8) is None

    def test_partial_day_in_the_past_is_critical(self):
        # ceil(-0.5) == 0, the period ends today
        assert days_remaining(NOW - timedelta(hours=12), NOW) == 0
        assert classify_expiration(0) == ExpirationBucket.CRITICAL


class TestAggregate:

    def test_counts(self):
        logs = [
            _log(1),
            _log(23, email_sent=False),
            _log(30, email_sent=False),
            _log(24 * 8, email_sent=False),
            _log(-2),  # in the future, ignored
        ]
        expirations = [
            NOW + timedelta(days=7),
            NOW + timedelta(days=3),
            NOW - timedelta(days=1),
            NOW + timedelta(days=20),
        ]
        users = [
            SimpleNamespace(failed_login_attempts=5, last_failed_login=NOW - timedelta(days=1)),
            SimpleNamespace(failed_login_attempts=5, last_failed_login=NOW - timedelta(days=30)),
            SimpleNamespace(failed_login_attempts=1, last_failed_login=NOW),
        ]

        summary = aggregate_notification_summary(logs, expirations, users, NOW)

        assert summary.recent_notifications == 2
        assert summary.failed_notifications == 2
        assert summary.urgent_expirations == 1
        assert summary.critical_expirations == 1
        assert summary.expired_subscriptions == 1
        assert summary.suspicious_users == 1
        assert summary.notifications_by_type == {"admin_message": 4}
        assert summary.generated_at == NOW

    def test_rerun_on_same_snapshot_is_identical(self):
        logs = [_log(2), _log(50, email_sent=False)]
        expirations = [NOW + timedelta(days=2), "2026-04-25T12:00:00+00:00"]
        first = aggregate_notification_summary(logs, expirations, [], NOW)
        second = aggregate_notification_summary(logs, expirations, [], NOW)
        assert first == second
        assert first.critical_expirations == 1
        assert first.urgent_expirations == 1

    def test_empty_inputs(self):
        summary = aggregate_notification_summary([], [], [], NOW)
        assert summary.recent_notifications == 0
        assert summary.suspicious_users == 0


class TestBuildSummary:

    @pytest.mark.asyncio
    async def test_failing_source_degrades_to_empty(self):
        logs_cursor = MagicMock()
        logs_cursor.to_list = AsyncMock(return_value=[
            {"notification_type": "subscription_expiration", "email_sent": False,
             "created_at": (NOW - timedelta(hours=2)).isoformat()},
        ])
        users_cursor = MagicMock()
        users_cursor.to_list = AsyncMock(return_value=[
            {"failed_login_attempts": 4, "last_failed_login": (NOW - timedelta(hours=1)).isoformat()},
        ])

        db = MagicMock()
        db.notification_logs.find = MagicMock(return_value=logs_cursor)
        db.subscriptions.find = MagicMock(side_effect=RuntimeError("subscriptions offline"))
        db.users.find = MagicMock(return_value=users_cursor)

        with patch("diligence.services.notification_summary.database.get_db", return_value=db):
            summary = await build_notification_summary(now=NOW)

        assert summary.unavailable_sources == ["subscriptions"]
        assert summary.recent_notifications == 1
        assert summary.failed_notifications == 1
        assert summary.suspicious_users == 1
        assert summary.critical_expirations == 0
        assert summary.expired_subscriptions == 0
