"""
Tests for dashboard notifications derived from sessions, reports, the
subscription and monthly project usage.
"""
import pytest
import sys
from pathlib import Path
from datetime import datetime, timezone, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from diligence.models.bookings import ConsultationSession, ReportRequest
from diligence.models.notifications import DashboardPriority, DashboardSnapshot
from diligence.models.subscriptions import Subscription
from diligence.services.dashboard_notifications import (
    DashboardNotificationService,
    generate_dashboard_notifications,
    paginate_notifications,
)

NOW = datetime(2026, 6, 10, 12, 0, 0, tzinfo=timezone.utc)


def _session(session_id, status, hours_ago=1):
    return ConsultationSession(
        session_id=session_id,
        user_id="u1",
        consultation_type="DUE_DILIGENCE",
        duration_minutes=60,
        scheduled_at=NOW + timedelta(days=2),
        status=status,
        price=400,
        created_at=NOW - timedelta(hours=hours_ago),
        updated_at=NOW - timedelta(hours=hours_ago),
    )


def _report(report_id, status, hours_ago=1):
    return ReportRequest(
        report_id=report_id,
        user_id="u1",
        report_type="MARKET_RESEARCH",
        title="L2 market map",
        status=status,
        price=1200,
        created_at=NOW - timedelta(hours=hours_ago),
        updated_at=NOW - timedelta(hours=hours_ago),
    )


def _subscription(days_left):
    return Subscription(
        subscription_id="SUB-1",
        user_id="u1",
        plan_type="PROFESSIONAL_MONTHLY",
        current_period_start=NOW - timedelta(days=20),
        current_period_end=NOW + timedelta(days=days_left),
    )


def _snapshot(**kwargs):
    return DashboardSnapshot(user_id="u1", **kwargs)


class TestGenerate:

    def test_regeneration_is_idempotent(self):
        snapshot = _snapshot(
            sessions=[_session("S1", "SCHEDULED"), _session("S2", "COMPLETED", 3)],
            reports=[_report("R1", "COMPLETED", 2), _report("R2", "IN_REVIEW", 5)],
            subscription=_subscription(2),
            monthly_projects_used=5,
            monthly_project_limit=6,
            completed_sessions_count=6,
        )
        first = generate_dashboard_notifications(snapshot, NOW)
        second = generate_dashboard_notifications(snapshot, NOW)
        assert [n.id for n in first] == [n.id for n in second]
        assert first == second
        assert len({n.id for n in first}) == len(first)

    def test_sorted_by_priority_then_newest(self):
        snapshot = _snapshot(
            sessions=[_session("S1", "SCHEDULED", 1), _session("S2", "COMPLETED", 10)],
            reports=[_report("R1", "COMPLETED", 2)],
            completed_sessions_count=5,
        )
        ids = [n.id for n in generate_dashboard_notifications(snapshot, NOW)]
        assert ids == [
            "report-R1",  # high, 2h ago
            "session-completed-S2",  # high, 10h ago
            "session-S1",  # medium
            "achievement-5-sessions",  # low
        ]

    def test_statuses_without_notifications_are_skipped(self):
        snapshot = _snapshot(
            sessions=[_session("S1", "PENDING_PAYMENT")],
            reports=[_report("R1", "REQUESTED")],
        )
        assert generate_dashboard_notifications(snapshot, NOW) == []

    @pytest.mark.parametrize("days_left,expected", [
        (8, None),
        (7, DashboardPriority.MEDIUM),
        (4, DashboardPriority.MEDIUM),
        (3, DashboardPriority.HIGH),
        (1, DashboardPriority.HIGH),
        (0, None),
        (-2, None),
    ])
    def test_renewal_window(self, days_left, expected):
        result = generate_dashboard_notifications(_snapshot(subscription=_subscription(days_left)), NOW)
        renewal = [n for n in result if n.id == "subscription-renewal-SUB-1"]
        if expected is None:
            assert renewal == []
        else:
            assert renewal[0].priority == expected

    @pytest.mark.parametrize("used,total,expected", [
        (7, 10, None),
        (8, 10, DashboardPriority.HIGH),
        (9, 10, DashboardPriority.HIGH),
        (19, 20, DashboardPriority.URGENT),
        (3, 3, DashboardPriority.URGENT),
    ])
    def test_usage_thresholds(self, used, total, expected):
        result = generate_dashboard_notifications(
            _snapshot(monthly_projects_used=used, monthly_project_limit=total), NOW
        )
        usage = [n for n in result if n.id == "usage-warning-u1"]
        if expected is None:
            assert usage == []
        else:
            assert usage[0].priority == expected

    def test_usage_message_names_project_counts(self):
        result = generate_dashboard_notifications(
            _snapshot(monthly_projects_used=9, monthly_project_limit=10), NOW
        )
        assert result[0].message == "You have submitted 9 of 10 projects (90%) this month."
        assert result[0].created_at == NOW

    @pytest.mark.parametrize("limit", [-1, "unlimited", 0, None])
    def test_unlimited_or_missing_limit_never_warns(self, limit):
        result = generate_dashboard_notifications(
            _snapshot(monthly_projects_used=500, monthly_project_limit=limit), NOW
        )
        assert result == []

    def test_read_ids_mark_notifications_read(self):
        snapshot = _snapshot(reports=[_report("R1", "COMPLETED")])
        result = generate_dashboard_notifications(snapshot, NOW, read_ids=["report-R1"])
        assert result[0].is_read is True


class TestPaginate:

    def _notifications(self):
        snapshot = _snapshot(
            sessions=[_session(f"S{i}", "SCHEDULED", i) for i in range(1, 6)],
        )
        return generate_dashboard_notifications(snapshot, NOW, read_ids=["session-S1", "session-S2"])

    def test_pages(self):
        items = self._notifications()
        page = paginate_notifications(items, page=2, limit=2)
        assert [n.id for n in page.notifications] == ["session-S3", "session-S4"]
        assert page.total_count == 5
        assert page.unread_count == 3
        assert page.has_more is True

    def test_unread_only(self):
        page = paginate_notifications(self._notifications(), page=1, limit=10, unread_only=True)
        assert [n.id for n in page.notifications] == ["session-S3", "session-S4", "session-S5"]
        assert page.has_more is False

    def test_invalid_paging(self):
        with pytest.raises(ValueError):
            paginate_notifications([], page=0)


def _cursor(docs):
    cursor = MagicMock()
    cursor.sort = MagicMock(return_value=cursor)
    cursor.limit = MagicMock(return_value=cursor)
    cursor.to_list = AsyncMock(return_value=docs)
    return cursor


def _service_db(user=None, read_ids=()):
    db = MagicMock()
    db.sessions.find = MagicMock(return_value=_cursor([]))
    db.sessions.count_documents = AsyncMock(return_value=0)
    db.reports.find = MagicMock(return_value=_cursor([]))
    db.users.find_one = AsyncMock(return_value=user)
    db.dashboard_notification_reads.find_one = AsyncMock(
        return_value={"user_id": "u1", "read_ids": list(read_ids)}
    )
    db.dashboard_notification_reads.update_one = AsyncMock()
    return db


class TestDashboardService:

    @pytest.mark.asyncio
    async def test_failed_source_is_reported_not_raised(self):
        db = _service_db()
        db.sessions.find = MagicMock(side_effect=RuntimeError("sessions offline"))
        db.reports.find = MagicMock(return_value=_cursor([
            _report("R1", "COMPLETED").model_dump(mode="json"),
        ]))

        service = DashboardNotificationService()
        with patch("diligence.services.dashboard_notifications.database.get_db", return_value=db), \
             patch("diligence.services.dashboard_notifications.credit_service.get_active_subscription",
                   new_callable=AsyncMock, return_value=None):
            page = await service.get_notifications("u1", now=NOW)

        assert page.unavailable_sources == ["sessions"]
        assert [n.id for n in page.notifications] == ["report-R1"]

    @pytest.mark.asyncio
    async def test_usage_alert_from_monthly_project_counters(self):
        db = _service_db(user={"monthly_projects_used": 3, "monthly_project_limit": 3})
        service = DashboardNotificationService()
        with patch("diligence.services.dashboard_notifications.database.get_db", return_value=db), \
             patch("diligence.services.dashboard_notifications.credit_service.get_active_subscription",
                   new_callable=AsyncMock, return_value=None):
            page = await service.get_notifications("u1", now=NOW)

        assert [n.id for n in page.notifications] == ["usage-warning-u1"]
        assert page.notifications[0].priority == DashboardPriority.URGENT
        assert page.unavailable_sources == []

    @pytest.mark.asyncio
    async def test_missing_stored_limit_falls_back_to_tier(self):
        # BASIC allows one project a month
        db = _service_db(user={"monthly_projects_used": 1, "submitter_tier": "BASIC"})
        service = DashboardNotificationService()
        with patch("diligence.services.dashboard_notifications.database.get_db", return_value=db), \
             patch("diligence.services.dashboard_notifications.credit_service.get_active_subscription",
                   new_callable=AsyncMock, return_value=None):
            snapshot, _ = await service.load_snapshot("u1", NOW)

        assert snapshot.monthly_project_limit == 1
        assert snapshot.monthly_projects_used == 1

    @pytest.mark.asyncio
    async def test_unreadable_account_skips_usage_alert(self):
        db = _service_db()
        db.users.find_one = AsyncMock(side_effect=RuntimeError("users offline"))
        service = DashboardNotificationService()
        with patch("diligence.services.dashboard_notifications.database.get_db", return_value=db), \
             patch("diligence.services.dashboard_notifications.credit_service.get_active_subscription",
                   new_callable=AsyncMock, return_value=None):
            page = await service.get_notifications("u1", now=NOW)

        assert page.notifications == []
        assert page.unavailable_sources == ["user"]

    @pytest.mark.asyncio
    async def test_mark_as_read_deduplicates_ids(self):
        db = _service_db()
        service = DashboardNotificationService()
        snapshot = _snapshot(reports=[_report("R1", "COMPLETED")])
        with patch("diligence.services.dashboard_notifications.database.get_db", return_value=db), \
             patch.object(service, "load_snapshot", new_callable=AsyncMock, return_value=(snapshot, ["sessions"])):
            marked = await service.mark_as_read("u1", ["report-R1", "report-R1", "session-S1"], now=NOW)

        assert marked == 2
        update = db.dashboard_notification_reads.update_one.call_args
        assert update[0][1]["$addToSet"] == {"read_ids": {"$each": ["report-R1", "session-S1"]}}
        assert update[1]["upsert"] is True

    @pytest.mark.asyncio
    async def test_mark_as_read_drops_ids_no_longer_produced(self):
        db = _service_db()
        service = DashboardNotificationService()
        snapshot = _snapshot(
            sessions=[_session("S2", "SCHEDULED")],
            reports=[_report("R1", "COMPLETED")],
        )
        with patch("diligence.services.dashboard_notifications.database.get_db", return_value=db), \
             patch.object(service, "load_snapshot", new_callable=AsyncMock, return_value=(snapshot, [])):
            await service.mark_as_read("u1", ["report-R1"], now=NOW)

        calls = db.dashboard_notification_reads.update_one.call_args_list
        assert len(calls) == 2
        assert calls[1][0] == (
            {"user_id": "u1"},
            {"$pull": {"read_ids": {"$nin": ["report-R1", "session-S2"]}}},
        )

    @pytest.mark.asyncio
    async def test_mark_as_read_keeps_history_when_snapshot_is_partial(self):
        db = _service_db()
        service = DashboardNotificationService()
        with patch("diligence.services.dashboard_notifications.database.get_db", return_value=db), \
             patch.object(service, "load_snapshot", new_callable=AsyncMock,
                          return_value=(_snapshot(), ["reports"])):
            await service.mark_as_read("u1", ["report-R9"], now=NOW)

        assert db.dashboard_notification_reads.update_one.call_count == 1

    @pytest.mark.asyncio
    async def test_mark_as_read_without_ids_writes_nothing(self):
        db = _service_db()
        service = DashboardNotificationService()
        with patch("diligence.services.dashboard_notifications.database.get_db", return_value=db):
            assert await service.mark_as_read("u1", [], now=NOW) == 0
        db.dashboard_notification_reads.update_one.assert_not_called()
