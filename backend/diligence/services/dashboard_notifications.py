"""Dashboard Notification Generator

Projects a user's sessions, reports, subscription and monthly project usage into
dashboard notifications. Ids are derived from the source entity, so
regenerating from the same snapshot yields the same list. Read state is the
only thing persisted (dashboard_notification_reads).
"""

from datetime import datetime, timezone, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional
import logging

from database import database
from utils.calc import ceil_days_between, parse_dt, round_half_up
from diligence.models.bookings import (
    ConsultationSession,
    ReportRequest,
    ReportStatus,
    SessionStatus,
)
from diligence.models.notifications import (
    DashboardNotification,
    DashboardNotificationKind,
    DashboardNotificationPage,
    DashboardPriority,
    DashboardSnapshot,
    PRIORITY_RANK,
)
from diligence.models.subscriptions import Subscription, SUBSCRIPTION_PLANS
from diligence.services.best_effort import gather_best_effort
from diligence.services.credit_service import credit_service
from diligence.services.quota_service import monthly_limit_for_tier

logger = logging.getLogger(__name__)

RENEWAL_WINDOW_DAYS = 7
RENEWAL_HIGH_PRIORITY_DAYS = 3
USAGE_HIGH_PERCENT = 80
USAGE_URGENT_PERCENT = 95
ACHIEVEMENT_SESSION_COUNT = 5
RECENT_ACTIVITY_WINDOW = timedelta(days=7)
RECENT_ACTIVITY_LIMIT = 10


def _label(value: str) -> str:
    return value.replace("_", " ").title()


def _stamp(*candidates) -> Optional[datetime]:
    for value in candidates:
        dt = parse_dt(value)
        if dt is not None:
            return dt
    return None


def _session_notification(session: ConsultationSession, now: datetime) -> Optional[DashboardNotification]:
    label = _label(session.consultation_type.value)
    stamp = _stamp(session.updated_at, session.created_at) or now

    if session.status == SessionStatus.SCHEDULED:
        scheduled = parse_dt(session.scheduled_at)
        return DashboardNotification(
            id=f"session-{session.session_id}",
            kind=DashboardNotificationKind.SESSION,
            title="Consultation scheduled",
            message=f"Your {label} consultation is scheduled for {scheduled:%b %d, %Y at %H:%M} UTC.",
            priority=DashboardPriority.MEDIUM,
            created_at=stamp,
            action_url=f"/dashboard/sessions/{session.session_id}",
        )
    if session.status == SessionStatus.COMPLETED:
        return DashboardNotification(
            id=f"session-completed-{session.session_id}",
            kind=DashboardNotificationKind.SESSION,
            title="Consultation completed",
            message=f"Your {label} consultation is complete. Notes and follow-ups are now available.",
            priority=DashboardPriority.HIGH,
            created_at=stamp,
            action_url=f"/dashboard/sessions/{session.session_id}",
        )
    if session.status == SessionStatus.CANCELLED:
        return DashboardNotification(
            id=f"session-cancelled-{session.session_id}",
            kind=DashboardNotificationKind.SESSION,
            title="Consultation cancelled",
            message=f"Your {label} consultation was cancelled.",
            priority=DashboardPriority.MEDIUM,
            created_at=stamp,
            action_url="/dashboard/sessions",
        )
    return None


def _report_notification(report: ReportRequest, now: datetime) -> Optional[DashboardNotification]:
    stamp = _stamp(report.updated_at, report.created_at) or now

    if report.status == ReportStatus.COMPLETED:
        return DashboardNotification(
            id=f"report-{report.report_id}",
            kind=DashboardNotificationKind.REPORT,
            title="Report ready",
            message=f"Your {_label(report.report_type.value)} report \"{report.title}\" is ready to download.",
            priority=DashboardPriority.HIGH,
            created_at=stamp,
            action_url=f"/dashboard/reports/{report.report_id}",
        )
    if report.status == ReportStatus.IN_REVIEW:
        return DashboardNotification(
            id=f"report-review-{report.report_id}",
            kind=DashboardNotificationKind.REPORT,
            title="Report in review",
            message=f"Your report \"{report.title}\" is in final review.",
            priority=DashboardPriority.MEDIUM,
            created_at=stamp,
            action_url=f"/dashboard/reports/{report.report_id}",
        )
    return None


def _renewal_notification(subscription: Subscription, now: datetime) -> Optional[DashboardNotification]:
    period_end = parse_dt(subscription.current_period_end)
    if period_end is None:
        return None
    days = ceil_days_between(now, period_end)
    if not 0 < days <= RENEWAL_WINDOW_DAYS:
        return None

    plan_name = SUBSCRIPTION_PLANS[subscription.plan_type].name
    return DashboardNotification(
        id=f"subscription-renewal-{subscription.subscription_id}",
        kind=DashboardNotificationKind.SUBSCRIPTION,
        title="Subscription renewal",
        message=f"Your {plan_name} plan renews in {days} day{'s' if days != 1 else ''}.",
        priority=DashboardPriority.HIGH if days <= RENEWAL_HIGH_PRIORITY_DAYS else DashboardPriority.MEDIUM,
        created_at=now,
        action_url="/dashboard/subscription",
    )


def _usage_notification(snapshot: DashboardSnapshot, now: datetime) -> Optional[DashboardNotification]:
    total = snapshot.monthly_project_limit
    if isinstance(total, bool) or not isinstance(total, int) or total <= 0:
        return None

    used = snapshot.monthly_projects_used
    if used * 100 >= USAGE_URGENT_PERCENT * total:
        priority = DashboardPriority.URGENT
    elif used * 100 >= USAGE_HIGH_PERCENT * total:
        priority = DashboardPriority.HIGH
    else:
        return None

    percent = round_half_up(Decimal(100 * used) / Decimal(total))
    return DashboardNotification(
        id=f"usage-warning-{snapshot.user_id}",
        kind=DashboardNotificationKind.USAGE,
        title="Monthly project limit approaching",
        message=f"You have submitted {used} of {total} projects ({percent}%) this month.",
        priority=priority,
        created_at=now,
        action_url="/dashboard/projects",
    )


def sort_notifications(notifications: Iterable[DashboardNotification]) -> List[DashboardNotification]:
    """Highest priority first, newest first within a priority. Stable for exact ties."""
    return sorted(
        notifications,
        key=lambda n: (PRIORITY_RANK[n.priority], n.created_at),
        reverse=True,
    )


def generate_dashboard_notifications(
    snapshot: DashboardSnapshot,
    now: datetime,
    read_ids: Iterable[str] = (),
) -> List[DashboardNotification]:
    """Build the ordered notification list for one snapshot. Pure."""
    read = set(read_ids)
    notifications: List[DashboardNotification] = []
    seen = set()

    def add(notification: Optional[DashboardNotification]):
        if notification is None or notification.id in seen:
            return
        seen.add(notification.id)
        notifications.append(notification.model_copy(update={"is_read": notification.id in read}))

    for session in snapshot.sessions:
        add(_session_notification(session, now))
    for report in snapshot.reports:
        add(_report_notification(report, now))
    if snapshot.subscription is not None:
        add(_renewal_notification(snapshot.subscription, now))
    add(_usage_notification(snapshot, now))

    if snapshot.completed_sessions_count >= ACHIEVEMENT_SESSION_COUNT:
        add(DashboardNotification(
            id=f"achievement-{ACHIEVEMENT_SESSION_COUNT}-sessions",
            kind=DashboardNotificationKind.ACHIEVEMENT,
            title="Milestone reached",
            message=f"You have completed {snapshot.completed_sessions_count} consultations. Thanks for building with us!",
            priority=DashboardPriority.LOW,
            created_at=now,
        ))

    return sort_notifications(notifications)


def paginate_notifications(
    notifications: List[DashboardNotification],
    page: int = 1,
    limit: int = 20,
    unread_only: bool = False,
) -> DashboardNotificationPage:
    if page < 1 or limit < 1:
        raise ValueError("page and limit must be >= 1")

    unread_count = sum(1 for n in notifications if not n.is_read)
    visible = [n for n in notifications if not n.is_read] if unread_only else notifications
    start = (page - 1) * limit
    return DashboardNotificationPage(
        notifications=visible[start:start + limit],
        page=page,
        limit=limit,
        total_count=len(visible),
        unread_count=unread_count,
        has_more=start + limit < len(visible),
    )


class DashboardNotificationService:
    """Loads dashboard snapshots and tracks read state."""

    def __init__(self):
        self.db = None

    def _get_db(self):
        if self.db is None:
            self.db = database.get_db()
        return self.db

    async def load_snapshot(self, user_id: str, now: datetime):
        """Fetch every source concurrently; a failed source contributes nothing."""
        db = self._get_db()
        since = (now - RECENT_ACTIVITY_WINDOW).isoformat()

        async def fetch_sessions():
            docs = await db.sessions.find(
                {"user_id": user_id, "updated_at": {"$gte": since}}, {"_id": 0}
            ).sort("updated_at", -1).limit(RECENT_ACTIVITY_LIMIT).to_list(length=RECENT_ACTIVITY_LIMIT)
            return [ConsultationSession.model_validate(d) for d in docs]

        async def fetch_reports():
            docs = await db.reports.find(
                {"user_id": user_id, "updated_at": {"$gte": since}}, {"_id": 0}
            ).sort("updated_at", -1).limit(RECENT_ACTIVITY_LIMIT).to_list(length=RECENT_ACTIVITY_LIMIT)
            return [ReportRequest.model_validate(d) for d in docs]

        async def fetch_subscription():
            return await credit_service.get_active_subscription(user_id)

        async def fetch_completed_count():
            return await db.sessions.count_documents(
                {"user_id": user_id, "status": SessionStatus.COMPLETED.value}
            )

        async def fetch_user():
            user = await db.users.find_one(
                {"user_id": user_id},
                {"_id": 0, "monthly_projects_used": 1, "monthly_project_limit": 1, "submitter_tier": 1},
            )
            if not user:
                return {}
            if user.get("monthly_project_limit") is None and user.get("submitter_tier"):
                user["monthly_project_limit"] = monthly_limit_for_tier(user["submitter_tier"])
            return user

        values, unavailable = await gather_best_effort({
            "sessions": (fetch_sessions, []),
            "reports": (fetch_reports, []),
            "subscription": (fetch_subscription, None),
            "completed_sessions": (fetch_completed_count, 0),
            "user": (fetch_user, {}),
        })

        user = values["user"]
        snapshot = DashboardSnapshot(
            user_id=user_id,
            sessions=values["sessions"],
            reports=values["reports"],
            subscription=values["subscription"],
            monthly_projects_used=user.get("monthly_projects_used") or 0,
            monthly_project_limit=user.get("monthly_project_limit"),
            completed_sessions_count=values["completed_sessions"],
        )
        return snapshot, unavailable

    async def get_read_ids(self, user_id: str) -> List[str]:
        db = self._get_db()
        doc = await db.dashboard_notification_reads.find_one({"user_id": user_id}, {"_id": 0})
        return list(doc.get("read_ids", [])) if doc else []

    async def get_notifications(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20,
        unread_only: bool = False,
        now: Optional[datetime] = None,
    ) -> DashboardNotificationPage:
        now = now or datetime.now(timezone.utc)
        snapshot, unavailable = await self.load_snapshot(user_id, now)
        try:
            read_ids = await self.get_read_ids(user_id)
        except Exception as e:
            logger.warning(f"Read state unavailable for {user_id}, showing all as unread: {e}")
            read_ids = []
            unavailable.append("read_state")

        notifications = generate_dashboard_notifications(snapshot, now, read_ids)
        result = paginate_notifications(notifications, page, limit, unread_only)
        return result.model_copy(update={"unavailable_sources": unavailable})

    async def mark_as_read(
        self,
        user_id: str,
        notification_ids: Optional[List[str]] = None,
        mark_all: bool = False,
        now: Optional[datetime] = None,
    ) -> int:
        """Persist read state. Returns how many ids were marked.

        Stored ids the current snapshot no longer produces are dropped, unless
        a source was unavailable and the snapshot is incomplete.
        """
        now = now or datetime.now(timezone.utc)
        if not mark_all and not notification_ids:
            return 0

        snapshot, unavailable = await self.load_snapshot(user_id, now)
        current_ids = [n.id for n in generate_dashboard_notifications(snapshot, now)]
        if mark_all:
            notification_ids = current_ids
        ids = list(dict.fromkeys(notification_ids or []))
        if not ids:
            return 0

        db = self._get_db()
        await db.dashboard_notification_reads.update_one(
            {"user_id": user_id},
            {
                "$addToSet": {"read_ids": {"$each": ids}},
                "$set": {"updated_at": now.isoformat()},
            },
            upsert=True,
        )
        if not unavailable:
            keep = list(dict.fromkeys(current_ids + ids))
            await db.dashboard_notification_reads.update_one(
                {"user_id": user_id},
                {"$pull": {"read_ids": {"$nin": keep}}},
            )
        logger.info(f"Marked {len(ids)} dashboard notifications read for {user_id}")
        return len(ids)


dashboard_notification_service = DashboardNotificationService()
