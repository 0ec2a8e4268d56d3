"""Notification Summary Aggregator

Counts for the admin notification panel:
- recent notifications (last 24h)
- failed notifications (last 7 days, email not sent)
- subscription expirations bucketed as expired / critical / urgent
- users with repeated failed logins

aggregate_notification_summary is a pure function of its inputs and "now".
build_notification_summary fetches the inputs best-effort.
"""

from datetime import datetime, timezone, timedelta
from typing import Iterable, Optional, List, Dict, Any
import logging
import os

from database import database
from utils.calc import ceil_days_between, parse_dt
from diligence.models.notifications import (
    ExpirationBucket,
    NotificationLog,
    NotificationSummary,
    UpcomingExpiration,
)
from diligence.models.subscriptions import SubscriptionStatus
from diligence.services.best_effort import gather_best_effort

logger = logging.getLogger(__name__)

RECENT_WINDOW = timedelta(hours=int(os.getenv("NOTIFICATION_RECENT_HOURS", "24")))
FAILED_LOOKBACK = timedelta(days=int(os.getenv("NOTIFICATION_FAILED_LOOKBACK_DAYS", "7")))
BY_TYPE_LOOKBACK = timedelta(days=30)
SUSPICIOUS_LOGIN_THRESHOLD = int(os.getenv("SUSPICIOUS_LOGIN_THRESHOLD", "3"))
SUSPICIOUS_WINDOW = timedelta(days=7)

CRITICAL_MAX_DAYS = 3
URGENT_MAX_DAYS = 7
EXPIRATION_HORIZON_DAYS = 30


def days_remaining(period_end: datetime, now: datetime) -> int:
    """Whole days left until period_end, rounded up."""
    return ceil_days_between(now, period_end)


def classify_expiration(days: int) -> Optional[ExpirationBucket]:
    """expired < 0 <= critical <= 3 < urgent <= 7; anything later is not bucketed."""
    if days < 0:
        return ExpirationBucket.EXPIRED
    if days <= CRITICAL_MAX_DAYS:
        return ExpirationBucket.CRITICAL
    if days <= URGENT_MAX_DAYS:
        return ExpirationBucket.URGENT
    return None


def is_suspicious(user: Any, now: datetime) -> bool:
    attempts = getattr(user, "failed_login_attempts", 0) or 0
    last_failed = parse_dt(getattr(user, "last_failed_login", None))
    return (
        attempts >= SUSPICIOUS_LOGIN_THRESHOLD
        and last_failed is not None
        and last_failed >= now - SUSPICIOUS_WINDOW
    )


def aggregate_notification_summary(
    notification_logs: Iterable[NotificationLog],
    expiration_dates: Iterable[datetime],
    users: Iterable[Any],
    now: datetime,
) -> NotificationSummary:
    summary = NotificationSummary(generated_at=now)

    recent_since = now - RECENT_WINDOW
    failed_since = now - FAILED_LOOKBACK
    by_type_since = now - BY_TYPE_LOOKBACK
    by_type: Dict[str, int] = {}

    for log in notification_logs:
        created = parse_dt(log.created_at)
        if created is None or created > now:
            continue
        if created >= recent_since:
            summary.recent_notifications += 1
        if created >= failed_since and not log.email_sent:
            summary.failed_notifications += 1
        if created >= by_type_since:
            by_type[log.notification_type] = by_type.get(log.notification_type, 0) + 1

    summary.notifications_by_type = dict(sorted(by_type.items()))

    for period_end in expiration_dates:
        period_end = parse_dt(period_end)
        if period_end is None:
            continue
        bucket = classify_expiration(days_remaining(period_end, now))
        if bucket == ExpirationBucket.EXPIRED:
            summary.expired_subscriptions += 1
        elif bucket == ExpirationBucket.CRITICAL:
            summary.critical_expirations += 1
        elif bucket == ExpirationBucket.URGENT:
            summary.urgent_expirations += 1

    summary.suspicious_users = sum(1 for user in users if is_suspicious(user, now))
    return summary


class _LoginFailures:
    """Attribute view over a users document for is_suspicious."""

    def __init__(self, doc: dict):
        self.failed_login_attempts = doc.get("failed_login_attempts", 0)
        self.last_failed_login = doc.get("last_failed_login")


async def build_notification_summary(now: Optional[datetime] = None) -> NotificationSummary:
    """Fetch the inputs best-effort and aggregate them."""
    now = now or datetime.now(timezone.utc)
    db = database.get_db()

    # widest window any count needs
    logs_since = (now - max(RECENT_WINDOW, FAILED_LOOKBACK, BY_TYPE_LOOKBACK)).isoformat()

    async def fetch_logs():
        docs = await db.notification_logs.find(
            {"created_at": {"$gte": logs_since}},
            {"_id": 0, "notification_type": 1, "email_sent": 1, "created_at": 1, "details": 1},
        ).to_list(length=None)
        return [NotificationLog.model_validate(d) for d in docs]

    async def fetch_expirations():
        horizon = (now + timedelta(days=URGENT_MAX_DAYS + 1)).isoformat()
        docs = await db.subscriptions.find(
            {
                "status": SubscriptionStatus.ACTIVE.value,
                "current_period_end": {"$lte": horizon},
            },
            {"_id": 0, "current_period_end": 1},
        ).to_list(length=None)
        return [d["current_period_end"] for d in docs if parse_dt(d.get("current_period_end"))]

    async def fetch_users():
        docs = await db.users.find(
            {"failed_login_attempts": {"$gte": SUSPICIOUS_LOGIN_THRESHOLD}},
            {"_id": 0, "failed_login_attempts": 1, "last_failed_login": 1},
        ).to_list(length=None)
        return [_LoginFailures(d) for d in docs]

    values, unavailable = await gather_best_effort({
        "notification_logs": (fetch_logs, []),
        "subscriptions": (fetch_expirations, []),
        "users": (fetch_users, []),
    })

    summary = aggregate_notification_summary(
        values["notification_logs"],
        values["subscriptions"],
        values["users"],
        now,
    )
    summary.unavailable_sources = unavailable
    return summary


async def get_upcoming_expirations(
    days_ahead: int = EXPIRATION_HORIZON_DAYS,
    now: Optional[datetime] = None,
) -> List[UpcomingExpiration]:
    """ACTIVE subscriptions ending within days_ahead (plus already lapsed ones), soonest first."""
    now = now or datetime.now(timezone.utc)
    db = database.get_db()

    horizon = (now + timedelta(days=days_ahead)).isoformat()
    subscriptions = await db.subscriptions.find(
        {"status": SubscriptionStatus.ACTIVE.value, "current_period_end": {"$lte": horizon}},
        {"_id": 0},
    ).sort("current_period_end", 1).to_list(length=None)

    user_ids = list({s["user_id"] for s in subscriptions})
    users = {}
    if user_ids:
        async for user in db.users.find({"user_id": {"$in": user_ids}}, {"_id": 0, "user_id": 1, "email": 1, "name": 1}):
            users[user["user_id"]] = user

    report = []
    for sub in subscriptions:
        period_end = parse_dt(sub.get("current_period_end"))
        if period_end is None:
            continue
        days = days_remaining(period_end, now)
        user = users.get(sub["user_id"], {})
        report.append(UpcomingExpiration(
            subscription_id=sub["subscription_id"],
            user_id=sub["user_id"],
            user_email=user.get("email"),
            user_name=user.get("name"),
            plan_type=sub["plan_type"],
            current_period_end=period_end,
            days_remaining=days,
            bucket=classify_expiration(days),
        ))
    return report
