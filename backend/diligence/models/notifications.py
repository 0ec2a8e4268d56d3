"""Notification log, admin summary and dashboard notification models."""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Union
from datetime import datetime, timezone
from enum import Enum
import uuid

from diligence.models.bookings import ConsultationSession, ReportRequest
from diligence.models.subscriptions import Subscription


class NotificationType(str, Enum):
    SUBSCRIPTION_EXPIRATION = "subscription_expiration"
    ADMIN_MESSAGE = "admin_message"
    EXPERT_APPROVED = "expert_approved"
    EXPERT_REJECTED = "expert_rejected"
    EXPERT_INFO_REQUESTED = "expert_info_requested"


class NotificationLog(BaseModel):
    """Append-only record of a notification attempt."""
    log_id: str = Field(default_factory=lambda: f"NTL-{uuid.uuid4().hex[:12].upper()}")
    notification_type: str
    email_sent: bool = False
    details: Dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = None  # recipient
    admin_id: Optional[str] = None  # sender
    recipient_email: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore"}


class ExpirationBucket(str, Enum):
    EXPIRED = "expired"
    CRITICAL = "critical"
    URGENT = "urgent"


class NotificationSummary(BaseModel):
    recent_notifications: int = 0
    failed_notifications: int = 0
    critical_expirations: int = 0
    urgent_expirations: int = 0
    suspicious_users: int = 0
    expired_subscriptions: int = 0
    notifications_by_type: Dict[str, int] = Field(default_factory=dict)
    unavailable_sources: List[str] = Field(default_factory=list)
    generated_at: Optional[datetime] = None


class UpcomingExpiration(BaseModel):
    subscription_id: str
    user_id: str
    user_email: Optional[str] = None
    user_name: Optional[str] = None
    plan_type: str
    current_period_end: datetime
    days_remaining: int
    bucket: Optional[ExpirationBucket] = None


class SubscriptionExpiryCheckRequest(BaseModel):
    days_to_check: List[int] = Field(default_factory=lambda: [30, 14, 7, 3, 1])
    test_mode: bool = False


class SubscriptionExpiryCheckResult(BaseModel):
    checked_days: List[int]
    notifications_sent: int = 0
    skipped_duplicates: int = 0
    failed: int = 0
    test_mode: bool = False
    details: List[Dict[str, Any]] = Field(default_factory=list)


class AdminUserNotificationRequest(BaseModel):
    subject: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1)


# ============================================================================
# Dashboard notifications
# ============================================================================

class DashboardPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


PRIORITY_RANK: Dict[DashboardPriority, int] = {
    DashboardPriority.LOW: 1,
    DashboardPriority.MEDIUM: 2,
    DashboardPriority.HIGH: 3,
    DashboardPriority.URGENT: 4,
}


class DashboardNotificationKind(str, Enum):
    SESSION = "session"
    REPORT = "report"
    SUBSCRIPTION = "subscription"
    USAGE = "usage"
    ACHIEVEMENT = "achievement"


class DashboardNotification(BaseModel):
    id: str
    kind: DashboardNotificationKind
    title: str
    message: str
    priority: DashboardPriority
    created_at: datetime
    is_read: bool = False
    action_url: Optional[str] = None


class DashboardNotificationPage(BaseModel):
    notifications: List[DashboardNotification]
    page: int
    limit: int
    total_count: int
    unread_count: int
    has_more: bool = False
    unavailable_sources: List[str] = Field(default_factory=list)


class MarkNotificationsReadRequest(BaseModel):
    notification_ids: List[str] = Field(default_factory=list)
    mark_all: bool = False


class DashboardSnapshot(BaseModel):
    """Fetched state the dashboard notifications are projected from."""
    user_id: str
    sessions: List[ConsultationSession] = Field(default_factory=list)
    reports: List[ReportRequest] = Field(default_factory=list)
    subscription: Optional[Subscription] = None
    monthly_projects_used: int = 0
    # -1 or "unlimited" for no cap; None when the account could not be read
    monthly_project_limit: Optional[Union[int, str]] = None
    completed_sessions_count: int = 0
