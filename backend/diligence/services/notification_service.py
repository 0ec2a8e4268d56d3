"""Notification delivery and the append-only notification log.

Delivery goes through Postmark when POSTMARK_SERVER_TOKEN is set; otherwise
messages are logged and recorded as not sent. Every attempt, successful or
not, is written to notification_logs and never updated afterwards.
"""

from datetime import datetime, timezone, timedelta
from typing import Optional, List, Dict, Any
import logging
import os

from postmarker.core import PostmarkClient

from database import database
from models import AuditAction
from utils.audit import create_audit_log
from utils.calc import parse_dt
from diligence.errors import NotFound
from diligence.models.notifications import (
    NotificationLog,
    NotificationType,
    SubscriptionExpiryCheckResult,
)
from diligence.models.subscriptions import PlanType, SubscriptionStatus, SUBSCRIPTION_PLANS
from diligence.services import email_templates
from diligence.services.notification_summary import days_remaining

logger = logging.getLogger(__name__)

DEFAULT_SENDER = os.getenv("EMAIL_SENDER", "notifications@diligencelabs.xyz")
DEFAULT_EXPIRY_DAYS = [30, 14, 7, 3, 1]
DUPLICATE_WINDOW = timedelta(hours=24)


class EmailSender:
    def __init__(self):
        postmark_token = os.getenv("POSTMARK_SERVER_TOKEN")
        if not postmark_token:
            logger.warning("POSTMARK_SERVER_TOKEN not set - emails will be logged but not sent")
            self.client = None
        else:
            self.client = PostmarkClient(server_token=postmark_token)
            logger.info("Postmark email client initialized")

    def send(self, recipient: str, subject: str, html_body: str, text_body: str, tag: str) -> Optional[str]:
        """Send one email. Returns the provider message id, or None when no client is configured."""
        if not self.client:
            logger.info(f"[DEV MODE] Email logged (not sent) to {recipient}: {subject}")
            return None
        response = self.client.emails.send(
            From=DEFAULT_SENDER,
            To=recipient,
            Subject=subject,
            HtmlBody=html_body,
            TextBody=text_body,
            TrackOpens=True,
            Tag=tag,
        )
        logger.info(f"Email sent to {recipient}: {response['MessageID']}")
        return response["MessageID"]


class NotificationService:
    def __init__(self, sender: Optional[EmailSender] = None):
        self.db = None
        self._sender = sender

    def _get_db(self):
        if self.db is None:
            self.db = database.get_db()
        return self.db

    @property
    def sender(self) -> EmailSender:
        if self._sender is None:
            self._sender = EmailSender()
        return self._sender

    async def notify_user(
        self,
        user: Dict[str, Any],
        notification_type: NotificationType,
        email: email_templates.Email,
        admin_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> NotificationLog:
        """Deliver one email and record the attempt. Delivery errors are recorded, not raised."""
        subject, html_body, text_body = email
        log = NotificationLog(
            notification_type=notification_type.value,
            user_id=user.get("user_id"),
            admin_id=admin_id,
            recipient_email=user.get("email"),
            details={"subject": subject, **(details or {})},
            created_at=now or datetime.now(timezone.utc),
        )
        try:
            message_id = self.sender.send(user["email"], subject, html_body, text_body, notification_type.value)
            log.email_sent = message_id is not None
            if message_id:
                log.details["provider_message_id"] = message_id
        except Exception as e:
            log.email_sent = False
            log.error_message = str(e)
            logger.error(f"Failed to send {notification_type.value} to {user.get('email')}: {e}")

        doc = log.model_dump()
        doc["created_at"] = log.created_at.isoformat()
        await self._get_db().notification_logs.insert_one(doc)
        return log

    async def send_admin_message(
        self,
        user_id: str,
        subject: str,
        message: str,
        admin_id: str,
    ) -> NotificationLog:
        db = self._get_db()
        user = await db.users.find_one({"user_id": user_id}, {"_id": 0})
        if not user:
            raise NotFound(f"User {user_id} not found")

        log = await self.notify_user(
            user,
            NotificationType.ADMIN_MESSAGE,
            email_templates.admin_message_email(user.get("name") or "there", subject, message),
            admin_id=admin_id,
        )
        await create_audit_log(
            action=AuditAction.ADMIN_NOTIFICATION_SENT,
            actor_id=admin_id,
            user_id=user_id,
            resource_type="notification",
            resource_id=log.log_id,
            metadata={"subject": subject, "email_sent": log.email_sent},
        )
        return log

    async def _already_notified(self, user_id: str, subscription_id: str, days: int, now: datetime) -> bool:
        existing = await self._get_db().notification_logs.find_one(
            {
                "user_id": user_id,
                "notification_type": NotificationType.SUBSCRIPTION_EXPIRATION.value,
                "details.subscription_id": subscription_id,
                "details.days_remaining": days,
                "created_at": {"$gte": (now - DUPLICATE_WINDOW).isoformat()},
            },
            {"_id": 0, "log_id": 1},
        )
        return existing is not None

    async def check_subscription_expirations(
        self,
        days_to_check: Optional[List[int]] = None,
        test_mode: bool = False,
        admin_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SubscriptionExpiryCheckResult:
        """Remind users whose ACTIVE subscription ends exactly N calendar days from today.

        A reminder for the same subscription and day count within 24 hours is skipped.
        In test mode nothing is sent or logged; the result lists what would be sent.
        """
        now = now or datetime.now(timezone.utc)
        days_to_check = sorted(set(days_to_check or DEFAULT_EXPIRY_DAYS), reverse=True)
        result = SubscriptionExpiryCheckResult(checked_days=days_to_check, test_mode=test_mode)
        db = self._get_db()
        today = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)

        for days in days_to_check:
            day_start = today + timedelta(days=days)
            day_end = day_start + timedelta(days=1)
            subscriptions = await db.subscriptions.find(
                {
                    "status": SubscriptionStatus.ACTIVE.value,
                    "current_period_end": {"$gte": day_start.isoformat(), "$lt": day_end.isoformat()},
                },
                {"_id": 0},
            ).to_list(length=None)

            for sub in subscriptions:
                entry = {"subscription_id": sub["subscription_id"], "user_id": sub["user_id"], "days": days}

                if await self._already_notified(sub["user_id"], sub["subscription_id"], days, now):
                    result.skipped_duplicates += 1
                    result.details.append({**entry, "status": "duplicate"})
                    continue

                user = await db.users.find_one({"user_id": sub["user_id"]}, {"_id": 0})
                if not user or not user.get("email"):
                    result.failed += 1
                    result.details.append({**entry, "status": "no_recipient"})
                    continue

                if test_mode:
                    result.details.append({**entry, "status": "would_send", "email": user["email"]})
                    continue

                period_end = parse_dt(sub.get("current_period_end"))
                plan_name = SUBSCRIPTION_PLANS[PlanType(sub["plan_type"])].name
                log = await self.notify_user(
                    user,
                    NotificationType.SUBSCRIPTION_EXPIRATION,
                    email_templates.subscription_expiry_email(
                        user.get("name") or "there",
                        plan_name,
                        days,
                        period_end.strftime("%B %d, %Y"),
                    ),
                    admin_id=admin_id,
                    details={
                        "subscription_id": sub["subscription_id"],
                        "plan_type": sub["plan_type"],
                        "days_remaining": days,
                        "exact_days_remaining": days_remaining(period_end, now),
                    },
                    now=now,
                )
                if log.email_sent:
                    result.notifications_sent += 1
                    result.details.append({**entry, "status": "sent"})
                else:
                    result.failed += 1
                    result.details.append({**entry, "status": "failed", "error": log.error_message})

        if not test_mode:
            await create_audit_log(
                action=AuditAction.SUBSCRIPTION_EXPIRY_CHECK,
                actor_id=admin_id,
                resource_type="subscription",
                metadata={
                    "checked_days": days_to_check,
                    "sent": result.notifications_sent,
                    "duplicates": result.skipped_duplicates,
                    "failed": result.failed,
                },
            )
        logger.info(
            f"Subscription expiry check: {result.notifications_sent} sent, "
            f"{result.skipped_duplicates} duplicates, {result.failed} failed (test_mode={test_mode})"
        )
        return result

    async def get_history(
        self,
        page: int = 1,
        limit: int = 50,
        notification_type: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        db = self._get_db()
        query: Dict[str, Any] = {}
        if notification_type:
            query["notification_type"] = notification_type
        if user_id:
            query["user_id"] = user_id

        total = await db.notification_logs.count_documents(query)
        logs = await db.notification_logs.find(query, {"_id": 0}).sort(
            "created_at", -1
        ).skip((page - 1) * limit).limit(limit).to_list(length=limit)
        return {
            "logs": logs,
            "total": total,
            "page": page,
            "limit": limit,
            "has_more": page * limit < total,
        }


notification_service = NotificationService()
