"""Admin Notification Routes

Endpoints:
- GET /api/admin/notifications/summary - Counts for the notification panel
- GET /api/admin/notifications/history - Paged notification log
- GET /api/admin/notifications/subscription-expiry - Upcoming expirations
- POST /api/admin/notifications/subscription-expiry - Run the expiry reminder check
- POST /api/admin/notifications/users/{user_id}/send - Message one user
"""

from fastapi import APIRouter, HTTPException, Depends, Query
from typing import Optional
import logging

from middleware import admin_route_guard
from models import UserRole
from diligence.errors import DiligenceError, to_http_exception
from diligence.models.notifications import (
    AdminUserNotificationRequest,
    NotificationType,
    SubscriptionExpiryCheckRequest,
    SubscriptionExpiryCheckResult,
)
from diligence.services.notification_service import notification_service
from diligence.services.notification_summary import (
    build_notification_summary,
    get_upcoming_expirations,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/notifications", tags=["Admin Notifications"])


def _permissions_for(role: str) -> dict:
    is_super = role == UserRole.SUPER_ADMIN.value
    return {
        "can_send_messages": True,
        "can_run_expiry_check": True,
        "can_view_history": True,
        "can_bulk_review_experts": is_super,
        "can_edit_tier_thresholds": is_super,
    }


@router.get("/summary")
async def get_summary(admin: dict = Depends(admin_route_guard)):
    """Aggregate counts. A failing source is reported, not fatal."""
    try:
        summary = await build_notification_summary()
        return {
            "summary": summary,
            "permissions": _permissions_for(admin.get("role")),
        }
    except Exception as e:
        logger.error(f"Failed to build notification summary: {e}")
        raise HTTPException(status_code=500, detail="Failed to build notification summary")


@router.get("/history")
async def get_history(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    notification_type: Optional[NotificationType] = Query(None),
    user_id: Optional[str] = Query(None),
    admin: dict = Depends(admin_route_guard),
):
    try:
        return await notification_service.get_history(
            page=page,
            limit=limit,
            notification_type=notification_type.value if notification_type else None,
            user_id=user_id,
        )
    except Exception as e:
        logger.error(f"Failed to get notification history: {e}")
        raise HTTPException(status_code=500, detail="Failed to get notification history")


@router.get("/subscription-expiry")
async def list_upcoming_expirations(
    days_ahead: int = Query(30, ge=1, le=365),
    admin: dict = Depends(admin_route_guard),
):
    try:
        expirations = await get_upcoming_expirations(days_ahead)
        return {"expirations": expirations, "total": len(expirations), "days_ahead": days_ahead}
    except Exception as e:
        logger.error(f"Failed to list upcoming expirations: {e}")
        raise HTTPException(status_code=500, detail="Failed to list upcoming expirations")


@router.post("/subscription-expiry", response_model=SubscriptionExpiryCheckResult)
async def run_expiry_check(
    body: SubscriptionExpiryCheckRequest,
    admin: dict = Depends(admin_route_guard),
):
    if any(d < 1 for d in body.days_to_check):
        raise HTTPException(status_code=400, detail="days_to_check values must be positive")
    try:
        return await notification_service.check_subscription_expirations(
            days_to_check=body.days_to_check,
            test_mode=body.test_mode,
            admin_id=admin["user_id"],
        )
    except Exception as e:
        logger.error(f"Subscription expiry check failed: {e}")
        raise HTTPException(status_code=500, detail="Subscription expiry check failed")


@router.post("/users/{user_id}/send")
async def send_user_notification(
    user_id: str,
    body: AdminUserNotificationRequest,
    admin: dict = Depends(admin_route_guard),
):
    try:
        log = await notification_service.send_admin_message(
            user_id, body.subject, body.message, admin["user_id"]
        )
        return {"success": log.email_sent, "log_id": log.log_id, "error": log.error_message}
    except DiligenceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to send notification to {user_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to send notification")
