"""Client Dashboard Routes

Endpoints:
- GET /api/dashboard/notifications - Derived notifications, newest and most urgent first
- PATCH /api/dashboard/notifications - Mark notifications read
- GET /api/dashboard/quota - Monthly project quota
"""

from fastapi import APIRouter, HTTPException, Depends, Query
import logging

from middleware import require_auth
from diligence.errors import DiligenceError, to_http_exception
from diligence.models.notifications import (
    DashboardNotificationPage,
    MarkNotificationsReadRequest,
)
from diligence.models.quota import QuotaStatus
from diligence.services.dashboard_notifications import dashboard_notification_service
from diligence.services.quota_service import quota_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/dashboard", tags=["Dashboard"])


@router.get("/notifications", response_model=DashboardNotificationPage)
async def get_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    unread_only: bool = Query(False),
    user: dict = Depends(require_auth),
):
    """
    Notifications are rebuilt from sessions, reports and the subscription on
    every call. Sources that fail are listed in unavailable_sources.
    """
    try:
        return await dashboard_notification_service.get_notifications(
            user["user_id"], page=page, limit=limit, unread_only=unread_only
        )
    except Exception as e:
        logger.error(f"Failed to build dashboard notifications: {e}")
        raise HTTPException(status_code=500, detail="Failed to load notifications")


@router.patch("/notifications")
async def mark_notifications_read(
    body: MarkNotificationsReadRequest,
    user: dict = Depends(require_auth),
):
    if not body.mark_all and not body.notification_ids:
        raise HTTPException(status_code=400, detail="Provide notification_ids or mark_all")
    try:
        marked = await dashboard_notification_service.mark_as_read(
            user["user_id"], body.notification_ids, body.mark_all
        )
        return {"success": True, "marked": marked}
    except Exception as e:
        logger.error(f"Failed to mark notifications read: {e}")
        raise HTTPException(status_code=500, detail="Failed to update notifications")


@router.get("/quota", response_model=QuotaStatus)
async def get_quota(user: dict = Depends(require_auth)):
    try:
        return await quota_service.get_quota(user["user_id"])
    except DiligenceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to get quota: {e}")
        raise HTTPException(status_code=500, detail="Failed to get quota")
