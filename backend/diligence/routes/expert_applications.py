"""Expert Application Review Routes

Endpoints:
- GET /api/admin/expert-applications - List applications with status counts
- POST /api/admin/expert-applications - Approve, reject or request info on one application
- PUT /api/admin/expert-applications - Bulk review (super admin)
- GET /api/admin/expert-applications/{expert_id}/history - Review audit trail
"""

from fastapi import APIRouter, HTTPException, Depends, Query
from typing import Optional
import logging

from middleware import admin_route_guard, super_admin_route_guard
from models import UserRole
from utils.audit import get_audit_logs_for_resource
from diligence.errors import DiligenceError, to_http_exception
from diligence.models.experts import (
    BulkReviewRequest,
    ExpertApplication,
    ReviewApplicationRequest,
    VerificationStatus,
)
from diligence.services.expert_application_service import expert_application_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/expert-applications", tags=["Expert Applications"])


@router.get("")
async def list_applications(
    status: Optional[VerificationStatus] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: dict = Depends(admin_route_guard),
):
    try:
        return await expert_application_service.list_applications(status, page, limit)
    except Exception as e:
        logger.error(f"Failed to list expert applications: {e}")
        raise HTTPException(status_code=500, detail="Failed to list expert applications")


@router.post("", response_model=ExpertApplication)
async def review_application(
    body: ReviewApplicationRequest,
    admin: dict = Depends(admin_route_guard),
):
    try:
        return await expert_application_service.review_application(
            body.expert_id,
            body.action,
            reviewer_id=admin["user_id"],
            reviewer_role=UserRole(admin["role"]),
            review_notes=body.review_notes,
        )
    except DiligenceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to review application {body.expert_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to review application")


@router.put("")
async def bulk_review(
    body: BulkReviewRequest,
    admin: dict = Depends(super_admin_route_guard),
):
    try:
        results = await expert_application_service.bulk_review(
            body.expert_ids,
            body.action,
            reviewer_id=admin["user_id"],
            reviewer_role=UserRole(admin["role"]),
            review_notes=body.review_notes,
        )
    except Exception as e:
        logger.error(f"Bulk review failed: {e}")
        raise HTTPException(status_code=500, detail="Bulk review failed")

    succeeded = sum(1 for r in results if r.success)
    return {
        "results": results,
        "succeeded": succeeded,
        "failed": len(results) - succeeded,
    }


@router.get("/{expert_id}/history")
async def get_review_history(
    expert_id: str,
    limit: int = Query(50, ge=1, le=200),
    admin: dict = Depends(admin_route_guard),
):
    logs = await get_audit_logs_for_resource("expert_application", expert_id, limit)
    return {"expert_id": expert_id, "history": logs}
