"""Admin user account routes."""

from fastapi import APIRouter, HTTPException, Depends
import logging

from middleware import admin_route_guard
from models import UserRole
from diligence.errors import DiligenceError, to_http_exception
from diligence.models.users import User, UserStatusUpdate
from diligence.services.user_service import change_user_status

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/users", tags=["Admin Users"])


@router.patch("/{user_id}/status", response_model=User)
async def update_user_status(
    user_id: str,
    body: UserStatusUpdate,
    admin: dict = Depends(admin_route_guard),
):
    """Activate, deactivate or suspend an account. Admins cannot change their own status."""
    try:
        return await change_user_status(
            user_id,
            body.status,
            admin_id=admin["user_id"],
            admin_role=UserRole(admin["role"]),
            reason=body.reason,
        )
    except DiligenceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to update status for {user_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update user status")
