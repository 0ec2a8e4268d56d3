"""Admin-side user account management. Accounts are never deleted, only deactivated."""

from datetime import datetime, timezone
from typing import Optional
import logging

from database import database
from models import AuditAction, UserRole
from utils.audit import create_audit_log
from diligence.errors import InvalidStatusTransition, NotFound
from diligence.models.users import AccountStatus, User

logger = logging.getLogger(__name__)


async def change_user_status(
    user_id: str,
    new_status: AccountStatus,
    admin_id: str,
    admin_role: Optional[UserRole] = None,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> User:
    now = now or datetime.now(timezone.utc)
    if user_id == admin_id:
        raise InvalidStatusTransition("Admins cannot change their own account status")

    db = database.get_db()
    user = await db.users.find_one({"user_id": user_id}, {"_id": 0})
    if not user:
        raise NotFound(f"User {user_id} not found")

    previous = user.get("status", AccountStatus.ACTIVE.value)
    changes = {"status": new_status.value, "updated_at": now.isoformat()}
    if new_status == AccountStatus.ACTIVE:
        # reactivation clears the lockout counters
        changes["failed_login_attempts"] = 0
    await db.users.update_one({"user_id": user_id}, {"$set": changes})

    await create_audit_log(
        action=AuditAction.USER_STATUS_CHANGED,
        actor_role=admin_role,
        actor_id=admin_id,
        user_id=user_id,
        resource_type="user",
        resource_id=user_id,
        before_state={"status": previous},
        after_state={"status": new_status.value},
        reason_code=reason,
    )
    logger.info(f"User {user_id} status {previous} -> {new_status.value} by {admin_id}")
    return User.model_validate({**user, **changes})
