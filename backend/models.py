from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum
import uuid

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class UserRole(str, Enum):
    USER = "USER"
    TEAM_MEMBER = "TEAM_MEMBER"
    MODERATOR = "MODERATOR"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"

# Higher number wins when a route asks for a minimum role
ROLE_HIERARCHY = {
    UserRole.USER.value: 1,
    UserRole.TEAM_MEMBER.value: 2,
    UserRole.MODERATOR.value: 3,
    UserRole.ADMIN.value: 4,
    UserRole.SUPER_ADMIN.value: 5,
}

class AuditAction(str, Enum):
    # Reputation
    REPUTATION_AWARDED = "REPUTATION_AWARDED"
    REPUTATION_RECALCULATED = "REPUTATION_RECALCULATED"
    TIER_CHANGED = "TIER_CHANGED"
    TIER_THRESHOLDS_UPDATED = "TIER_THRESHOLDS_UPDATED"

    # Quota / projects
    PROJECT_SUBMITTED = "PROJECT_SUBMITTED"
    PROJECT_OPENED_FOR_ASSIGNMENT = "PROJECT_OPENED_FOR_ASSIGNMENT"
    MONTHLY_QUOTA_RESET = "MONTHLY_QUOTA_RESET"

    # Credits / subscriptions
    CREDIT_CONSUMED = "CREDIT_CONSUMED"
    SUBSCRIPTION_ACTIVATED = "SUBSCRIPTION_ACTIVATED"
    SUBSCRIPTION_RENEWED = "SUBSCRIPTION_RENEWED"
    SUBSCRIPTION_CANCELLED = "SUBSCRIPTION_CANCELLED"
    SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"

    # Bookings
    CONSULTATION_BOOKED = "CONSULTATION_BOOKED"
    REPORT_REQUESTED = "REPORT_REQUESTED"

    # Experts
    EXPERT_APPLICATION_REVIEWED = "EXPERT_APPLICATION_REVIEWED"
    EXPERT_ASSIGNED = "EXPERT_ASSIGNED"
    EXPERT_ASSIGNMENT_WITHDRAWN = "EXPERT_ASSIGNMENT_WITHDRAWN"
    EVALUATION_SUBMITTED = "EVALUATION_SUBMITTED"

    # Admin
    USER_STATUS_CHANGED = "USER_STATUS_CHANGED"
    ADMIN_NOTIFICATION_SENT = "ADMIN_NOTIFICATION_SENT"
    SUBSCRIPTION_EXPIRY_CHECK = "SUBSCRIPTION_EXPIRY_CHECK"

# ============================================================================
# AUDIT
# ============================================================================

class AuditLog(BaseModel):
    model_config = ConfigDict(extra="ignore")

    audit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: AuditAction
    actor_role: Optional[UserRole] = None
    actor_id: Optional[str] = None
    user_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    reason_code: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
