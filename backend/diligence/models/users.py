"""Platform user record (the slice this backend reads and writes)."""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime, timezone
from enum import Enum

from models import UserRole
from diligence.models.tiers import SubmitterTier


class AccountStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    DEACTIVATED = "DEACTIVATED"


class User(BaseModel):
    user_id: str
    email: str
    name: Optional[str] = None
    role: UserRole = UserRole.USER
    status: AccountStatus = AccountStatus.ACTIVE

    # Submitter reputation and quota
    submitter_tier: SubmitterTier = SubmitterTier.BASIC
    reputation_points: int = 0
    monthly_project_limit: int = 1
    monthly_projects_used: int = 0
    last_reset_date: Optional[datetime] = None
    total_projects_submitted: int = 0
    completed_projects: int = 0
    successful_projects: int = 0
    average_project_score: float = 0.0

    # Login failure tracking (written by the auth service)
    failed_login_attempts: int = 0
    last_failed_login: Optional[datetime] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore"}


class UserStatusUpdate(BaseModel):
    status: AccountStatus
    reason: Optional[str] = None
