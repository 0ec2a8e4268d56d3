"""Expert application models."""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import datetime, timezone
from enum import Enum
import uuid


class VerificationStatus(str, Enum):
    PENDING = "PENDING"
    UNDER_REVIEW = "UNDER_REVIEW"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"
    SUSPENDED = "SUSPENDED"


class ExpertTier(str, Enum):
    BRONZE = "BRONZE"
    SILVER = "SILVER"
    GOLD = "GOLD"
    PLATINUM = "PLATINUM"
    DIAMOND = "DIAMOND"


class ReviewAction(str, Enum):
    START_REVIEW = "START_REVIEW"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    REQUEST_INFO = "REQUEST_INFO"
    SUSPEND = "SUSPEND"


# Concurrent ASSIGNED/IN_PROGRESS assignments an expert may hold
EXPERT_WORKLOAD_LIMITS: Dict[ExpertTier, int] = {
    ExpertTier.BRONZE: 5,
    ExpertTier.SILVER: 7,
    ExpertTier.GOLD: 10,
    ExpertTier.PLATINUM: 10,
    ExpertTier.DIAMOND: 10,
}

APPROVAL_REPUTATION_POINTS = 100


class ExpertApplication(BaseModel):
    expert_id: str = Field(default_factory=lambda: f"EXP-{uuid.uuid4().hex[:12].upper()}")
    user_id: str
    verification_status: VerificationStatus = VerificationStatus.PENDING
    reputation_points: int = 0
    expert_tier: Optional[ExpertTier] = None
    accuracy_rate: float = 0.0

    # Profile
    expertise_areas: List[str] = Field(default_factory=list)
    years_experience: int = 0
    bio: Optional[str] = None
    linkedin_url: Optional[str] = None
    portfolio_url: Optional[str] = None

    # Review
    review_notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore"}


class ReviewApplicationRequest(BaseModel):
    expert_id: str
    action: ReviewAction
    review_notes: Optional[str] = None


class BulkReviewRequest(BaseModel):
    expert_ids: List[str] = Field(min_length=1)
    action: ReviewAction
    review_notes: Optional[str] = None


class ReviewResult(BaseModel):
    expert_id: str
    success: bool
    status: Optional[VerificationStatus] = None
    error: Optional[str] = None
