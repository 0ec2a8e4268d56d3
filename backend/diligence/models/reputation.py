"""Reputation ledger models."""

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime, timezone
from enum import Enum
import uuid

from diligence.models.tiers import TierProgression
from diligence.models.quota import QuotaStatus


class AchievementType(str, Enum):
    TIER_PROMOTION = "TIER_PROMOTION"
    MILESTONE = "MILESTONE"
    EXPERT_ASSIGNMENT = "EXPERT_ASSIGNMENT"
    COMMUNITY = "COMMUNITY"
    ADMIN_AWARD = "ADMIN_AWARD"


class Achievement(BaseModel):
    """Awarded achievement. Immutable once created."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    achievement_id: str = Field(default_factory=lambda: f"ACH-{uuid.uuid4().hex[:12].upper()}")
    achievement_type: AchievementType
    title: str
    description: str = ""
    points_awarded: int = Field(ge=0)
    awarded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ReputationRecord(BaseModel):
    user_id: str
    total_points: int = 0
    level: int = 1
    projects_submitted: int = 0
    average_rating: float = 0.0
    completion_rate: float = 0.0
    achievements: List[Achievement] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore"}


class ActivitySummary(BaseModel):
    """Raw activity counts fed to the accumulator."""
    projects_submitted: int = Field(0, ge=0)
    successful_projects: int = Field(0, ge=0)
    evaluations_completed: int = Field(0, ge=0)
    ratings_count: int = Field(0, ge=0)
    average_rating: float = Field(0.0, ge=0)


class AwardPointsRequest(BaseModel):
    user_id: str
    points: int = Field(gt=0)
    achievement_type: AchievementType = AchievementType.ADMIN_AWARD
    title: str
    description: str = ""


class ReputationProfile(BaseModel):
    """What the user dashboard shows for reputation."""
    user_id: str
    total_points: int
    level: int
    tier: TierProgression
    quota: Optional[QuotaStatus] = None
    projects_submitted: int = 0
    average_rating: float = 0.0
    completion_rate: float = 0.0
    achievements: List[Achievement] = Field(default_factory=list)


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    name: Optional[str] = None
    total_points: int
    level: int
    tier: str
