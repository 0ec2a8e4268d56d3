"""Submitter tier models and the default threshold table."""

from pydantic import BaseModel, Field, field_validator
from typing import Dict, List, Tuple, Union
from enum import Enum


class SubmitterTier(str, Enum):
    """Reputation brackets, lowest first."""
    BASIC = "BASIC"
    VERIFIED = "VERIFIED"
    PREMIUM = "PREMIUM"
    VC = "VC"
    ECOSYSTEM_PARTNER = "ECOSYSTEM_PARTNER"


MAX_TIER = "MAX"

TIER_ORDER: List[SubmitterTier] = list(SubmitterTier)

DEFAULT_TIER_THRESHOLDS: Dict[str, int] = {
    SubmitterTier.BASIC.value: 0,
    SubmitterTier.VERIFIED.value: 100,
    SubmitterTier.PREMIUM.value: 500,
    SubmitterTier.VC.value: 2000,
    SubmitterTier.ECOSYSTEM_PARTNER.value: 5000,
}

# Monthly project submissions allowed per tier
TIER_MONTHLY_PROJECT_LIMITS: Dict[SubmitterTier, int] = {
    SubmitterTier.BASIC: 1,
    SubmitterTier.VERIFIED: 3,
    SubmitterTier.PREMIUM: 10,
    SubmitterTier.VC: 50,
    SubmitterTier.ECOSYSTEM_PARTNER: 1000,
}

# Multiplier applied to project submission points
TIER_POINTS_MULTIPLIERS: Dict[SubmitterTier, float] = {
    SubmitterTier.BASIC: 1.0,
    SubmitterTier.VERIFIED: 1.2,
    SubmitterTier.PREMIUM: 1.5,
    SubmitterTier.VC: 2.0,
    SubmitterTier.ECOSYSTEM_PARTNER: 3.0,
}


class TierThresholds(BaseModel):
    """Ordered tier -> minimum points mapping.

    Tiers may be a prefix of TIER_ORDER (a table without the top tiers is valid),
    the first tier must start at 0 and values must be strictly ascending.
    """
    thresholds: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_TIER_THRESHOLDS))

    model_config = {"extra": "ignore"}

    @field_validator("thresholds")
    @classmethod
    def _validate_order(cls, value: Dict[str, int]) -> Dict[str, int]:
        if not value:
            raise ValueError("threshold table is empty")
        known = [t.value for t in TIER_ORDER]
        unknown = [k for k in value if k not in known]
        if unknown:
            raise ValueError(f"unknown tiers: {unknown}")
        ordered = [k for k in known if k in value]
        if ordered != known[:len(ordered)]:
            raise ValueError("tiers must be a contiguous prefix starting at BASIC")
        points = [value[k] for k in ordered]
        if points[0] != 0:
            raise ValueError("BASIC threshold must be 0")
        if any(b <= a for a, b in zip(points, points[1:])):
            raise ValueError("thresholds must be strictly ascending")
        return {k: value[k] for k in ordered}

    def ordered(self) -> List[Tuple[SubmitterTier, int]]:
        return [(SubmitterTier(k), v) for k, v in self.thresholds.items()]


class TierProgression(BaseModel):
    current_tier: SubmitterTier
    next_tier: Union[SubmitterTier, str]
    current_points: int
    current_tier_points: int
    next_tier_points: int
    progress_percent: int
    points_to_next_tier: int = 0
