"""Reputation Routes

Endpoints:
- GET /api/reputation/me - Points, level, tier progress and monthly quota
- GET /api/reputation/leaderboard - Top users by points
- GET /api/reputation/tiers - Current tier threshold table
- PUT /api/reputation/tiers - Replace the tier threshold table (super admin)
- POST /api/reputation/award - Award points with an achievement (admin)
- POST /api/reputation/{user_id}/recalculate - Rebuild a user's points (admin)
"""

from fastapi import APIRouter, HTTPException, Depends, Query
from typing import Dict, List
from pydantic import BaseModel
import logging

from middleware import require_auth, admin_route_guard, super_admin_route_guard
from diligence.errors import DiligenceError, to_http_exception
from diligence.models.reputation import (
    Achievement,
    AwardPointsRequest,
    LeaderboardEntry,
    ReputationProfile,
    ReputationRecord,
)
from diligence.models.tiers import TierThresholds
from diligence.services.reputation_service import reputation_service
from diligence.services.tier_resolver import get_tier_thresholds, update_tier_thresholds

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reputation", tags=["Reputation"])


class TierThresholdsUpdate(BaseModel):
    thresholds: Dict[str, int]


@router.get("/me", response_model=ReputationProfile)
async def get_my_reputation(user: dict = Depends(require_auth)):
    try:
        return await reputation_service.get_profile(user["user_id"])
    except DiligenceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to get reputation: {e}")
        raise HTTPException(status_code=500, detail="Failed to get reputation")


@router.get("/leaderboard", response_model=List[LeaderboardEntry])
async def get_leaderboard(
    limit: int = Query(10, ge=1, le=100),
    user: dict = Depends(require_auth),
):
    try:
        return await reputation_service.get_leaderboard(limit)
    except Exception as e:
        logger.error(f"Failed to get leaderboard: {e}")
        raise HTTPException(status_code=500, detail="Failed to get leaderboard")


@router.get("/tiers", response_model=TierThresholds)
async def get_tiers():
    try:
        return await get_tier_thresholds()
    except Exception as e:
        logger.error(f"Failed to get tier thresholds: {e}")
        raise HTTPException(status_code=500, detail="Failed to get tier thresholds")


@router.put("/tiers", response_model=TierThresholds)
async def put_tiers(
    body: TierThresholdsUpdate,
    user: dict = Depends(super_admin_route_guard),
):
    try:
        return await update_tier_thresholds(body.thresholds, actor_id=user["user_id"])
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to update tier thresholds: {e}")
        raise HTTPException(status_code=500, detail="Failed to update tier thresholds")


@router.post("/award", response_model=ReputationRecord)
async def award_points(
    body: AwardPointsRequest,
    user: dict = Depends(admin_route_guard),
):
    """Award points to a user. Every manual award is recorded as an achievement."""
    try:
        achievement = Achievement(
            achievement_type=body.achievement_type,
            title=body.title,
            description=body.description,
            points_awarded=body.points,
        )
        return await reputation_service.award_points(
            body.user_id,
            body.points,
            reason="admin_award",
            achievement=achievement,
            actor_id=user["user_id"],
        )
    except DiligenceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to award points: {e}")
        raise HTTPException(status_code=500, detail="Failed to award points")


@router.post("/{user_id}/recalculate", response_model=ReputationRecord)
async def recalculate(user_id: str, user: dict = Depends(admin_route_guard)):
    try:
        return await reputation_service.recalculate_reputation(user_id, actor_id=user["user_id"])
    except DiligenceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to recalculate reputation for {user_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to recalculate reputation")
