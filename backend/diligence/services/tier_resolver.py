"""Tier Resolver

Maps accumulated reputation points onto the submitter tier table.
The table stored in platform_settings is authoritative; DEFAULT_TIER_THRESHOLDS
applies only when nothing has been stored yet.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Dict
import logging

from database import database
from models import AuditAction
from utils.audit import create_audit_log
from utils.calc import round_half_up
from diligence.models.tiers import (
    TierThresholds,
    TierProgression,
    MAX_TIER,
)

logger = logging.getLogger(__name__)

THRESHOLDS_SETTING_KEY = "tier_thresholds"


def resolve_tier(total_points: int, thresholds: Optional[TierThresholds] = None) -> TierProgression:
    """Resolve the current tier, next tier and progress toward it.

    The highest tier whose threshold is <= total_points wins, so landing exactly on
    a threshold puts the user in that (higher) tier. At the top tier next_tier is
    "MAX" and progress is 100.
    """
    if isinstance(total_points, bool) or not isinstance(total_points, int):
        raise ValueError(f"total_points must be an integer, got {total_points!r}")
    if total_points < 0:
        raise ValueError("total_points must be non-negative")

    table = (thresholds or TierThresholds()).ordered()

    index = 0
    for i, (_, minimum) in enumerate(table):
        if minimum <= total_points:
            index = i
        else:
            break

    current_tier, current_min = table[index]

    if index == len(table) - 1:
        return TierProgression(
            current_tier=current_tier,
            next_tier=MAX_TIER,
            current_points=total_points,
            current_tier_points=current_min,
            next_tier_points=0,
            progress_percent=100,
            points_to_next_tier=0,
        )

    next_tier, next_min = table[index + 1]
    raw = Decimal(100 * (total_points - current_min)) / Decimal(next_min - current_min)
    progress = max(0, min(100, round_half_up(raw)))

    return TierProgression(
        current_tier=current_tier,
        next_tier=next_tier,
        current_points=total_points,
        current_tier_points=current_min,
        next_tier_points=next_min,
        progress_percent=progress,
        points_to_next_tier=next_min - total_points,
    )


async def get_tier_thresholds() -> TierThresholds:
    """Load the tier table, falling back to the defaults when none is stored."""
    db = database.get_db()
    setting = await db.platform_settings.find_one({"key": THRESHOLDS_SETTING_KEY}, {"_id": 0})
    if not setting or not setting.get("value"):
        return TierThresholds()
    try:
        return TierThresholds(thresholds=setting["value"])
    except ValueError as e:
        logger.error(f"Stored tier thresholds are invalid, using defaults: {e}")
        return TierThresholds()


async def update_tier_thresholds(
    thresholds: Dict[str, int],
    actor_id: Optional[str] = None,
) -> TierThresholds:
    """Validate and store a new tier table. Raises ValueError on a bad table."""
    validated = TierThresholds(thresholds=thresholds)
    previous = await get_tier_thresholds()

    db = database.get_db()
    await db.platform_settings.update_one(
        {"key": THRESHOLDS_SETTING_KEY},
        {"$set": {
            "key": THRESHOLDS_SETTING_KEY,
            "value": validated.thresholds,
            "updated_by": actor_id,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }},
        upsert=True,
    )

    await create_audit_log(
        action=AuditAction.TIER_THRESHOLDS_UPDATED,
        actor_id=actor_id,
        resource_type="platform_settings",
        resource_id=THRESHOLDS_SETTING_KEY,
        before_state=previous.thresholds,
        after_state=validated.thresholds,
    )
    logger.info(f"Tier thresholds updated by {actor_id}: {validated.thresholds}")
    return validated
