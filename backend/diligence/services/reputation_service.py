"""Reputation Accumulator

Turns activity into reputation points, keeps the per-user reputation record
and moves users between submitter tiers as their points change.

Points enter the ledger two ways:
- direct scoring for activity (project submissions, assignments, evaluations)
- achievements, which carry their own points_awarded

Both add to total_points, so achievement points never exceed the total.
"""

import math
from datetime import datetime, timezone
from typing import Optional, List
import logging

from pymongo import ReturnDocument

from database import database
from models import AuditAction
from utils.audit import create_audit_log
from utils.calc import round_half_up
from diligence.errors import NotFound
from diligence.models.reputation import (
    Achievement,
    ActivitySummary,
    LeaderboardEntry,
    ReputationProfile,
    ReputationRecord,
)
from diligence.models.tiers import SubmitterTier, TIER_POINTS_MULTIPLIERS
from diligence.services.tier_resolver import resolve_tier, get_tier_thresholds
from diligence.services.quota_service import monthly_limit_for_tier, quota_service

logger = logging.getLogger(__name__)

POINTS_PER_PROJECT = 25
POINTS_PER_SUCCESSFUL_PROJECT = 50
POINTS_PER_EVALUATION = 25
POINTS_PER_RATING_STAR = 2
POINTS_PER_LEVEL = 100
BASE_SUBMISSION_POINTS = 25


def level_for_points(total_points: int) -> int:
    if total_points < 0:
        raise ValueError("total_points must be non-negative")
    return total_points // POINTS_PER_LEVEL + 1


def accumulate_points(activity: ActivitySummary) -> int:
    """Points earned from raw activity counts."""
    rating_points = round_half_up(activity.average_rating * activity.ratings_count * POINTS_PER_RATING_STAR)
    return (
        activity.projects_submitted * POINTS_PER_PROJECT
        + activity.successful_projects * POINTS_PER_SUCCESSFUL_PROJECT
        + activity.evaluations_completed * POINTS_PER_EVALUATION
        + rating_points
    )


def completion_rate(projects_submitted: int, successful_projects: int) -> float:
    if projects_submitted <= 0:
        return 0.0
    return round(successful_projects / projects_submitted * 100, 1)


def submission_points(tier: SubmitterTier) -> int:
    """Points for one project submission, scaled by the submitter's tier."""
    return math.floor(BASE_SUBMISSION_POINTS * TIER_POINTS_MULTIPLIERS[SubmitterTier(tier)])


class ReputationService:
    """Reputation ledger persistence."""

    def __init__(self):
        self.db = None

    def _get_db(self):
        if self.db is None:
            self.db = database.get_db()
        return self.db

    async def get_reputation(self, user_id: str) -> ReputationRecord:
        db = self._get_db()
        doc = await db.user_reputation.find_one({"user_id": user_id}, {"_id": 0})
        if doc:
            return ReputationRecord.model_validate(doc)
        return ReputationRecord(user_id=user_id)

    async def award_points(
        self,
        user_id: str,
        points: int,
        reason: str,
        achievement: Optional[Achievement] = None,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ReputationRecord:
        """Add points (and optionally an achievement) and re-resolve the user's tier."""
        if points < 0:
            raise ValueError("Awarded points must be non-negative; use recalculate_reputation for corrections")
        if achievement is not None and achievement.points_awarded != points:
            raise ValueError("Achievement points must equal the points awarded")

        now = now or datetime.now(timezone.utc)
        db = self._get_db()

        update = {
            "$inc": {"total_points": points},
            "$set": {"updated_at": now.isoformat()},
            "$setOnInsert": {"created_at": now.isoformat()},
        }
        if achievement is not None:
            achievement_doc = achievement.model_dump()
            achievement_doc["awarded_at"] = achievement.awarded_at.isoformat()
            update["$push"] = {"achievements": achievement_doc}

        doc = await db.user_reputation.find_one_and_update(
            {"user_id": user_id},
            update,
            projection={"_id": 0},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        total = doc.get("total_points", 0)
        level = level_for_points(total)
        if doc.get("level") != level:
            await db.user_reputation.update_one({"user_id": user_id}, {"$set": {"level": level}})
            doc["level"] = level

        await self._sync_user_tier(user_id, total, actor_id, now)

        await create_audit_log(
            action=AuditAction.REPUTATION_AWARDED,
            actor_id=actor_id,
            user_id=user_id,
            resource_type="reputation",
            resource_id=user_id,
            metadata={
                "points": points,
                "reason": reason,
                "total_points": total,
                "achievement": achievement.title if achievement else None,
            },
        )
        logger.info(f"Awarded {points} reputation points to {user_id} ({reason}); total {total}")
        return ReputationRecord.model_validate(doc)

    async def _sync_user_tier(self, user_id: str, total_points: int, actor_id: Optional[str], now: datetime):
        """Mirror points onto the user and move them to the tier the points resolve to."""
        db = self._get_db()
        user = await db.users.find_one({"user_id": user_id}, {"_id": 0})
        if not user:
            logger.warning(f"Reputation changed for unknown user {user_id}")
            return

        progression = resolve_tier(total_points, await get_tier_thresholds())
        new_tier = progression.current_tier
        old_tier = user.get("submitter_tier") or SubmitterTier.BASIC.value

        changes = {"reputation_points": total_points, "updated_at": now.isoformat()}
        if old_tier != new_tier.value:
            changes["submitter_tier"] = new_tier.value
            changes["monthly_project_limit"] = monthly_limit_for_tier(new_tier)
        await db.users.update_one({"user_id": user_id}, {"$set": changes})

        if old_tier != new_tier.value:
            await create_audit_log(
                action=AuditAction.TIER_CHANGED,
                actor_id=actor_id,
                user_id=user_id,
                resource_type="user",
                resource_id=user_id,
                before_state={"submitter_tier": old_tier},
                after_state={"submitter_tier": new_tier.value},
            )
            logger.info(f"User {user_id} moved from {old_tier} to {new_tier.value}")

    async def get_profile(self, user_id: str, now: Optional[datetime] = None) -> ReputationProfile:
        now = now or datetime.now(timezone.utc)
        record = await self.get_reputation(user_id)
        progression = resolve_tier(record.total_points, await get_tier_thresholds())
        quota = await quota_service.get_quota(user_id, now)
        return ReputationProfile(
            user_id=user_id,
            total_points=record.total_points,
            level=level_for_points(record.total_points),
            tier=progression,
            quota=quota,
            projects_submitted=record.projects_submitted,
            average_rating=record.average_rating,
            completion_rate=record.completion_rate,
            achievements=sorted(record.achievements, key=lambda a: a.awarded_at, reverse=True),
        )

    async def get_leaderboard(self, limit: int = 10) -> List[LeaderboardEntry]:
        db = self._get_db()
        records = await db.user_reputation.find(
            {}, {"_id": 0, "user_id": 1, "total_points": 1}
        ).sort("total_points", -1).limit(limit).to_list(length=limit)

        user_ids = [r["user_id"] for r in records]
        users = {}
        async for user in db.users.find({"user_id": {"$in": user_ids}}, {"_id": 0, "user_id": 1, "name": 1, "submitter_tier": 1}):
            users[user["user_id"]] = user

        return [
            LeaderboardEntry(
                rank=i + 1,
                user_id=r["user_id"],
                name=users.get(r["user_id"], {}).get("name"),
                total_points=r.get("total_points", 0),
                level=level_for_points(r.get("total_points", 0)),
                tier=users.get(r["user_id"], {}).get("submitter_tier", SubmitterTier.BASIC.value),
            )
            for i, r in enumerate(records)
        ]

    async def collect_activity(self, user_id: str) -> ActivitySummary:
        db = self._get_db()
        user = await db.users.find_one({"user_id": user_id}, {"_id": 0})
        if not user:
            raise NotFound(f"User {user_id} not found")

        evaluations_completed = await db.evaluations.count_documents({"expert_user_id": user_id})
        ratings = await db.evaluations.aggregate([
            {"$match": {"submitter_id": user_id}},
            {"$group": {"_id": None, "avg": {"$avg": "$overall_score"}, "count": {"$sum": 1}}},
        ]).to_list(length=1)
        rating = ratings[0] if ratings else {}

        return ActivitySummary(
            projects_submitted=user.get("total_projects_submitted", 0),
            successful_projects=user.get("successful_projects", 0),
            evaluations_completed=evaluations_completed,
            ratings_count=rating.get("count", 0),
            average_rating=round(rating.get("avg") or 0.0, 2),
        )

    async def recalculate_reputation(
        self,
        user_id: str,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ReputationRecord:
        """Admin correction: rebuild total_points from activity plus achievements.

        This is the one path that may lower a user's points.
        """
        now = now or datetime.now(timezone.utc)
        activity = await self.collect_activity(user_id)
        record = await self.get_reputation(user_id)

        achievement_points = sum(a.points_awarded for a in record.achievements)
        total = accumulate_points(activity) + achievement_points

        changes = {
            "total_points": total,
            "level": level_for_points(total),
            "projects_submitted": activity.projects_submitted,
            "average_rating": activity.average_rating,
            "completion_rate": completion_rate(activity.projects_submitted, activity.successful_projects),
            "updated_at": now.isoformat(),
        }
        db = self._get_db()
        await db.user_reputation.update_one(
            {"user_id": user_id},
            {"$set": changes, "$setOnInsert": {"created_at": now.isoformat(), "achievements": []}},
            upsert=True,
        )
        await self._sync_user_tier(user_id, total, actor_id, now)

        await create_audit_log(
            action=AuditAction.REPUTATION_RECALCULATED,
            actor_id=actor_id,
            user_id=user_id,
            resource_type="reputation",
            resource_id=user_id,
            before_state={"total_points": record.total_points},
            after_state={"total_points": total},
            metadata={"activity": activity.model_dump(), "achievement_points": achievement_points},
        )
        logger.info(f"Reputation for {user_id} recalculated: {record.total_points} -> {total}")
        return record.model_copy(update={**changes, "updated_at": now})


reputation_service = ReputationService()
