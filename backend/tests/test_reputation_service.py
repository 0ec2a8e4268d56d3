"""
Tests for the reputation ledger: activity scoring, awarding points with
achievements, tier promotion and admin recalculation.
"""
import pytest
import sys
from pathlib import Path
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from diligence.models.reputation import Achievement, AchievementType, ActivitySummary
from diligence.models.tiers import SubmitterTier
from diligence.services.reputation_service import (
    ReputationService,
    accumulate_points,
    completion_rate,
    level_for_points,
    submission_points,
)

NOW = datetime(2026, 7, 1, 8, 0, 0, tzinfo=timezone.utc)
THREE_TIERS = {"BASIC": 0, "VERIFIED": 100, "PREMIUM": 500}


class AsyncCursor:
    """Async iterator over a list (for mocking Motor find() cursor)."""
    def __init__(self, items):
        self._items = list(items)
    def __aiter__(self):
        return self
    async def __anext__(self):
        if not self._items:
            raise StopAsyncIteration
        return self._items.pop(0)


def _db(reputation_after=None, user=None):
    db = MagicMock()
    db.user_reputation.find_one_and_update = AsyncMock(return_value=reputation_after)
    db.user_reputation.update_one = AsyncMock()
    db.users.find_one = AsyncMock(return_value=user)
    db.users.update_one = AsyncMock()
    db.platform_settings.find_one = AsyncMock(return_value={"key": "tier_thresholds", "value": THREE_TIERS})
    return db


class TestAccumulator:

    def test_activity_points(self):
        activity = ActivitySummary(
            projects_submitted=4,
            successful_projects=2,
            evaluations_completed=3,
            ratings_count=5,
            average_rating=4.25,
        )
        # 4*25 + 2*50 + 3*25 + round(4.25*5*2 = 42.5)
        assert accumulate_points(activity) == 100 + 100 + 75 + 43

    def test_no_activity(self):
        assert accumulate_points(ActivitySummary()) == 0

    def test_levels(self):
        assert level_for_points(0) == 1
        assert level_for_points(99) == 1
        assert level_for_points(100) == 2
        with pytest.raises(ValueError):
            level_for_points(-5)

    def test_submission_points_scale_with_tier(self):
        assert submission_points(SubmitterTier.BASIC) == 25
        assert submission_points(SubmitterTier.VERIFIED) == 30
        assert submission_points("PREMIUM") == 37
        assert submission_points(SubmitterTier.ECOSYSTEM_PARTNER) == 75

    def test_completion_rate(self):
        assert completion_rate(0, 0) == 0.0
        assert completion_rate(3, 2) == 66.7


class TestAwardPoints:

    @pytest.mark.asyncio
    async def test_achievement_promotes_basic_user(self):
        achievement = Achievement(
            achievement_type=AchievementType.ADMIN_AWARD,
            title="Early contributor",
            points_awarded=150,
            awarded_at=NOW,
        )
        stored_achievement = {**achievement.model_dump(), "awarded_at": NOW.isoformat()}
        db = _db(
            reputation_after={"user_id": "u1", "total_points": 150, "level": 1, "achievements": [stored_achievement]},
            user={"user_id": "u1", "submitter_tier": "BASIC"},
        )
        service = ReputationService()
        with patch("diligence.services.reputation_service.database.get_db", return_value=db), \
             patch("diligence.services.reputation_service.create_audit_log", new_callable=AsyncMock) as audit, \
             patch("diligence.services.tier_resolver.create_audit_log", new_callable=AsyncMock):
            record = await service.award_points("u1", 150, "admin_award", achievement=achievement, actor_id="admin-1", now=NOW)

        assert record.total_points == 150
        assert record.level == 2
        assert record.achievements[0].title == "Early contributor"

        update = db.user_reputation.find_one_and_update.call_args
        assert update[0][1]["$inc"] == {"total_points": 150}
        assert update[0][1]["$push"]["achievements"]["points_awarded"] == 150
        assert update[1]["upsert"] is True

        user_changes = db.users.update_one.call_args[0][1]["$set"]
        assert user_changes["submitter_tier"] == "VERIFIED"
        assert user_changes["monthly_project_limit"] == 3
        assert user_changes["reputation_points"] == 150

        actions = [c[1]["action"].value for c in audit.call_args_list]
        assert actions == ["TIER_CHANGED", "REPUTATION_AWARDED"]

    @pytest.mark.asyncio
    async def test_points_within_tier_do_not_change_tier(self):
        db = _db(
            reputation_after={"user_id": "u1", "total_points": 40, "level": 1},
            user={"user_id": "u1", "submitter_tier": "BASIC"},
        )
        service = ReputationService()
        with patch("diligence.services.reputation_service.database.get_db", return_value=db), \
             patch("diligence.services.reputation_service.create_audit_log", new_callable=AsyncMock) as audit:
            await service.award_points("u1", 25, "project_submission", now=NOW)

        user_changes = db.users.update_one.call_args[0][1]["$set"]
        assert "submitter_tier" not in user_changes
        assert [c[1]["action"].value for c in audit.call_args_list] == ["REPUTATION_AWARDED"]
        db.user_reputation.update_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_mismatched_achievement_points_rejected(self):
        achievement = Achievement(achievement_type=AchievementType.MILESTONE, title="x", points_awarded=10)
        service = ReputationService()
        with pytest.raises(ValueError):
            await service.award_points("u1", 20, "bad", achievement=achievement)

    @pytest.mark.asyncio
    async def test_negative_points_rejected(self):
        with pytest.raises(ValueError):
            await ReputationService().award_points("u1", -10, "bad")


class TestProfileAndLeaderboard:

    @pytest.mark.asyncio
    async def test_profile_resolves_tier_from_stored_table(self):
        db = _db()
        db.user_reputation.find_one = AsyncMock(return_value={"user_id": "u1", "total_points": 150})
        service = ReputationService()
        with patch("diligence.services.reputation_service.database.get_db", return_value=db), \
             patch("diligence.services.reputation_service.quota_service.get_quota",
                   new_callable=AsyncMock, return_value=None):
            profile = await service.get_profile("u1", now=NOW)

        assert profile.tier.current_tier == SubmitterTier.VERIFIED
        assert profile.tier.next_tier == SubmitterTier.PREMIUM
        assert profile.tier.progress_percent == 13
        assert profile.level == 2

    @pytest.mark.asyncio
    async def test_new_user_profile_is_basic(self):
        db = _db()
        db.user_reputation.find_one = AsyncMock(return_value=None)
        service = ReputationService()
        with patch("diligence.services.reputation_service.database.get_db", return_value=db), \
             patch("diligence.services.reputation_service.quota_service.get_quota",
                   new_callable=AsyncMock, return_value=None):
            profile = await service.get_profile("u1", now=NOW)

        assert profile.total_points == 0
        assert profile.tier.current_tier == SubmitterTier.BASIC
        assert profile.tier.progress_percent == 0

    @pytest.mark.asyncio
    async def test_leaderboard_ranks(self):
        cursor = MagicMock()
        cursor.sort = MagicMock(return_value=cursor)
        cursor.limit = MagicMock(return_value=cursor)
        cursor.to_list = AsyncMock(return_value=[
            {"user_id": "u2", "total_points": 900},
            {"user_id": "u1", "total_points": 150},
        ])
        db = _db()
        db.user_reputation.find = MagicMock(return_value=cursor)
        db.users.find = MagicMock(return_value=AsyncCursor([
            {"user_id": "u1", "name": "Ada", "submitter_tier": "VERIFIED"},
            {"user_id": "u2", "name": "Lin", "submitter_tier": "PREMIUM"},
        ]))
        service = ReputationService()
        with patch("diligence.services.reputation_service.database.get_db", return_value=db):
            board = await service.get_leaderboard(limit=2)

        assert [(e.rank, e.user_id, e.tier, e.level) for e in board] == [
            (1, "u2", "PREMIUM", 10),
            (2, "u1", "VERIFIED", 2),
        ]
        cursor.sort.assert_called_once_with("total_points", -1)


class TestRecalculate:

    @pytest.mark.asyncio
    async def test_recalculate_counts_activity_and_achievements(self):
        db = _db(user={"user_id": "u1", "submitter_tier": "PREMIUM", "total_projects_submitted": 2, "successful_projects": 1})
        db.user_reputation.find_one = AsyncMock(return_value={
            "user_id": "u1",
            "total_points": 900,
            "achievements": [{
                "achievement_type": "TIER_PROMOTION",
                "title": "Expert Verification",
                "points_awarded": 100,
                "awarded_at": NOW.isoformat(),
            }],
        })
        db.evaluations.count_documents = AsyncMock(return_value=1)
        aggregate_cursor = MagicMock()
        aggregate_cursor.to_list = AsyncMock(return_value=[{"_id": None, "avg": 8.0, "count": 2}])
        db.evaluations.aggregate = MagicMock(return_value=aggregate_cursor)

        service = ReputationService()
        with patch("diligence.services.reputation_service.database.get_db", return_value=db), \
             patch("diligence.services.reputation_service.create_audit_log", new_callable=AsyncMock) as audit:
            record = await service.recalculate_reputation("u1", actor_id="admin-1", now=NOW)

        # 2*25 + 1*50 + 1*25 + round(8*2*2) + 100 achievement
        assert record.total_points == 50 + 50 + 25 + 32 + 100
        assert record.completion_rate == 50.0
        user_changes = db.users.update_one.call_args[0][1]["$set"]
        assert user_changes["submitter_tier"] == "VERIFIED"
        actions = [c[1]["action"].value for c in audit.call_args_list]
        assert "REPUTATION_RECALCULATED" in actions
        assert "TIER_CHANGED" in actions
