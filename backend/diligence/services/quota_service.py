"""Monthly Quota Tracker

Tracks the monthly project submission allowance of a submitter tier.

- compute_quota: pure snapshot of used / remaining / percent / reset date
- needs_monthly_reset: calendar-month rollover check
- QuotaService: reads user counters, resets them on a new month and
  claims a submission slot with a conditional update
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Union
import logging

from pymongo import ReturnDocument

from database import database
from models import AuditAction
from utils.audit import create_audit_log
from utils.calc import round_half_up, first_of_next_month, parse_dt
from diligence.errors import InvalidQuotaState, MonthlyQuotaExceeded, NotFound
from diligence.models.quota import QuotaStatus
from diligence.models.tiers import SubmitterTier, TIER_MONTHLY_PROJECT_LIMITS

logger = logging.getLogger(__name__)

UNLIMITED = "unlimited"


def _normalize_limit(limit: Union[int, str]) -> Optional[int]:
    """Return the numeric limit, or None for unlimited."""
    if limit == UNLIMITED or limit == -1:
        return None
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise InvalidQuotaState(f"Quota limit must be a positive integer or '{UNLIMITED}', got {limit!r}")
    if limit <= 0:
        raise InvalidQuotaState(f"Quota limit must be positive, got {limit}")
    return limit


def compute_quota(used: int, limit: Union[int, str], now: datetime) -> QuotaStatus:
    """Compute the quota snapshot for `used` submissions against `limit` at `now`."""
    if isinstance(used, bool) or not isinstance(used, int):
        raise InvalidQuotaState(f"Quota usage must be an integer, got {used!r}")
    if used < 0:
        raise InvalidQuotaState(f"Quota usage cannot be negative, got {used}")

    numeric_limit = _normalize_limit(limit)
    reset_date = first_of_next_month(now)

    if numeric_limit is None:
        return QuotaStatus(
            used=used,
            limit=UNLIMITED,
            remaining=-1,
            percent_used=0,
            is_unlimited=True,
            reset_date=reset_date,
        )

    percent = min(100, round_half_up(Decimal(100 * used) / Decimal(numeric_limit)))
    return QuotaStatus(
        used=used,
        limit=numeric_limit,
        remaining=max(0, numeric_limit - used),
        percent_used=percent,
        reset_date=reset_date,
    )


def needs_monthly_reset(last_reset_date: Optional[datetime], now: datetime) -> bool:
    if last_reset_date is None:
        return True
    last = last_reset_date.astimezone(timezone.utc)
    current = now.astimezone(timezone.utc)
    return (last.year, last.month) != (current.year, current.month)


def monthly_limit_for_tier(tier: SubmitterTier) -> int:
    return TIER_MONTHLY_PROJECT_LIMITS[SubmitterTier(tier)]


class QuotaService:
    """Monthly project quota persistence."""

    def __init__(self):
        self.db = None

    def _get_db(self):
        if self.db is None:
            self.db = database.get_db()
        return self.db

    async def _load_user(self, user_id: str) -> dict:
        db = self._get_db()
        user = await db.users.find_one({"user_id": user_id}, {"_id": 0})
        if not user:
            raise NotFound(f"User {user_id} not found")
        return user

    async def ensure_monthly_reset(self, user: dict, now: datetime) -> dict:
        """Zero the monthly counter when `now` is in a new calendar month."""
        if not needs_monthly_reset(parse_dt(user.get("last_reset_date")), now):
            return user

        db = self._get_db()
        await db.users.update_one(
            {"user_id": user["user_id"]},
            {"$set": {
                "monthly_projects_used": 0,
                "last_reset_date": now.isoformat(),
                "updated_at": now.isoformat(),
            }},
        )
        logger.info(f"Monthly project quota reset for user {user['user_id']}")
        await create_audit_log(
            action=AuditAction.MONTHLY_QUOTA_RESET,
            user_id=user["user_id"],
            resource_type="user",
            resource_id=user["user_id"],
            metadata={"previous_used": user.get("monthly_projects_used", 0)},
        )
        return {**user, "monthly_projects_used": 0, "last_reset_date": now.isoformat()}

    def _limit_for(self, user: dict) -> int:
        tier = user.get("submitter_tier") or SubmitterTier.BASIC.value
        return user.get("monthly_project_limit") or monthly_limit_for_tier(tier)

    async def get_quota(self, user_id: str, now: Optional[datetime] = None) -> QuotaStatus:
        now = now or datetime.now(timezone.utc)
        user = await self.ensure_monthly_reset(await self._load_user(user_id), now)
        status = compute_quota(user.get("monthly_projects_used", 0), self._limit_for(user), now)
        return status.model_copy(update={"tier": user.get("submitter_tier", SubmitterTier.BASIC.value)})

    async def claim_submission_slot(self, user_id: str, now: Optional[datetime] = None) -> dict:
        """Count one project submission against the monthly quota.

        The limit is part of the update filter, so two concurrent submissions
        cannot both take the last slot. Returns the updated user document.
        """
        now = now or datetime.now(timezone.utc)
        user = await self.ensure_monthly_reset(await self._load_user(user_id), now)
        limit = self._limit_for(user)
        numeric_limit = _normalize_limit(limit)

        query = {"user_id": user_id}
        if numeric_limit is not None:
            query["monthly_projects_used"] = {"$lt": numeric_limit}

        db = self._get_db()
        updated = await db.users.find_one_and_update(
            query,
            {
                "$inc": {"monthly_projects_used": 1, "total_projects_submitted": 1},
                "$set": {"updated_at": now.isoformat()},
            },
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            quota = compute_quota(user.get("monthly_projects_used", 0), limit, now)
            raise MonthlyQuotaExceeded(
                f"Monthly project limit of {limit} reached",
                {"limit": limit, "used": quota.used, "reset_date": quota.reset_date.isoformat()},
            )
        logger.info(
            f"Project slot claimed for {user_id}: {updated.get('monthly_projects_used')}/{limit} this month"
        )
        return updated


quota_service = QuotaService()
