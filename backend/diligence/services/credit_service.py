"""Credit Balance Calculator and consultation credit persistence.

Credits are granted per subscription period by the plan. Consumption is a
single conditional update on the subscription, so the balance can never go
below zero even with concurrent bookings. Every consumption is appended to
credit_ledger.
"""

from datetime import datetime, timezone
from typing import Optional, Union, Dict, Any
import logging

from pymongo import ReturnDocument

from database import database
from models import AuditAction
from utils.audit import create_audit_log
from utils.calc import parse_dt
from diligence.errors import InsufficientCredits, InvalidCreditState
from diligence.models.pricing import ConsultationType
from diligence.models.subscriptions import (
    CreditBalance,
    CreditLedgerEntry,
    PlanType,
    Subscription,
    SubscriptionUsage,
    SUBSCRIPTION_PLANS,
    ACTIVE_SUBSCRIPTION_STATUSES,
    UNLIMITED,
)
from diligence.models.bookings import SessionStatus

logger = logging.getLogger(__name__)


def calculate_credit_balance(
    allotment: Union[int, str],
    used_credits: int,
    reset_date: Optional[datetime] = None,
) -> CreditBalance:
    """Derive the balance for a plan allotment ("unlimited" or -1 for no cap)."""
    if isinstance(used_credits, bool) or not isinstance(used_credits, int) or used_credits < 0:
        raise InvalidCreditState(f"Used credits must be a non-negative integer, got {used_credits!r}")

    if allotment == "unlimited" or allotment == UNLIMITED:
        return CreditBalance(
            total_credits=UNLIMITED,
            used_credits=used_credits,
            remaining_credits=UNLIMITED,
            is_unlimited=True,
            reset_date=reset_date,
        )

    if isinstance(allotment, bool) or not isinstance(allotment, int) or allotment < 0:
        raise InvalidCreditState(f"Credit allotment must be a non-negative integer or 'unlimited', got {allotment!r}")
    if used_credits > allotment:
        raise InvalidCreditState(
            f"Used credits ({used_credits}) exceed the allotment ({allotment})",
            {"allotment": allotment, "used_credits": used_credits},
        )

    return CreditBalance(
        total_credits=allotment,
        used_credits=used_credits,
        remaining_credits=allotment - used_credits,
        reset_date=reset_date,
    )


def consume_credit(balance: CreditBalance) -> CreditBalance:
    """Return the balance after using one credit. The input is never modified."""
    if balance.is_unlimited:
        return balance.model_copy(update={"used_credits": balance.used_credits + 1})
    if balance.remaining_credits <= 0:
        raise InsufficientCredits(
            "No consultation credits remaining for this period",
            {"total_credits": balance.total_credits, "used_credits": balance.used_credits},
        )
    return balance.model_copy(update={
        "used_credits": balance.used_credits + 1,
        "remaining_credits": balance.remaining_credits - 1,
    })


def balance_for_subscription(subscription: Subscription) -> CreditBalance:
    plan = SUBSCRIPTION_PLANS[subscription.plan_type]
    used = subscription.credits_used
    if plan.consultation_credits != UNLIMITED and used > plan.consultation_credits:
        # plan was downgraded mid-period
        logger.warning(
            f"Subscription {subscription.subscription_id} used {used} credits on a "
            f"{plan.consultation_credits}-credit plan, clamping"
        )
        used = plan.consultation_credits
    return calculate_credit_balance(plan.consultation_credits, used, subscription.current_period_end)


class CreditService:
    """Consultation credit management service."""

    def __init__(self):
        self.db = None

    def _get_db(self):
        if self.db is None:
            self.db = database.get_db()
        return self.db

    async def get_active_subscription(self, user_id: str) -> Optional[Subscription]:
        db = self._get_db()
        doc = await db.subscriptions.find_one(
            {"user_id": user_id, "status": {"$in": list(ACTIVE_SUBSCRIPTION_STATUSES)}},
            {"_id": 0},
        )
        return Subscription.model_validate(doc) if doc else None

    async def get_credit_balance(self, user_id: str) -> Optional[CreditBalance]:
        """Balance of the active subscription, or None when the user has none."""
        subscription = await self.get_active_subscription(user_id)
        if not subscription:
            return None
        return balance_for_subscription(subscription)

    async def consume_credit(
        self,
        user_id: str,
        reason: str,
        reference_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CreditBalance:
        """Use one credit from the active subscription.

        Raises InsufficientCredits when there is no active subscription or the
        period's credits are exhausted.
        """
        now = now or datetime.now(timezone.utc)
        subscription = await self.get_active_subscription(user_id)
        if not subscription:
            raise InsufficientCredits("No active subscription", {"user_id": user_id})

        plan = SUBSCRIPTION_PLANS[subscription.plan_type]
        consume_credit(balance_for_subscription(subscription))

        query: Dict[str, Any] = {
            "subscription_id": subscription.subscription_id,
            "status": {"$in": list(ACTIVE_SUBSCRIPTION_STATUSES)},
        }
        if plan.consultation_credits != UNLIMITED:
            query["credits_used"] = {"$lt": plan.consultation_credits}

        db = self._get_db()
        updated = await db.subscriptions.find_one_and_update(
            query,
            {"$inc": {"credits_used": 1}, "$set": {"updated_at": now.isoformat()}},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            # lost a race for the last credit
            raise InsufficientCredits(
                "No consultation credits remaining for this period",
                {"subscription_id": subscription.subscription_id},
            )

        balance = balance_for_subscription(Subscription.model_validate(updated))

        entry = CreditLedgerEntry(
            user_id=user_id,
            subscription_id=subscription.subscription_id,
            reason=reason,
            reference_id=reference_id,
            balance_after=balance.remaining_credits,
            created_at=now,
        )
        doc = entry.model_dump()
        doc["created_at"] = doc["created_at"].isoformat()
        await db.credit_ledger.insert_one(doc)

        await create_audit_log(
            action=AuditAction.CREDIT_CONSUMED,
            actor_id=user_id,
            user_id=user_id,
            resource_type="subscription",
            resource_id=subscription.subscription_id,
            metadata={
                "reason": reason,
                "reference_id": reference_id,
                "remaining_credits": balance.remaining_credits,
            },
        )
        logger.info(
            f"Consumed 1 credit for user {user_id}: "
            f"{'unlimited' if balance.is_unlimited else balance.remaining_credits} remaining"
        )
        return balance

    async def can_book_consultation(
        self,
        user_id: str,
        consultation_type: Optional[ConsultationType] = None,
    ) -> Dict[str, Any]:
        """Whether the user can book with a credit, and why not if they cannot."""
        subscription = await self.get_active_subscription(user_id)
        if not subscription:
            return {"can_book": False, "reason": "NO_ACTIVE_SUBSCRIPTION", "credits": None}

        plan = SUBSCRIPTION_PLANS[subscription.plan_type]
        balance = balance_for_subscription(subscription)

        if consultation_type is not None and not plan.allows(consultation_type):
            return {"can_book": False, "reason": "CONSULTATION_TYPE_NOT_IN_PLAN", "credits": balance}
        if not balance.is_unlimited and balance.remaining_credits <= 0:
            return {"can_book": False, "reason": "NO_CREDITS_REMAINING", "credits": balance}
        return {"can_book": True, "reason": None, "credits": balance}

    async def get_usage_report(self, user_id: str) -> SubscriptionUsage:
        """Sessions booked in the current period, split by status."""
        subscription = await self.get_active_subscription(user_id)
        if not subscription:
            return SubscriptionUsage()

        db = self._get_db()
        query: Dict[str, Any] = {"user_id": user_id}
        period_start = parse_dt(subscription.current_period_start)
        if period_start:
            query["created_at"] = {"$gte": period_start.isoformat()}

        sessions = await db.sessions.find(query, {"_id": 0, "status": 1}).to_list(length=None)
        statuses = [s.get("status") for s in sessions]
        pending = {SessionStatus.SCHEDULED.value, SessionStatus.PENDING_PAYMENT.value}

        return SubscriptionUsage(
            subscription=subscription,
            plan=SUBSCRIPTION_PLANS[PlanType(subscription.plan_type)],
            credits=balance_for_subscription(subscription),
            total_sessions=len(statuses),
            completed_sessions=sum(1 for s in statuses if s == SessionStatus.COMPLETED.value),
            pending_sessions=sum(1 for s in statuses if s in pending),
            cancelled_sessions=sum(1 for s in statuses if s == SessionStatus.CANCELLED.value),
        )


credit_service = CreditService()
