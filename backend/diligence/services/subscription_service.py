"""Subscription lifecycle.

Payment handling happens elsewhere; this service only sees whether payment
completed and the amount charged. A user holds at most one ACTIVE/TRIALING
subscription: activating a plan cancels the previous one.
"""

import calendar
import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List
import logging

from database import database
from models import AuditAction
from utils.audit import create_audit_log
from diligence.errors import InvalidPricingInput, NotFound, PaymentNotCompleted
from diligence.models.subscriptions import (
    ActivateSubscriptionRequest,
    BillingCycle,
    PlanDetails,
    PlanType,
    Subscription,
    SubscriptionStatus,
    SUBSCRIPTION_PLANS,
    ACTIVE_SUBSCRIPTION_STATUSES,
)

logger = logging.getLogger(__name__)


def add_months(dt: datetime, months: int) -> datetime:
    """Same day-of-month `months` later, clamped to the month's last day."""
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def period_end_for(start: datetime, cycle: BillingCycle) -> datetime:
    return add_months(start, 12 if cycle == BillingCycle.YEARLY else 1)


def verify_payment(plan: PlanDetails, cycle: BillingCycle, payment_completed: bool, amount) -> int:
    """Check the payment signal against the plan price. Returns the expected price."""
    price = plan.price_for(cycle)
    if isinstance(amount, bool) or not isinstance(amount, (int, float, Decimal)):
        raise InvalidPricingInput(f"Payment amount must be a number, got {amount!r}")
    if isinstance(amount, float) and not math.isfinite(amount):
        raise InvalidPricingInput(f"Payment amount must be finite, got {amount!r}")
    if amount < 0:
        raise InvalidPricingInput(f"Payment amount cannot be negative, got {amount}")
    if price > 0 and not payment_completed:
        raise PaymentNotCompleted(f"Payment for {plan.name} has not completed")
    if Decimal(str(amount)) != Decimal(price):
        raise InvalidPricingInput(
            f"Payment amount {amount} does not match the {plan.name} price of {price}",
            {"expected": price, "received": amount},
        )
    return price


def _serialize(subscription: Subscription) -> dict:
    doc = subscription.model_dump()
    for key in ["current_period_start", "current_period_end", "created_at", "updated_at", "cancelled_at"]:
        if isinstance(doc.get(key), datetime):
            doc[key] = doc[key].isoformat()
    return doc


class SubscriptionService:
    def __init__(self):
        self.db = None

    def _get_db(self):
        if self.db is None:
            self.db = database.get_db()
        return self.db

    async def activate_subscription(
        self,
        user_id: str,
        request: ActivateSubscriptionRequest,
        now: Optional[datetime] = None,
    ) -> Subscription:
        now = now or datetime.now(timezone.utc)
        plan = SUBSCRIPTION_PLANS[request.plan_type]
        verify_payment(plan, request.billing_cycle, request.payment_completed, request.amount)

        db = self._get_db()
        previous = await db.subscriptions.find(
            {"user_id": user_id, "status": {"$in": list(ACTIVE_SUBSCRIPTION_STATUSES)}},
            {"_id": 0, "subscription_id": 1, "plan_type": 1},
        ).to_list(length=None)
        if previous:
            await db.subscriptions.update_many(
                {"subscription_id": {"$in": [p["subscription_id"] for p in previous]}},
                {"$set": {
                    "status": SubscriptionStatus.CANCELLED.value,
                    "cancelled_at": now.isoformat(),
                    "updated_at": now.isoformat(),
                }},
            )
            logger.info(f"Cancelled {len(previous)} previous subscription(s) for {user_id}")

        subscription = Subscription(
            user_id=user_id,
            plan_type=request.plan_type,
            billing_cycle=request.billing_cycle,
            amount=request.amount,
            status=SubscriptionStatus.ACTIVE,
            current_period_start=now,
            current_period_end=period_end_for(now, request.billing_cycle),
            payment_reference=request.payment_reference,
            created_at=now,
            updated_at=now,
        )
        await db.subscriptions.insert_one(_serialize(subscription))

        await create_audit_log(
            action=AuditAction.SUBSCRIPTION_ACTIVATED,
            actor_id=user_id,
            user_id=user_id,
            resource_type="subscription",
            resource_id=subscription.subscription_id,
            metadata={
                "plan_type": request.plan_type.value,
                "billing_cycle": request.billing_cycle.value,
                "amount": request.amount,
                "replaced": [p["subscription_id"] for p in previous],
            },
        )
        logger.info(f"Subscription {subscription.subscription_id} activated for {user_id}: {request.plan_type.value}")
        return subscription

    async def renew_subscription(
        self,
        subscription_id: str,
        payment_completed: bool,
        amount: float,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """Start the next billing period and give back the period's credits."""
        now = now or datetime.now(timezone.utc)
        db = self._get_db()
        doc = await db.subscriptions.find_one({"subscription_id": subscription_id}, {"_id": 0})
        if not doc:
            raise NotFound(f"Subscription {subscription_id} not found")
        subscription = Subscription.model_validate(doc)
        if subscription.status.value not in ACTIVE_SUBSCRIPTION_STATUSES:
            raise NotFound(f"Subscription {subscription_id} is not active")

        plan = SUBSCRIPTION_PLANS[subscription.plan_type]
        verify_payment(plan, subscription.billing_cycle, payment_completed, amount)

        start = subscription.current_period_end or now
        end = period_end_for(start, subscription.billing_cycle)
        await db.subscriptions.update_one(
            {"subscription_id": subscription_id},
            {"$set": {
                "current_period_start": start.isoformat(),
                "current_period_end": end.isoformat(),
                "credits_used": 0,
                "amount": amount,
                "updated_at": now.isoformat(),
            }},
        )
        await create_audit_log(
            action=AuditAction.SUBSCRIPTION_RENEWED,
            user_id=subscription.user_id,
            resource_type="subscription",
            resource_id=subscription_id,
            before_state={"current_period_end": subscription.current_period_end.isoformat() if subscription.current_period_end else None},
            after_state={"current_period_end": end.isoformat()},
        )
        logger.info(f"Subscription {subscription_id} renewed until {end.isoformat()}")
        return subscription.model_copy(update={
            "current_period_start": start,
            "current_period_end": end,
            "credits_used": 0,
            "amount": amount,
            "updated_at": now,
        })

    async def cancel_subscription(
        self,
        user_id: str,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Subscription:
        now = now or datetime.now(timezone.utc)
        db = self._get_db()
        doc = await db.subscriptions.find_one(
            {"user_id": user_id, "status": {"$in": list(ACTIVE_SUBSCRIPTION_STATUSES)}},
            {"_id": 0},
        )
        if not doc:
            raise NotFound("No active subscription to cancel")

        await db.subscriptions.update_one(
            {"subscription_id": doc["subscription_id"]},
            {"$set": {
                "status": SubscriptionStatus.CANCELLED.value,
                "cancelled_at": now.isoformat(),
                "updated_at": now.isoformat(),
            }},
        )
        await create_audit_log(
            action=AuditAction.SUBSCRIPTION_CANCELLED,
            actor_id=actor_id or user_id,
            user_id=user_id,
            resource_type="subscription",
            resource_id=doc["subscription_id"],
            before_state={"status": doc["status"]},
            after_state={"status": SubscriptionStatus.CANCELLED.value},
        )
        logger.info(f"Subscription {doc['subscription_id']} cancelled for {user_id}")
        return Subscription.model_validate({
            **doc,
            "status": SubscriptionStatus.CANCELLED.value,
            "cancelled_at": now,
            "updated_at": now,
        })

    async def expire_lapsed_subscriptions(self, now: Optional[datetime] = None) -> List[str]:
        """Mark ACTIVE subscriptions whose period has ended as EXPIRED."""
        now = now or datetime.now(timezone.utc)
        db = self._get_db()
        lapsed = await db.subscriptions.find(
            {
                "status": SubscriptionStatus.ACTIVE.value,
                "current_period_end": {"$lt": now.isoformat()},
            },
            {"_id": 0, "subscription_id": 1},
        ).to_list(length=None)
        ids = [s["subscription_id"] for s in lapsed]
        if not ids:
            return []

        await db.subscriptions.update_many(
            {"subscription_id": {"$in": ids}, "status": SubscriptionStatus.ACTIVE.value},
            {"$set": {"status": SubscriptionStatus.EXPIRED.value, "updated_at": now.isoformat()}},
        )
        await create_audit_log(
            action=AuditAction.SUBSCRIPTION_EXPIRED,
            resource_type="subscription",
            metadata={"subscription_ids": ids, "count": len(ids)},
        )
        logger.info(f"Expired {len(ids)} lapsed subscriptions")
        return ids


def list_plans() -> List[dict]:
    return [
        {
            **plan.model_dump(),
            "yearly_price": plan.price_for(BillingCycle.YEARLY),
        }
        for plan in (SUBSCRIPTION_PLANS[p] for p in PlanType)
    ]


subscription_service = SubscriptionService()
