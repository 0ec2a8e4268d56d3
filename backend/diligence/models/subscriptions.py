"""Subscription plans, subscriptions and derived credit balances.

A plan grants consultation credits per billing period. -1 means unlimited.
Payment is consumed only as a completed flag plus the amount charged.
"""

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Dict
from datetime import datetime, timezone
from enum import Enum
import uuid

from diligence.models.pricing import ConsultationType

UNLIMITED = -1


class PlanType(str, Enum):
    BASIC_FREE = "BASIC_FREE"
    BASIC_MONTHLY = "BASIC_MONTHLY"
    PROFESSIONAL_MONTHLY = "PROFESSIONAL_MONTHLY"
    ENTERPRISE_MONTHLY = "ENTERPRISE_MONTHLY"


class BillingCycle(str, Enum):
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class SubscriptionStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    TRIALING = "TRIALING"
    PAST_DUE = "PAST_DUE"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


ACTIVE_SUBSCRIPTION_STATUSES = frozenset({
    SubscriptionStatus.ACTIVE.value,
    SubscriptionStatus.TRIALING.value,
})


class PlanDetails(BaseModel):
    """Plan details for display and entitlement checks"""
    plan_type: PlanType
    name: str
    description: str
    monthly_price: int
    yearly_price: Optional[int] = None
    consultation_credits: int  # -1 = unlimited
    allowed_consultation_types: Optional[List[ConsultationType]] = None  # None = all
    features: List[str] = Field(default_factory=list)
    popular: bool = False

    def price_for(self, cycle: "BillingCycle") -> int:
        if cycle == BillingCycle.YEARLY:
            return self.yearly_price if self.yearly_price is not None else self.monthly_price * 12
        return self.monthly_price

    def allows(self, consultation_type: ConsultationType) -> bool:
        if self.allowed_consultation_types is None:
            return True
        return consultation_type in self.allowed_consultation_types


# ============================================================================
# Plan Configuration
# ============================================================================

SUBSCRIPTION_PLANS: Dict[PlanType, PlanDetails] = {
    PlanType.BASIC_FREE: PlanDetails(
        plan_type=PlanType.BASIC_FREE,
        name="Basic",
        description="One strategic advisory call to get started",
        monthly_price=0,
        consultation_credits=1,
        allowed_consultation_types=[ConsultationType.STRATEGIC_ADVISORY],
        features=[
            "1 strategic advisory consultation",
            "Project submission",
            "Community reputation",
        ],
    ),
    PlanType.BASIC_MONTHLY: PlanDetails(
        plan_type=PlanType.BASIC_MONTHLY,
        name="Premium",
        description="Regular access to advisors",
        monthly_price=299,
        consultation_credits=3,
        features=[
            "3 consultations per month",
            "All consultation types",
            "Priority email support",
        ],
    ),
    PlanType.PROFESSIONAL_MONTHLY: PlanDetails(
        plan_type=PlanType.PROFESSIONAL_MONTHLY,
        name="Professional",
        description="For teams shipping on-chain products",
        monthly_price=499,
        consultation_credits=6,
        features=[
            "6 consultations per month",
            "All consultation types",
            "Dedicated advisor",
        ],
        popular=True,
    ),
    PlanType.ENTERPRISE_MONTHLY: PlanDetails(
        plan_type=PlanType.ENTERPRISE_MONTHLY,
        name="Enterprise",
        description="Unlimited advisory for organisations",
        monthly_price=999,
        consultation_credits=UNLIMITED,
        features=[
            "Unlimited consultations",
            "All consultation types",
            "Custom reporting",
        ],
    ),
}


class Subscription(BaseModel):
    """User subscription record"""
    subscription_id: str = Field(default_factory=lambda: f"SUB-{uuid.uuid4().hex[:12].upper()}")
    user_id: str
    plan_type: PlanType
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    amount: float = 0
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE

    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    credits_used: int = 0
    payment_reference: Optional[str] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    cancelled_at: Optional[datetime] = None

    model_config = {"extra": "ignore"}


class CreditBalance(BaseModel):
    """Derived credit balance. Frozen so a failed consume leaves it untouched."""
    model_config = ConfigDict(frozen=True)

    total_credits: int  # -1 = unlimited
    used_credits: int
    remaining_credits: int  # -1 = unlimited
    is_unlimited: bool = False
    reset_date: Optional[datetime] = None


class CreditLedgerEntry(BaseModel):
    entry_id: str = Field(default_factory=lambda: f"CRL-{uuid.uuid4().hex[:12].upper()}")
    user_id: str
    subscription_id: str
    credits: int = 1
    reason: str
    reference_id: Optional[str] = None
    balance_after: int  # -1 = unlimited
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ActivateSubscriptionRequest(BaseModel):
    plan_type: PlanType
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    payment_completed: bool = False
    amount: float = 0
    payment_reference: Optional[str] = None


class SubscriptionUsage(BaseModel):
    subscription: Optional[Subscription] = None
    plan: Optional[PlanDetails] = None
    credits: Optional[CreditBalance] = None
    total_sessions: int = 0
    completed_sessions: int = 0
    pending_sessions: int = 0
    cancelled_sessions: int = 0
