"""Diligence Data Models"""

from .tiers import (
    SubmitterTier,
    TierThresholds,
    TierProgression,
    DEFAULT_TIER_THRESHOLDS,
    MAX_TIER,
)
from .quota import QuotaStatus
from .reputation import (
    Achievement,
    AchievementType,
    ActivitySummary,
    ReputationRecord,
)
from .subscriptions import (
    PlanType,
    BillingCycle,
    SubscriptionStatus,
    Subscription,
    CreditBalance,
    SUBSCRIPTION_PLANS,
    UNLIMITED,
)
from .pricing import (
    ConsultationType,
    ReportType,
    ReportPriority,
    PriceQuote,
)
from .notifications import (
    NotificationLog,
    NotificationSummary,
    DashboardNotification,
    DashboardPriority,
)
