"""Project fee distribution between the platform, evaluating experts and the submitter."""

from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Sequence, Tuple
import math

from diligence.errors import InvalidPricingInput
from diligence.models.experts import ExpertTier
from diligence.models.projects import Evaluation, ExpertPayout, RewardDistribution

PLATFORM_SHARE = Decimal("0.30")
EXPERT_POOL_SHARE = Decimal("0.65")
SUBMITTER_SHARE = Decimal("0.05")

HIGH_SCORE_THRESHOLD = 8.0
HIGH_SCORE_BONUS = Decimal("0.20")
DETAILED_COMMENT_LENGTH = 100
DETAILED_COMMENT_SECTIONS = 4
DETAILED_COMMENTS_BONUS = Decimal("0.15")

TIER_BONUSES = {
    ExpertTier.DIAMOND: Decimal("0.25"),
    ExpertTier.PLATINUM: Decimal("0.25"),
    ExpertTier.GOLD: Decimal("0.15"),
    ExpertTier.SILVER: Decimal("0.05"),
}

EXPERT_POINTS_PER_DOLLAR = 10
SUBMITTER_POINTS_PER_DOLLAR = 20

_CENT = Decimal("0.01")


def _money(value: Decimal) -> float:
    return float(value.quantize(_CENT, rounding=ROUND_HALF_UP))


def quality_multiplier(evaluation: Evaluation, expert_tier: Optional[ExpertTier]) -> Decimal:
    multiplier = Decimal("1.0")
    if evaluation.overall_score >= HIGH_SCORE_THRESHOLD:
        multiplier += HIGH_SCORE_BONUS
    detailed = sum(1 for text in evaluation.comments.values() if text and len(text) > DETAILED_COMMENT_LENGTH)
    if detailed >= DETAILED_COMMENT_SECTIONS:
        multiplier += DETAILED_COMMENTS_BONUS
    if expert_tier is not None:
        multiplier += TIER_BONUSES.get(ExpertTier(expert_tier), Decimal("0"))
    return multiplier


def distribute_rewards(
    project_id: str,
    total_fee: float,
    evaluations: Sequence[Tuple[Evaluation, Optional[ExpertTier]]],
) -> RewardDistribution:
    """Split total_fee: 30% platform, 65% expert pool, 5% submitter bonus.

    The pool is divided evenly and each expert's share is scaled by their
    quality multiplier. The submitter bonus is paid only when the project's
    average score is at least 8.
    """
    if isinstance(total_fee, bool) or not isinstance(total_fee, (int, float)) or not math.isfinite(total_fee) or total_fee <= 0:
        raise InvalidPricingInput(f"total_fee must be a positive number, got {total_fee!r}")
    if not evaluations:
        raise InvalidPricingInput("No evaluations to distribute rewards for")

    fee = Decimal(str(total_fee))
    pool = fee * EXPERT_POOL_SHARE
    base = pool / len(evaluations)

    payouts: List[ExpertPayout] = []
    for evaluation, tier in evaluations:
        multiplier = quality_multiplier(evaluation, tier)
        amount = base * multiplier
        payouts.append(ExpertPayout(
            expert_id=evaluation.expert_id,
            evaluation_id=evaluation.evaluation_id,
            quality_multiplier=float(multiplier),
            amount=_money(amount),
            reputation_points=math.floor(amount * EXPERT_POINTS_PER_DOLLAR),
        ))

    average = sum(e.overall_score for e, _ in evaluations) / len(evaluations)
    bonus = fee * SUBMITTER_SHARE if average >= HIGH_SCORE_THRESHOLD else Decimal("0")

    return RewardDistribution(
        project_id=project_id,
        total_fee=_money(fee),
        platform_fee=_money(fee * PLATFORM_SHARE),
        experts_pool=_money(pool),
        submitter_bonus=_money(bonus),
        submitter_bonus_points=math.floor(bonus * SUBMITTER_POINTS_PER_DOLLAR),
        payouts=payouts,
    )
