"""Pricing Calculator

One formula for every consultation booking and report request:

    price = round_half_up(base_rate x duration_multiplier x priority_multiplier)

Inputs outside the published tables fail with InvalidPricingInput instead of
producing a price.
"""

import math
from decimal import Decimal
from typing import Optional, Union, List, Dict, Any

from utils.calc import round_half_up
from diligence.errors import InvalidPricingInput
from diligence.models.pricing import (
    ConsultationType,
    ReportType,
    ReportPriority,
    PriceQuote,
    CONSULTATION_HOURLY_RATES,
    DURATION_MULTIPLIERS,
    REPORT_BASE_PRICES,
    PRIORITY_MULTIPLIERS,
    ALLOWED_DURATION_MULTIPLIERS,
    ALLOWED_PRIORITY_MULTIPLIERS,
)

Number = Union[int, float, Decimal]


def _check_number(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise InvalidPricingInput(f"{name} must be a number, got {value!r}")
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidPricingInput(f"{name} must be finite, got {value!r}")
    if isinstance(value, Decimal) and not value.is_finite():
        raise InvalidPricingInput(f"{name} must be finite, got {value!r}")


def calculate_price(
    base_rate: Number,
    duration_multiplier: Number,
    priority_multiplier: Optional[Number] = None,
) -> int:
    _check_number("base_rate", base_rate)
    if base_rate <= 0:
        raise InvalidPricingInput(f"base_rate must be positive, got {base_rate}")

    _check_number("duration_multiplier", duration_multiplier)
    if float(duration_multiplier) not in ALLOWED_DURATION_MULTIPLIERS:
        raise InvalidPricingInput(
            f"duration_multiplier must be one of {sorted(ALLOWED_DURATION_MULTIPLIERS)}, got {duration_multiplier}"
        )

    if priority_multiplier is None:
        priority_multiplier = 1.0
    _check_number("priority_multiplier", priority_multiplier)
    if float(priority_multiplier) not in ALLOWED_PRIORITY_MULTIPLIERS:
        raise InvalidPricingInput(
            f"priority_multiplier must be one of {sorted(ALLOWED_PRIORITY_MULTIPLIERS)}, got {priority_multiplier}"
        )

    total = Decimal(str(base_rate)) * Decimal(str(duration_multiplier)) * Decimal(str(priority_multiplier))
    return round_half_up(total)


def duration_multiplier_for(duration_minutes: int) -> float:
    try:
        return DURATION_MULTIPLIERS[duration_minutes]
    except (KeyError, TypeError):
        raise InvalidPricingInput(
            f"Unsupported consultation length {duration_minutes!r}; choose one of {sorted(DURATION_MULTIPLIERS)} minutes"
        )


def quote_consultation(consultation_type: Union[ConsultationType, str], duration_minutes: int) -> PriceQuote:
    """Price a consultation. Priority never applies to consultations."""
    try:
        consultation_type = ConsultationType(consultation_type)
    except ValueError:
        raise InvalidPricingInput(f"Unknown consultation type {consultation_type!r}")

    rate = CONSULTATION_HOURLY_RATES[consultation_type]
    multiplier = duration_multiplier_for(duration_minutes)
    return PriceQuote(
        item_type="consultation",
        item=consultation_type.value,
        base_rate=rate,
        duration_minutes=duration_minutes,
        duration_multiplier=multiplier,
        price=calculate_price(rate, multiplier),
    )


def quote_report(
    report_type: Union[ReportType, str],
    priority: Union[ReportPriority, str] = ReportPriority.LOW,
) -> PriceQuote:
    try:
        report_type = ReportType(report_type)
        priority = ReportPriority(priority)
    except ValueError as e:
        raise InvalidPricingInput(str(e))

    base = REPORT_BASE_PRICES[report_type]
    multiplier = PRIORITY_MULTIPLIERS[priority]
    return PriceQuote(
        item_type="report",
        item=report_type.value,
        base_rate=base,
        priority=priority,
        priority_multiplier=multiplier,
        price=calculate_price(base, 1.0, multiplier),
    )


def consultation_price_table() -> List[Dict[str, Any]]:
    """Every consultation type at every supported length."""
    return [
        {
            "consultation_type": ctype.value,
            "hourly_rate": rate,
            "prices": {
                str(minutes): calculate_price(rate, multiplier)
                for minutes, multiplier in DURATION_MULTIPLIERS.items()
            },
        }
        for ctype, rate in CONSULTATION_HOURLY_RATES.items()
    ]


def report_price_table() -> List[Dict[str, Any]]:
    return [
        {
            "report_type": rtype.value,
            "base_price": base,
            "prices": {
                priority.value: calculate_price(base, 1.0, multiplier)
                for priority, multiplier in PRIORITY_MULTIPLIERS.items()
            },
        }
        for rtype, base in REPORT_BASE_PRICES.items()
    ]
