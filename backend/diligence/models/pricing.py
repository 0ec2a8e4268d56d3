"""Pricing tables for consultations and reports."""

from pydantic import BaseModel
from typing import Optional, Dict
from enum import Enum


class ConsultationType(str, Enum):
    STRATEGIC_ADVISORY = "STRATEGIC_ADVISORY"
    DUE_DILIGENCE = "DUE_DILIGENCE"
    BLOCKCHAIN_INTEGRATION_ADVISORY = "BLOCKCHAIN_INTEGRATION_ADVISORY"
    TOKEN_LAUNCH = "TOKEN_LAUNCH"


class ReportType(str, Enum):
    DUE_DILIGENCE = "DUE_DILIGENCE"
    BLOCKCHAIN_INTEGRATION_ADVISORY = "BLOCKCHAIN_INTEGRATION_ADVISORY"
    MARKET_RESEARCH = "MARKET_RESEARCH"
    ADVISORY_NOTES = "ADVISORY_NOTES"


class ReportPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


CURRENCY = "USD"

# ============================================================================
# Rate tables
# ============================================================================

CONSULTATION_HOURLY_RATES: Dict[ConsultationType, int] = {
    ConsultationType.STRATEGIC_ADVISORY: 300,
    ConsultationType.DUE_DILIGENCE: 400,
    ConsultationType.BLOCKCHAIN_INTEGRATION_ADVISORY: 350,
    ConsultationType.TOKEN_LAUNCH: 450,
}

# duration in minutes -> share of the hourly rate
DURATION_MULTIPLIERS: Dict[int, float] = {
    30: 0.5,
    45: 0.75,
    60: 1.0,
}

REPORT_BASE_PRICES: Dict[ReportType, int] = {
    ReportType.DUE_DILIGENCE: 2500,
    ReportType.BLOCKCHAIN_INTEGRATION_ADVISORY: 2200,
    ReportType.MARKET_RESEARCH: 1200,
    ReportType.ADVISORY_NOTES: 800,
}

PRIORITY_MULTIPLIERS: Dict[ReportPriority, float] = {
    ReportPriority.LOW: 1.0,
    ReportPriority.MEDIUM: 1.2,
    ReportPriority.HIGH: 1.5,
}

ALLOWED_DURATION_MULTIPLIERS = frozenset(DURATION_MULTIPLIERS.values())
ALLOWED_PRIORITY_MULTIPLIERS = frozenset(PRIORITY_MULTIPLIERS.values())


class PriceQuote(BaseModel):
    item_type: str  # "consultation" | "report"
    item: str
    base_rate: int
    duration_minutes: Optional[int] = None
    duration_multiplier: float = 1.0
    priority: Optional[ReportPriority] = None
    priority_multiplier: float = 1.0
    price: int
    currency: str = CURRENCY


class ConsultationQuoteRequest(BaseModel):
    consultation_type: ConsultationType
    duration_minutes: int


class ReportQuoteRequest(BaseModel):
    report_type: ReportType
    priority: ReportPriority = ReportPriority.LOW
