"""Consultation sessions and report requests."""

from pydantic import BaseModel, Field, model_validator
from typing import Optional
from datetime import datetime, timezone
from enum import Enum
import uuid

from diligence.models.pricing import ConsultationType, ReportType, ReportPriority, PriceQuote
from diligence.models.subscriptions import CreditBalance


class SessionStatus(str, Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ReportStatus(str, Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    REQUESTED = "REQUESTED"
    IN_PROGRESS = "IN_PROGRESS"
    IN_REVIEW = "IN_REVIEW"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ConsultationSession(BaseModel):
    session_id: str = Field(default_factory=lambda: f"SES-{uuid.uuid4().hex[:12].upper()}")
    user_id: str
    consultation_type: ConsultationType
    duration_minutes: int
    scheduled_at: datetime
    status: SessionStatus = SessionStatus.SCHEDULED
    price: int
    payment_required: bool = False
    paid_with_credit: bool = False
    subscription_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore"}


class ReportRequest(BaseModel):
    report_id: str = Field(default_factory=lambda: f"RPT-{uuid.uuid4().hex[:12].upper()}")
    user_id: str
    report_type: ReportType
    priority: ReportPriority = ReportPriority.LOW
    title: str
    description: str = ""
    status: ReportStatus = ReportStatus.PENDING_PAYMENT
    price: int
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore"}


class ConsultationBookingRequest(BaseModel):
    """Everything needed to book a consultation, carried as one value."""
    consultation_type: ConsultationType
    duration_minutes: int
    scheduled_at: datetime
    notes: Optional[str] = None


class ReportRequestCreate(BaseModel):
    report_type: ReportType
    priority: ReportPriority = ReportPriority.LOW
    title: str = Field(min_length=1, max_length=200)
    description: str = ""


class BookingResult(BaseModel):
    session: ConsultationSession
    quote: PriceQuote
    payment_required: bool
    credits: Optional[CreditBalance] = None


class ReportRequestResult(BaseModel):
    report: ReportRequest
    quote: PriceQuote


class DraftKind(str, Enum):
    CONSULTATION = "consultation"
    REPORT = "report"


class DraftSubmission(BaseModel):
    """A booking filled in before sign-in, carried through the login redirect as a signed token."""
    kind: DraftKind
    consultation: Optional[ConsultationBookingRequest] = None
    report: Optional[ReportRequestCreate] = None

    @model_validator(mode="after")
    def _payload_matches_kind(self):
        if self.kind == DraftKind.CONSULTATION and self.consultation is None:
            raise ValueError("consultation draft requires consultation details")
        if self.kind == DraftKind.REPORT and self.report is None:
            raise ValueError("report draft requires report details")
        return self


class DraftToken(BaseModel):
    draft_token: str
    expires_at: datetime
    quote: PriceQuote


class RedeemDraftRequest(BaseModel):
    draft_token: str
