"""Consultation bookings and report requests.

Every price comes from the pricing calculator. A subscriber with a credit
left books with that credit; everyone else gets a session awaiting payment.
"""

from datetime import datetime, timezone, timedelta
from typing import Optional, Tuple, Union
import uuid
import logging

from pydantic import ValidationError
from pymongo import ReturnDocument

from auth import create_access_token, decode_access_token
from database import database
from models import AuditAction
from utils.audit import create_audit_log
from diligence.errors import DiligenceError, InsufficientCredits, InvalidBookingRequest
from diligence.models.bookings import (
    BookingResult,
    ConsultationBookingRequest,
    ConsultationSession,
    DraftKind,
    DraftSubmission,
    DraftToken,
    ReportRequest,
    ReportRequestCreate,
    ReportRequestResult,
    ReportStatus,
    SessionStatus,
)
from diligence.models.pricing import PriceQuote
from diligence.services.credit_service import credit_service
from diligence.services.pricing_service import quote_consultation, quote_report
from utils.calc import parse_dt

logger = logging.getLogger(__name__)

DRAFT_TOKEN_TTL = timedelta(hours=1)
DRAFT_TOKEN_TYPE = "booking_draft"


def _dump(model) -> dict:
    doc = model.model_dump()
    for key, value in doc.items():
        if isinstance(value, datetime):
            doc[key] = value.isoformat()
    return doc


def quote_draft(draft: DraftSubmission) -> PriceQuote:
    if draft.kind == DraftKind.CONSULTATION:
        return quote_consultation(draft.consultation.consultation_type, draft.consultation.duration_minutes)
    return quote_report(draft.report.report_type, draft.report.priority)


def create_draft_token(draft: DraftSubmission, now: Optional[datetime] = None) -> DraftToken:
    """Sign a draft so it can travel through the sign-in redirect without server storage."""
    now = now or datetime.now(timezone.utc)
    quote = quote_draft(draft)
    token = create_access_token(
        {"typ": DRAFT_TOKEN_TYPE, "jti": str(uuid.uuid4()), "draft": draft.model_dump(mode="json")},
        expires_delta=DRAFT_TOKEN_TTL,
    )
    return DraftToken(draft_token=token, expires_at=now + DRAFT_TOKEN_TTL, quote=quote)


def read_draft_token(token: str) -> Tuple[str, DraftSubmission]:
    """Returns (draft id, draft)."""
    payload = decode_access_token(token)
    if not payload or payload.get("typ") != DRAFT_TOKEN_TYPE or not payload.get("jti"):
        raise InvalidBookingRequest("Draft token is invalid or has expired")
    try:
        return payload["jti"], DraftSubmission.model_validate(payload.get("draft"))
    except ValidationError as e:
        raise InvalidBookingRequest(f"Draft token payload is malformed: {e.error_count()} errors")


class BookingService:
    def __init__(self):
        self.db = None

    def _get_db(self):
        if self.db is None:
            self.db = database.get_db()
        return self.db

    async def book_consultation(
        self,
        user_id: str,
        request: ConsultationBookingRequest,
        now: Optional[datetime] = None,
    ) -> BookingResult:
        now = now or datetime.now(timezone.utc)
        scheduled_at = parse_dt(request.scheduled_at)
        if scheduled_at is None or scheduled_at <= now:
            raise InvalidBookingRequest("Consultations must be scheduled in the future")

        quote = quote_consultation(request.consultation_type, request.duration_minutes)
        session = ConsultationSession(
            user_id=user_id,
            consultation_type=request.consultation_type,
            duration_minutes=request.duration_minutes,
            scheduled_at=scheduled_at,
            price=quote.price,
            status=SessionStatus.PENDING_PAYMENT,
            payment_required=True,
            notes=request.notes,
            created_at=now,
            updated_at=now,
        )

        # The session exists before any credit is spent against it.
        db = self._get_db()
        await db.sessions.insert_one(_dump(session))

        credits = None
        check = await credit_service.can_book_consultation(user_id, request.consultation_type)
        if check["can_book"]:
            try:
                credits = await credit_service.consume_credit(
                    user_id, reason="consultation_booking", reference_id=session.session_id, now=now
                )
            except InsufficientCredits:
                logger.info(f"Credit for {user_id} was taken concurrently; booking requires payment")

        if credits is not None:
            subscription = await credit_service.get_active_subscription(user_id)
            paid = {
                "status": SessionStatus.SCHEDULED.value,
                "paid_with_credit": True,
                "payment_required": False,
                "subscription_id": subscription.subscription_id if subscription else None,
            }
            await db.sessions.update_one(
                {"session_id": session.session_id},
                {"$set": {**paid, "updated_at": now.isoformat()}},
            )
            session = session.model_copy(update={**paid, "status": SessionStatus.SCHEDULED})

        await create_audit_log(
            action=AuditAction.CONSULTATION_BOOKED,
            actor_id=user_id,
            user_id=user_id,
            resource_type="session",
            resource_id=session.session_id,
            metadata={
                "consultation_type": request.consultation_type.value,
                "duration_minutes": request.duration_minutes,
                "price": quote.price,
                "paid_with_credit": session.paid_with_credit,
                "reason": check.get("reason"),
            },
        )
        logger.info(
            f"Consultation {session.session_id} booked for {user_id}: "
            f"{'credit' if session.paid_with_credit else f'payment of {quote.price} required'}"
        )
        return BookingResult(
            session=session,
            quote=quote,
            payment_required=session.payment_required,
            credits=credits,
        )

    async def request_report(
        self,
        user_id: str,
        request: ReportRequestCreate,
        now: Optional[datetime] = None,
    ) -> ReportRequestResult:
        now = now or datetime.now(timezone.utc)
        quote = quote_report(request.report_type, request.priority)
        report = ReportRequest(
            user_id=user_id,
            report_type=request.report_type,
            priority=request.priority,
            title=request.title,
            description=request.description,
            status=ReportStatus.PENDING_PAYMENT,
            price=quote.price,
            created_at=now,
            updated_at=now,
        )
        await self._get_db().reports.insert_one(_dump(report))
        await create_audit_log(
            action=AuditAction.REPORT_REQUESTED,
            actor_id=user_id,
            user_id=user_id,
            resource_type="report",
            resource_id=report.report_id,
            metadata={
                "report_type": request.report_type.value,
                "priority": request.priority.value,
                "price": quote.price,
            },
        )
        logger.info(f"Report {report.report_id} requested by {user_id}: {quote.price}")
        return ReportRequestResult(report=report, quote=quote)

    async def redeem_draft(
        self,
        user_id: str,
        token: str,
        now: Optional[datetime] = None,
    ) -> Union[BookingResult, ReportRequestResult]:
        """Book or request what a signed draft describes. Each draft is redeemed once."""
        now = now or datetime.now(timezone.utc)
        draft_id, draft = read_draft_token(token)

        db = self._get_db()
        existing = await db.redeemed_drafts.find_one_and_update(
            {"draft_id": draft_id},
            {"$setOnInsert": {
                "draft_id": draft_id,
                "user_id": user_id,
                "kind": draft.kind.value,
                "redeemed_at": now.isoformat(),
            }},
            upsert=True,
            return_document=ReturnDocument.BEFORE,
        )
        if existing:
            logger.warning(f"Draft {draft_id} already redeemed by {existing.get('user_id')}; rejected for {user_id}")
            raise InvalidBookingRequest("Draft token has already been redeemed")

        try:
            if draft.kind == DraftKind.CONSULTATION:
                return await self.book_consultation(user_id, draft.consultation, now)
            return await self.request_report(user_id, draft.report, now)
        except DiligenceError:
            # Rejected before anything was written; the draft stays redeemable.
            await db.redeemed_drafts.delete_one({"draft_id": draft_id})
            raise


booking_service = BookingService()
