"""Booking Routes

Endpoints:
- POST /api/sessions/book - Book a consultation (uses a credit when available)
- POST /api/reports/request - Request a report
- POST /api/drafts - Sign a booking draft before the user signs in
- POST /api/drafts/redeem - Submit a signed draft after sign-in
"""

from fastapi import APIRouter, HTTPException, Depends
from typing import Union
import logging

from middleware import require_auth
from diligence.errors import DiligenceError, to_http_exception
from diligence.models.bookings import (
    BookingResult,
    ConsultationBookingRequest,
    DraftSubmission,
    DraftToken,
    RedeemDraftRequest,
    ReportRequestCreate,
    ReportRequestResult,
)
from diligence.services.booking_service import booking_service, create_draft_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Bookings"])


@router.post("/sessions/book", response_model=BookingResult)
async def book_consultation(body: ConsultationBookingRequest, user: dict = Depends(require_auth)):
    try:
        return await booking_service.book_consultation(user["user_id"], body)
    except DiligenceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to book consultation: {e}")
        raise HTTPException(status_code=500, detail="Failed to book consultation")


@router.post("/reports/request", response_model=ReportRequestResult)
async def request_report(body: ReportRequestCreate, user: dict = Depends(require_auth)):
    try:
        return await booking_service.request_report(user["user_id"], body)
    except DiligenceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to request report: {e}")
        raise HTTPException(status_code=500, detail="Failed to request report")


@router.post("/drafts", response_model=DraftToken)
async def create_draft(body: DraftSubmission):
    """Quote and sign a draft. No sign-in required; the token comes back after login."""
    try:
        return create_draft_token(body)
    except DiligenceError as e:
        raise to_http_exception(e)


@router.post("/drafts/redeem", response_model=Union[BookingResult, ReportRequestResult])
async def redeem_draft(body: RedeemDraftRequest, user: dict = Depends(require_auth)):
    try:
        return await booking_service.redeem_draft(user["user_id"], body.draft_token)
    except DiligenceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to redeem draft: {e}")
        raise HTTPException(status_code=500, detail="Failed to redeem draft")
