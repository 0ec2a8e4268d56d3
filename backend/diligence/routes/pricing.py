"""Pricing Routes

Endpoints:
- GET /api/pricing/consultations - Consultation rates at every length
- GET /api/pricing/reports - Report prices at every priority
- POST /api/pricing/quote/consultation - Quote one consultation
- POST /api/pricing/quote/report - Quote one report
"""

from fastapi import APIRouter
import logging

from diligence.errors import DiligenceError, to_http_exception
from diligence.models.pricing import ConsultationQuoteRequest, PriceQuote, ReportQuoteRequest
from diligence.services.pricing_service import (
    consultation_price_table,
    quote_consultation,
    quote_report,
    report_price_table,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/pricing", tags=["Pricing"])


@router.get("/consultations")
async def get_consultation_prices():
    return {"currency": "USD", "consultations": consultation_price_table()}


@router.get("/reports")
async def get_report_prices():
    return {"currency": "USD", "reports": report_price_table()}


@router.post("/quote/consultation", response_model=PriceQuote)
async def post_consultation_quote(body: ConsultationQuoteRequest):
    try:
        return quote_consultation(body.consultation_type, body.duration_minutes)
    except DiligenceError as e:
        raise to_http_exception(e)


@router.post("/quote/report", response_model=PriceQuote)
async def post_report_quote(body: ReportQuoteRequest):
    try:
        return quote_report(body.report_type, body.priority)
    except DiligenceError as e:
        raise to_http_exception(e)
