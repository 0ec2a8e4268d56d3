"""Error taxonomy for the entitlement and reputation ledger.

Every error carries an error_code and the HTTP status routes translate it to.
"""

from typing import Optional, Dict, Any

from fastapi import HTTPException


class DiligenceError(Exception):
    """Base class for domain errors."""

    error_code = "DILIGENCE_ERROR"
    http_status = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_detail(self) -> Dict[str, Any]:
        detail = {"error_code": self.error_code, "message": self.message}
        if self.details:
            detail["details"] = self.details
        return detail


class InvalidQuotaState(DiligenceError):
    """Quota inputs are impossible (negative usage, non-positive limit)."""

    error_code = "INVALID_QUOTA_STATE"
    http_status = 422


class MonthlyQuotaExceeded(DiligenceError):
    error_code = "MONTHLY_QUOTA_EXCEEDED"
    http_status = 429


class InvalidCreditState(DiligenceError):
    error_code = "INVALID_CREDIT_STATE"
    http_status = 422


class InsufficientCredits(DiligenceError):
    """No consultation credits left in the current period."""

    error_code = "INSUFFICIENT_CREDITS"
    http_status = 402


class InvalidPricingInput(DiligenceError):
    error_code = "INVALID_PRICING_INPUT"
    http_status = 400


class SourceUnavailable(DiligenceError):
    """A data source could not be read (error or timeout)."""

    error_code = "SOURCE_UNAVAILABLE"
    http_status = 503

    def __init__(self, source: str, reason: str = ""):
        super().__init__(
            f"Source '{source}' unavailable" + (f": {reason}" if reason else ""),
            {"source": source},
        )
        self.source = source


class InvalidStatusTransition(DiligenceError):
    error_code = "INVALID_STATUS_TRANSITION"
    http_status = 409


class AssignmentRejected(DiligenceError):
    error_code = "ASSIGNMENT_REJECTED"
    http_status = 400


class PaymentNotCompleted(DiligenceError):
    error_code = "PAYMENT_NOT_COMPLETED"
    http_status = 402


class NotFound(DiligenceError):
    error_code = "NOT_FOUND"
    http_status = 404


class InvalidBookingRequest(DiligenceError):
    error_code = "INVALID_BOOKING_REQUEST"
    http_status = 400


def to_http_exception(error: DiligenceError) -> HTTPException:
    """Translate a domain error into the HTTP response routes return."""
    return HTTPException(status_code=error.http_status, detail=error.to_detail())
