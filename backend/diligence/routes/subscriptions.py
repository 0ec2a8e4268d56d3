"""Subscription Routes

Endpoints:
- GET /api/subscription-plans - Available plans with monthly and yearly prices
- GET /api/subscriptions/current - Active subscription and credit balance
- GET /api/subscriptions/usage - Sessions and credits used this period
- GET /api/subscriptions/can-book - Whether a credit can pay for a consultation
- POST /api/subscriptions/activate - Activate a plan after payment
- POST /api/subscriptions/renew - Start the next billing period after payment
- POST /api/subscriptions/cancel - Cancel the active subscription
"""

from fastapi import APIRouter, HTTPException, Depends, Query
from typing import Optional
from pydantic import BaseModel
import logging

from middleware import require_auth
from diligence.errors import DiligenceError, NotFound, to_http_exception
from diligence.models.pricing import ConsultationType
from diligence.models.subscriptions import (
    ActivateSubscriptionRequest,
    Subscription,
    SubscriptionUsage,
)
from diligence.services.credit_service import credit_service
from diligence.services.subscription_service import list_plans, subscription_service

logger = logging.getLogger(__name__)

plans_router = APIRouter(prefix="/api/subscription-plans", tags=["Subscriptions"])
router = APIRouter(prefix="/api/subscriptions", tags=["Subscriptions"])


class RenewRequest(BaseModel):
    payment_completed: bool = False
    amount: float = 0


@plans_router.get("")
async def get_plans():
    return {"plans": list_plans()}


@router.get("/current")
async def get_current_subscription(user: dict = Depends(require_auth)):
    try:
        subscription = await credit_service.get_active_subscription(user["user_id"])
        credits = await credit_service.get_credit_balance(user["user_id"])
        return {"subscription": subscription, "credits": credits}
    except DiligenceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to get subscription: {e}")
        raise HTTPException(status_code=500, detail="Failed to get subscription")


@router.get("/usage", response_model=SubscriptionUsage)
async def get_usage(user: dict = Depends(require_auth)):
    try:
        return await credit_service.get_usage_report(user["user_id"])
    except DiligenceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to get subscription usage: {e}")
        raise HTTPException(status_code=500, detail="Failed to get subscription usage")


@router.get("/can-book")
async def can_book(
    consultation_type: Optional[ConsultationType] = Query(None),
    user: dict = Depends(require_auth),
):
    try:
        return await credit_service.can_book_consultation(user["user_id"], consultation_type)
    except DiligenceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to check booking eligibility: {e}")
        raise HTTPException(status_code=500, detail="Failed to check booking eligibility")


@router.post("/activate", response_model=Subscription)
async def activate(body: ActivateSubscriptionRequest, user: dict = Depends(require_auth)):
    """Activate a plan. Paid plans need payment_completed and the exact plan price."""
    try:
        return await subscription_service.activate_subscription(user["user_id"], body)
    except DiligenceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to activate subscription: {e}")
        raise HTTPException(status_code=500, detail="Failed to activate subscription")


@router.post("/renew", response_model=Subscription)
async def renew(body: RenewRequest, user: dict = Depends(require_auth)):
    try:
        subscription = await credit_service.get_active_subscription(user["user_id"])
        if not subscription:
            raise NotFound("No active subscription to renew")
        return await subscription_service.renew_subscription(
            subscription.subscription_id, body.payment_completed, body.amount
        )
    except DiligenceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to renew subscription: {e}")
        raise HTTPException(status_code=500, detail="Failed to renew subscription")


@router.post("/cancel", response_model=Subscription)
async def cancel(user: dict = Depends(require_auth)):
    try:
        return await subscription_service.cancel_subscription(user["user_id"])
    except DiligenceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to cancel subscription: {e}")
        raise HTTPException(status_code=500, detail="Failed to cancel subscription")
