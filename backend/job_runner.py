"""
Shared job runner for scheduled background jobs.
Used by server (scheduler) and admin (manual run).
Each run_* returns a dict with "message" (and optionally "count") for admin toast.
"""
import logging

logger = logging.getLogger(__name__)


async def run_subscription_expiry_notifications():
    try:
        from diligence.services.notification_service import notification_service
        result = await notification_service.check_subscription_expirations()
        count = result.notifications_sent
        logger.info(
            f"Subscription expiry job completed: {count} reminders sent, "
            f"{result.skipped_duplicates} duplicates skipped, {result.failed} failed"
        )
        return {"message": f"Subscription expiry reminders sent: {count}", "count": count}
    except Exception as e:
        logger.error(f"Subscription expiry job failed: {e}")
        raise


async def run_expire_lapsed_subscriptions():
    try:
        from diligence.services.subscription_service import subscription_service
        expired = await subscription_service.expire_lapsed_subscriptions()
        count = len(expired)
        logger.info(f"Lapsed subscription job completed: {count} subscriptions expired")
        return {"message": f"Subscriptions expired: {count}", "count": count}
    except Exception as e:
        logger.error(f"Lapsed subscription job failed: {e}")
        raise
