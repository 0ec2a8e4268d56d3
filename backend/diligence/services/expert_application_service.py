"""Expert application review.

Reviews are admin-driven and move forward only; REQUEST_INFO is the one
action that sends an application back to PENDING. Each transition is a
conditional update on the status the reviewer saw, so two reviewers cannot
both apply an action to the same application.
"""

from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Optional, Any
import logging

from pymongo import ReturnDocument

from database import database
from models import AuditAction, UserRole
from utils.audit import create_audit_log
from diligence.errors import DiligenceError, InvalidStatusTransition, NotFound
from diligence.models.experts import (
    APPROVAL_REPUTATION_POINTS,
    ExpertApplication,
    ExpertTier,
    ReviewAction,
    ReviewResult,
    VerificationStatus,
)
from diligence.models.notifications import NotificationType
from diligence.models.reputation import Achievement, AchievementType
from diligence.services import email_templates
from diligence.services.notification_service import notification_service
from diligence.services.reputation_service import reputation_service

logger = logging.getLogger(__name__)

_REVIEWABLE: FrozenSet[VerificationStatus] = frozenset({
    VerificationStatus.PENDING,
    VerificationStatus.UNDER_REVIEW,
})

# action -> (allowed source statuses, resulting status)
REVIEW_TRANSITIONS: Dict[ReviewAction, tuple] = {
    ReviewAction.START_REVIEW: (frozenset({VerificationStatus.PENDING}), VerificationStatus.UNDER_REVIEW),
    ReviewAction.APPROVE: (_REVIEWABLE, VerificationStatus.VERIFIED),
    ReviewAction.REJECT: (_REVIEWABLE, VerificationStatus.REJECTED),
    ReviewAction.REQUEST_INFO: (_REVIEWABLE, VerificationStatus.PENDING),
    ReviewAction.SUSPEND: (frozenset({VerificationStatus.VERIFIED}), VerificationStatus.SUSPENDED),
}


def next_status(current: VerificationStatus, action: ReviewAction) -> VerificationStatus:
    allowed, target = REVIEW_TRANSITIONS[ReviewAction(action)]
    current = VerificationStatus(current)
    if current not in allowed:
        raise InvalidStatusTransition(
            f"Cannot {action.value} an application that is {current.value}",
            {"current_status": current.value, "action": action.value},
        )
    return target


class ExpertApplicationService:
    def __init__(self):
        self.db = None

    def _get_db(self):
        if self.db is None:
            self.db = database.get_db()
        return self.db

    async def list_applications(
        self,
        status: Optional[VerificationStatus] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        db = self._get_db()
        query = {"verification_status": status.value} if status else {}
        total = await db.expert_applications.count_documents(query)
        docs = await db.expert_applications.find(query, {"_id": 0}).sort(
            "created_at", -1
        ).skip((page - 1) * limit).limit(limit).to_list(length=limit)

        counts = {s.value: 0 for s in VerificationStatus}
        async for row in db.expert_applications.aggregate([
            {"$group": {"_id": "$verification_status", "count": {"$sum": 1}}}
        ]):
            if row["_id"] in counts:
                counts[row["_id"]] = row["count"]

        return {
            "applications": [ExpertApplication.model_validate(d) for d in docs],
            "total": total,
            "page": page,
            "limit": limit,
            "status_counts": counts,
        }

    async def review_application(
        self,
        expert_id: str,
        action: ReviewAction,
        reviewer_id: str,
        reviewer_role: Optional[UserRole] = None,
        review_notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ExpertApplication:
        now = now or datetime.now(timezone.utc)
        db = self._get_db()

        doc = await db.expert_applications.find_one({"expert_id": expert_id}, {"_id": 0})
        if not doc:
            raise NotFound(f"Expert application {expert_id} not found")
        current = VerificationStatus(doc["verification_status"])
        target = next_status(current, action)

        changes: Dict[str, Any] = {
            "verification_status": target.value,
            "reviewed_by": reviewer_id,
            "reviewed_at": now.isoformat(),
            "updated_at": now.isoformat(),
        }
        if review_notes is not None:
            changes["review_notes"] = review_notes
        if action == ReviewAction.APPROVE:
            changes.update({
                "expert_tier": ExpertTier.BRONZE.value,
                "reputation_points": APPROVAL_REPUTATION_POINTS,
                "verified_at": now.isoformat(),
            })

        updated = await db.expert_applications.find_one_and_update(
            {"expert_id": expert_id, "verification_status": current.value},
            {"$set": changes},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise InvalidStatusTransition(
                f"Application {expert_id} changed while it was being reviewed",
                {"expected_status": current.value},
            )
        application = ExpertApplication.model_validate(updated)

        await create_audit_log(
            action=AuditAction.EXPERT_APPLICATION_REVIEWED,
            actor_role=reviewer_role,
            actor_id=reviewer_id,
            user_id=application.user_id,
            resource_type="expert_application",
            resource_id=expert_id,
            before_state={"verification_status": current.value},
            after_state={"verification_status": target.value},
            metadata={"action": action.value, "review_notes": review_notes},
        )
        logger.info(f"Expert application {expert_id}: {current.value} -> {target.value} by {reviewer_id}")

        if action == ReviewAction.APPROVE:
            await reputation_service.award_points(
                application.user_id,
                APPROVAL_REPUTATION_POINTS,
                reason="expert_verification",
                achievement=Achievement(
                    achievement_type=AchievementType.TIER_PROMOTION,
                    title="Expert Verification",
                    description="Approved to join the expert network",
                    points_awarded=APPROVAL_REPUTATION_POINTS,
                    awarded_at=now,
                ),
                actor_id=reviewer_id,
                now=now,
            )

        await self._notify_applicant(application, action, reviewer_id, review_notes or "")
        return application

    async def _notify_applicant(
        self,
        application: ExpertApplication,
        action: ReviewAction,
        reviewer_id: str,
        notes: str,
    ):
        """Email the applicant. A delivery problem never undoes the review."""
        builders = {
            ReviewAction.APPROVE: (NotificationType.EXPERT_APPROVED, lambda n: email_templates.expert_approved_email(n)),
            ReviewAction.REJECT: (NotificationType.EXPERT_REJECTED, lambda n: email_templates.expert_rejected_email(n, notes)),
            ReviewAction.REQUEST_INFO: (NotificationType.EXPERT_INFO_REQUESTED, lambda n: email_templates.expert_info_requested_email(n, notes)),
        }
        if action not in builders:
            return
        notification_type, build = builders[action]
        try:
            user = await self._get_db().users.find_one({"user_id": application.user_id}, {"_id": 0})
            if not user or not user.get("email"):
                logger.warning(f"No email on file for applicant {application.user_id}")
                return
            await notification_service.notify_user(
                user,
                notification_type,
                build(user.get("name") or "there"),
                admin_id=reviewer_id,
                details={"expert_id": application.expert_id},
            )
        except Exception as e:
            logger.error(f"Failed to notify applicant {application.user_id}: {e}")

    async def bulk_review(
        self,
        expert_ids: List[str],
        action: ReviewAction,
        reviewer_id: str,
        reviewer_role: Optional[UserRole] = None,
        review_notes: Optional[str] = None,
    ) -> List[ReviewResult]:
        """Apply one action to many applications; each succeeds or fails on its own."""
        results = []
        for expert_id in dict.fromkeys(expert_ids):
            try:
                application = await self.review_application(
                    expert_id, action, reviewer_id, reviewer_role, review_notes
                )
                results.append(ReviewResult(
                    expert_id=expert_id, success=True, status=application.verification_status
                ))
            except DiligenceError as e:
                results.append(ReviewResult(expert_id=expert_id, success=False, error=e.message))
        return results


expert_application_service = ExpertApplicationService()
