"""Project submission, expert assignment and evaluation.

Assignment rules:
- the expert must be VERIFIED and not already on the project
- the project must be open for assignment and hold fewer than 3 assignments
- the expert's open workload must be under their tier's limit

The per-project cap is enforced by a conditional $inc on assignment_count.
"""

from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
import logging

from pymongo import ReturnDocument

from database import database
from models import AuditAction
from utils.audit import create_audit_log
from diligence.errors import (
    AssignmentRejected,
    InvalidStatusTransition,
    NotFound,
)
from diligence.models.experts import (
    EXPERT_WORKLOAD_LIMITS,
    ExpertTier,
    VerificationStatus,
)
from diligence.models.projects import (
    ASSIGNABLE_PROJECT_STATUSES,
    ASSIGNMENT_POINTS,
    MAX_ASSIGNMENTS_PER_PROJECT,
    OPEN_ASSIGNMENT_STATUSES,
    AssignProjectRequest,
    AssignmentStatus,
    Evaluation,
    EvaluationCreate,
    Project,
    ProjectAssignment,
    ProjectCreate,
    ProjectStatus,
    RewardDistribution,
)
from diligence.models.tiers import SubmitterTier
from diligence.services.quota_service import quota_service
from diligence.services.reputation_service import (
    POINTS_PER_EVALUATION,
    reputation_service,
    submission_points,
)
from diligence.services.rewards import distribute_rewards

logger = logging.getLogger(__name__)

# Average evaluation score at which a project counts as successful
SUCCESSFUL_PROJECT_SCORE = 7.0


def _dump(model) -> dict:
    doc = model.model_dump()
    for key, value in doc.items():
        if isinstance(value, datetime):
            doc[key] = value.isoformat()
    return doc


class ProjectService:
    def __init__(self):
        self.db = None

    def _get_db(self):
        if self.db is None:
            self.db = database.get_db()
        return self.db

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit_project(
        self,
        user_id: str,
        payload: ProjectCreate,
        now: Optional[datetime] = None,
    ) -> Project:
        """Count the submission against the monthly quota and score it for the submitter."""
        now = now or datetime.now(timezone.utc)
        user = await quota_service.claim_submission_slot(user_id, now)

        tier = SubmitterTier(user.get("submitter_tier") or SubmitterTier.BASIC.value)
        points = submission_points(tier)
        project = Project(
            submitter_id=user_id,
            points_awarded=points,
            created_at=now,
            updated_at=now,
            **payload.model_dump(),
        )

        db = self._get_db()
        await db.projects.insert_one(_dump(project))
        await db.user_reputation.update_one(
            {"user_id": user_id},
            {"$inc": {"projects_submitted": 1}},
            upsert=True,
        )
        await reputation_service.award_points(user_id, points, reason="project_submission", actor_id=user_id, now=now)

        await create_audit_log(
            action=AuditAction.PROJECT_SUBMITTED,
            actor_id=user_id,
            user_id=user_id,
            resource_type="project",
            resource_id=project.project_id,
            metadata={"tier": tier.value, "points": points},
        )
        logger.info(f"Project {project.project_id} submitted by {user_id} ({tier.value}, +{points} points)")
        return project

    async def open_for_assignment(self, project_id: str, admin_id: str, now: Optional[datetime] = None) -> Project:
        now = now or datetime.now(timezone.utc)
        db = self._get_db()
        updated = await db.projects.find_one_and_update(
            {"project_id": project_id, "status": ProjectStatus.SUBMITTED.value},
            {"$set": {"status": ProjectStatus.EXPERT_ASSIGNMENT.value, "updated_at": now.isoformat()}},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            project = await db.projects.find_one({"project_id": project_id}, {"_id": 0})
            if not project:
                raise NotFound(f"Project {project_id} not found")
            raise InvalidStatusTransition(
                f"Project {project_id} is {project['status']}, only SUBMITTED projects can be opened"
            )
        await create_audit_log(
            action=AuditAction.PROJECT_OPENED_FOR_ASSIGNMENT,
            actor_id=admin_id,
            resource_type="project",
            resource_id=project_id,
        )
        return Project.model_validate(updated)

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    async def _load_expert(self, expert_id: str) -> dict:
        expert = await self._get_db().expert_applications.find_one({"expert_id": expert_id}, {"_id": 0})
        if not expert:
            raise NotFound(f"Expert {expert_id} not found")
        return expert

    async def _expert_for_user(self, user_id: str) -> dict:
        expert = await self._get_db().expert_applications.find_one(
            {"user_id": user_id, "verification_status": VerificationStatus.VERIFIED.value},
            {"_id": 0},
        )
        if not expert:
            raise NotFound("No verified expert profile for this user")
        return expert

    async def assign_expert(
        self,
        request: AssignProjectRequest,
        assigned_by: str,
        now: Optional[datetime] = None,
    ) -> ProjectAssignment:
        now = now or datetime.now(timezone.utc)
        db = self._get_db()

        expert = await self._load_expert(request.expert_id)
        if expert.get("verification_status") != VerificationStatus.VERIFIED.value:
            raise AssignmentRejected(f"Expert {request.expert_id} is not verified")

        duplicate = await db.project_assignments.find_one(
            {
                "project_id": request.project_id,
                "expert_id": request.expert_id,
                "status": {"$ne": AssignmentStatus.WITHDRAWN.value},
            },
            {"_id": 0, "assignment_id": 1},
        )
        if duplicate:
            raise AssignmentRejected(f"Expert {request.expert_id} is already assigned to this project")

        tier = ExpertTier(expert.get("expert_tier") or ExpertTier.BRONZE.value)
        workload_limit = EXPERT_WORKLOAD_LIMITS[tier]
        workload = await db.project_assignments.count_documents(
            {"expert_id": request.expert_id, "status": {"$in": list(OPEN_ASSIGNMENT_STATUSES)}}
        )
        if workload >= workload_limit:
            raise AssignmentRejected(
                f"Expert {request.expert_id} already has {workload} open assignments (limit {workload_limit})",
                {"workload": workload, "limit": workload_limit},
            )

        project = await db.projects.find_one_and_update(
            {
                "project_id": request.project_id,
                "status": {"$in": list(ASSIGNABLE_PROJECT_STATUSES)},
                "assignment_count": {"$lt": MAX_ASSIGNMENTS_PER_PROJECT},
            },
            {
                "$inc": {"assignment_count": 1},
                "$set": {"status": ProjectStatus.EVALUATION_IN_PROGRESS.value, "updated_at": now.isoformat()},
            },
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        if not project:
            existing = await db.projects.find_one({"project_id": request.project_id}, {"_id": 0})
            if not existing:
                raise NotFound(f"Project {request.project_id} not found")
            if existing.get("status") not in ASSIGNABLE_PROJECT_STATUSES:
                raise AssignmentRejected(f"Project is {existing.get('status')} and not open for assignment")
            raise AssignmentRejected(
                f"Project already has the maximum of {MAX_ASSIGNMENTS_PER_PROJECT} experts assigned"
            )

        points = ASSIGNMENT_POINTS[request.role]
        assignment = ProjectAssignment(
            project_id=request.project_id,
            expert_id=request.expert_id,
            role=request.role,
            assigned_by=assigned_by,
            points_awarded=points,
            assigned_at=now,
        )
        await db.project_assignments.insert_one(_dump(assignment))
        await db.expert_applications.update_one(
            {"expert_id": request.expert_id},
            {"$inc": {"reputation_points": points}, "$set": {"updated_at": now.isoformat()}},
        )

        await create_audit_log(
            action=AuditAction.EXPERT_ASSIGNED,
            actor_id=assigned_by,
            user_id=expert.get("user_id"),
            resource_type="project",
            resource_id=request.project_id,
            metadata={
                "assignment_id": assignment.assignment_id,
                "expert_id": request.expert_id,
                "role": request.role.value,
                "assignment_count": project.get("assignment_count"),
            },
        )
        logger.info(
            f"Expert {request.expert_id} assigned to {request.project_id} as {request.role.value} "
            f"({project.get('assignment_count')}/{MAX_ASSIGNMENTS_PER_PROJECT})"
        )
        return assignment

    async def withdraw_assignment(
        self,
        project_id: str,
        expert_id: str,
        actor_id: str,
        now: Optional[datetime] = None,
    ) -> ProjectAssignment:
        """Withdraw an assignment that has not been started yet and free its slot."""
        now = now or datetime.now(timezone.utc)
        db = self._get_db()
        updated = await db.project_assignments.find_one_and_update(
            {"project_id": project_id, "expert_id": expert_id, "status": AssignmentStatus.ASSIGNED.value},
            {"$set": {"status": AssignmentStatus.WITHDRAWN.value, "withdrawn_at": now.isoformat()}},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            existing = await db.project_assignments.find_one(
                {"project_id": project_id, "expert_id": expert_id, "status": {"$ne": AssignmentStatus.WITHDRAWN.value}},
                {"_id": 0},
            )
            if not existing:
                raise NotFound("Assignment not found")
            raise InvalidStatusTransition(
                f"Assignment is {existing['status']}; only ASSIGNED work can be withdrawn"
            )

        await db.projects.update_one(
            {"project_id": project_id, "assignment_count": {"$gt": 0}},
            {"$inc": {"assignment_count": -1}, "$set": {"updated_at": now.isoformat()}},
        )
        await db.projects.update_one(
            {"project_id": project_id, "assignment_count": 0, "status": ProjectStatus.EVALUATION_IN_PROGRESS.value},
            {"$set": {"status": ProjectStatus.EXPERT_ASSIGNMENT.value}},
        )
        await create_audit_log(
            action=AuditAction.EXPERT_ASSIGNMENT_WITHDRAWN,
            actor_id=actor_id,
            resource_type="project",
            resource_id=project_id,
            metadata={"assignment_id": updated["assignment_id"], "expert_id": expert_id},
        )
        logger.info(f"Assignment {updated['assignment_id']} withdrawn from {project_id}")
        return ProjectAssignment.model_validate(updated)

    async def start_assignment(
        self,
        assignment_id: str,
        expert_user_id: str,
        now: Optional[datetime] = None,
    ) -> ProjectAssignment:
        now = now or datetime.now(timezone.utc)
        expert = await self._expert_for_user(expert_user_id)
        db = self._get_db()
        updated = await db.project_assignments.find_one_and_update(
            {
                "assignment_id": assignment_id,
                "expert_id": expert["expert_id"],
                "status": AssignmentStatus.ASSIGNED.value,
            },
            {"$set": {"status": AssignmentStatus.IN_PROGRESS.value, "started_at": now.isoformat()}},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise InvalidStatusTransition(f"Assignment {assignment_id} cannot be started")
        return ProjectAssignment.model_validate(updated)

    async def submit_evaluation(
        self,
        assignment_id: str,
        expert_user_id: str,
        payload: EvaluationCreate,
        now: Optional[datetime] = None,
    ) -> Evaluation:
        """Complete an IN_PROGRESS assignment with its single evaluation."""
        now = now or datetime.now(timezone.utc)
        expert = await self._expert_for_user(expert_user_id)
        db = self._get_db()

        assignment = await db.project_assignments.find_one_and_update(
            {
                "assignment_id": assignment_id,
                "expert_id": expert["expert_id"],
                "status": AssignmentStatus.IN_PROGRESS.value,
            },
            {"$set": {"status": AssignmentStatus.COMPLETED.value, "completed_at": now.isoformat()}},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        if not assignment:
            raise InvalidStatusTransition(f"Assignment {assignment_id} is not in progress")

        project = await db.projects.find_one({"project_id": assignment["project_id"]}, {"_id": 0})
        if not project:
            raise NotFound(f"Project {assignment['project_id']} not found")

        evaluation = Evaluation(
            assignment_id=assignment_id,
            project_id=project["project_id"],
            expert_id=expert["expert_id"],
            expert_user_id=expert_user_id,
            submitter_id=project["submitter_id"],
            created_at=now,
            **payload.model_dump(),
        )
        await db.evaluations.insert_one(_dump(evaluation))
        await reputation_service.award_points(
            expert_user_id, POINTS_PER_EVALUATION, reason="evaluation_completed", actor_id=expert_user_id, now=now
        )
        await create_audit_log(
            action=AuditAction.EVALUATION_SUBMITTED,
            actor_id=expert_user_id,
            user_id=project["submitter_id"],
            resource_type="project",
            resource_id=project["project_id"],
            metadata={"assignment_id": assignment_id, "overall_score": payload.overall_score},
        )

        await self._complete_project_if_done(project, now)
        return evaluation

    async def _complete_project_if_done(self, project: dict, now: datetime):
        db = self._get_db()
        open_count = await db.project_assignments.count_documents(
            {"project_id": project["project_id"], "status": {"$in": list(OPEN_ASSIGNMENT_STATUSES)}}
        )
        if open_count:
            return

        completed = await db.projects.find_one_and_update(
            {"project_id": project["project_id"], "status": ProjectStatus.EVALUATION_IN_PROGRESS.value},
            {"$set": {"status": ProjectStatus.COMPLETED.value, "updated_at": now.isoformat()}},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        if not completed:
            return

        scores = await db.evaluations.find(
            {"project_id": project["project_id"]}, {"_id": 0, "overall_score": 1}
        ).to_list(length=None)
        if not scores:
            return
        average = sum(s["overall_score"] for s in scores) / len(scores)
        await db.projects.update_one(
            {"project_id": project["project_id"]},
            {"$set": {"average_score": round(average, 2)}},
        )

        submitter = await db.users.find_one({"user_id": project["submitter_id"]}, {"_id": 0})
        if not submitter:
            return
        finished = submitter.get("completed_projects", 0) + 1
        previous_avg = submitter.get("average_project_score", 0.0) or 0.0
        changes: Dict[str, Any] = {
            "$inc": {"completed_projects": 1},
            "$set": {"average_project_score": round(previous_avg + (average - previous_avg) / finished, 2)},
        }
        if average >= SUCCESSFUL_PROJECT_SCORE:
            changes["$inc"]["successful_projects"] = 1
        await db.users.update_one({"user_id": project["submitter_id"]}, changes)
        logger.info(f"Project {project['project_id']} completed with average score {average:.2f}")

    # ------------------------------------------------------------------
    # Rewards
    # ------------------------------------------------------------------

    async def distribute_project_rewards(
        self,
        project_id: str,
        total_fee: float,
        admin_id: str,
        now: Optional[datetime] = None,
    ) -> RewardDistribution:
        """Pay out a completed project's fee once."""
        now = now or datetime.now(timezone.utc)
        db = self._get_db()

        project = await db.projects.find_one_and_update(
            {
                "project_id": project_id,
                "status": ProjectStatus.COMPLETED.value,
                "rewards_distributed": {"$ne": True},
            },
            {"$set": {"rewards_distributed": True, "updated_at": now.isoformat()}},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        if not project:
            existing = await db.projects.find_one({"project_id": project_id}, {"_id": 0})
            if not existing:
                raise NotFound(f"Project {project_id} not found")
            raise InvalidStatusTransition(
                "Rewards can only be distributed once, for a COMPLETED project"
            )

        try:
            evaluations = [
                Evaluation.model_validate(d)
                for d in await db.evaluations.find({"project_id": project_id}, {"_id": 0}).to_list(length=None)
            ]
            tiers = {}
            async for expert in db.expert_applications.find(
                {"expert_id": {"$in": [e.expert_id for e in evaluations]}},
                {"_id": 0, "expert_id": 1, "expert_tier": 1},
            ):
                tiers[expert["expert_id"]] = expert.get("expert_tier")

            distribution = distribute_rewards(
                project_id, total_fee, [(e, tiers.get(e.expert_id)) for e in evaluations]
            )
        except Exception:
            await db.projects.update_one({"project_id": project_id}, {"$set": {"rewards_distributed": False}})
            raise

        distribution = distribution.model_copy(update={"created_at": now})
        doc = distribution.model_dump()
        doc["created_at"] = now.isoformat()
        doc["distributed_by"] = admin_id
        await db.reward_distributions.insert_one(doc)

        for payout in distribution.payouts:
            await db.expert_applications.update_one(
                {"expert_id": payout.expert_id},
                {"$inc": {"reputation_points": payout.reputation_points, "total_rewards": payout.amount}},
            )
        if distribution.submitter_bonus_points:
            await reputation_service.award_points(
                project["submitter_id"],
                distribution.submitter_bonus_points,
                reason="quality_submission_bonus",
                actor_id=admin_id,
                now=now,
            )
        logger.info(f"Rewards distributed for {project_id}: {distribution.total_fee} across {len(distribution.payouts)} experts")
        return distribution

    async def list_assignments(self, project_id: str) -> List[ProjectAssignment]:
        docs = await self._get_db().project_assignments.find({"project_id": project_id}, {"_id": 0}).to_list(length=None)
        return [ProjectAssignment.model_validate(d) for d in docs]


project_service = ProjectService()
