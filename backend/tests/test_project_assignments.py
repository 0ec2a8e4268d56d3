"""
Tests for project submission and the expert assignment lifecycle:
verified experts only, at most 3 experts per project, workload limits and
one evaluation per assignment.
"""
import pytest
import sys
from pathlib import Path
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from diligence.errors import AssignmentRejected, InvalidStatusTransition, MonthlyQuotaExceeded, NotFound
from diligence.models.projects import (
    AssignmentRole,
    AssignProjectRequest,
    EvaluationCreate,
    ProjectCreate,
)
from diligence.services.project_service import ProjectService

NOW = datetime(2026, 8, 3, 14, 0, 0, tzinfo=timezone.utc)

VERIFIED_EXPERT = {
    "expert_id": "EXP-1",
    "user_id": "expert-user-1",
    "verification_status": "VERIFIED",
    "expert_tier": "BRONZE",
}


def _service(db):
    service = ProjectService()
    service.db = db
    return service


class TestSubmitProject:

    @pytest.mark.asyncio
    async def test_submission_claims_slot_and_scores_by_tier(self):
        db = MagicMock()
        db.projects.insert_one = AsyncMock()
        db.user_reputation.update_one = AsyncMock()
        service = _service(db)

        with patch("diligence.services.project_service.quota_service.claim_submission_slot",
                   new_callable=AsyncMock, return_value={"user_id": "u1", "submitter_tier": "PREMIUM"}), \
             patch("diligence.services.project_service.reputation_service.award_points",
                   new_callable=AsyncMock) as award, \
             patch("diligence.services.project_service.create_audit_log", new_callable=AsyncMock):
            project = await service.submit_project("u1", ProjectCreate(name="Rollup X"), now=NOW)

        assert project.submitter_id == "u1"
        assert project.points_awarded == 37
        assert project.status.value == "SUBMITTED"
        inserted = db.projects.insert_one.call_args[0][0]
        assert inserted["created_at"] == NOW.isoformat()
        award.assert_awaited_once()
        assert award.call_args[0][:2] == ("u1", 37)

    @pytest.mark.asyncio
    async def test_quota_exceeded_stores_nothing(self):
        db = MagicMock()
        db.projects.insert_one = AsyncMock()
        service = _service(db)
        with patch("diligence.services.project_service.quota_service.claim_submission_slot",
                   new_callable=AsyncMock, side_effect=MonthlyQuotaExceeded("Monthly project limit of 1 reached")):
            with pytest.raises(MonthlyQuotaExceeded):
                await service.submit_project("u1", ProjectCreate(name="Rollup X"), now=NOW)
        db.projects.insert_one.assert_not_called()


class TestAssignExpert:

    def _db(self, expert=VERIFIED_EXPERT, duplicate=None, workload=0, project_after=None, existing_project=None):
        db = MagicMock()
        db.expert_applications.find_one = AsyncMock(return_value=expert)
        db.expert_applications.update_one = AsyncMock()
        db.project_assignments.find_one = AsyncMock(return_value=duplicate)
        db.project_assignments.count_documents = AsyncMock(return_value=workload)
        db.project_assignments.insert_one = AsyncMock()
        db.projects.find_one_and_update = AsyncMock(return_value=project_after)
        db.projects.find_one = AsyncMock(return_value=existing_project)
        return db

    @pytest.mark.asyncio
    async def test_assign_uses_capacity_filter(self):
        db = self._db(project_after={"project_id": "PRJ-1", "assignment_count": 2, "status": "EVALUATION_IN_PROGRESS"})
        service = _service(db)
        request = AssignProjectRequest(project_id="PRJ-1", expert_id="EXP-1", role=AssignmentRole.SECONDARY)
        with patch("diligence.services.project_service.create_audit_log", new_callable=AsyncMock) as audit:
            assignment = await service.assign_expert(request, assigned_by="admin-1", now=NOW)

        assert assignment.points_awarded == 15
        assert assignment.status.value == "ASSIGNED"
        query = db.projects.find_one_and_update.call_args[0][0]
        assert query["assignment_count"] == {"$lt": 3}
        assert set(query["status"]["$in"]) == {"EXPERT_ASSIGNMENT", "EVALUATION_IN_PROGRESS"}
        db.expert_applications.update_one.assert_awaited_once()
        assert audit.call_args[1]["metadata"]["assignment_count"] == 2

    @pytest.mark.asyncio
    async def test_fourth_expert_rejected(self):
        db = self._db(existing_project={"project_id": "PRJ-1", "assignment_count": 3, "status": "EVALUATION_IN_PROGRESS"})
        service = _service(db)
        with pytest.raises(AssignmentRejected) as exc:
            await service.assign_expert(AssignProjectRequest(project_id="PRJ-1", expert_id="EXP-1"), "admin-1", NOW)
        assert "maximum of 3" in exc.value.message
        db.project_assignments.insert_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_project_not_open_rejected(self):
        db = self._db(existing_project={"project_id": "PRJ-1", "assignment_count": 0, "status": "SUBMITTED"})
        service = _service(db)
        with pytest.raises(AssignmentRejected):
            await service.assign_expert(AssignProjectRequest(project_id="PRJ-1", expert_id="EXP-1"), "admin-1", NOW)

    @pytest.mark.asyncio
    async def test_missing_project(self):
        db = self._db()
        service = _service(db)
        with pytest.raises(NotFound):
            await service.assign_expert(AssignProjectRequest(project_id="PRJ-9", expert_id="EXP-1"), "admin-1", NOW)

    @pytest.mark.asyncio
    async def test_unverified_expert_rejected(self):
        db = self._db(expert={**VERIFIED_EXPERT, "verification_status": "UNDER_REVIEW"})
        service = _service(db)
        with pytest.raises(AssignmentRejected):
            await service.assign_expert(AssignProjectRequest(project_id="PRJ-1", expert_id="EXP-1"), "admin-1", NOW)
        db.projects.find_one_and_update.assert_not_called()

    @pytest.mark.asyncio
    async def test_duplicate_assignment_rejected(self):
        db = self._db(duplicate={"assignment_id": "ASG-1"})
        service = _service(db)
        with pytest.raises(AssignmentRejected):
            await service.assign_expert(AssignProjectRequest(project_id="PRJ-1", expert_id="EXP-1"), "admin-1", NOW)

    @pytest.mark.asyncio
    async def test_workload_limit_by_tier(self):
        db = self._db(workload=5)
        service = _service(db)
        with pytest.raises(AssignmentRejected) as exc:
            await service.assign_expert(AssignProjectRequest(project_id="PRJ-1", expert_id="EXP-1"), "admin-1", NOW)
        assert exc.value.details == {"workload": 5, "limit": 5}

        db = self._db(expert={**VERIFIED_EXPERT, "expert_tier": "GOLD"}, workload=5,
                      project_after={"project_id": "PRJ-1", "assignment_count": 1})
        service = _service(db)
        with patch("diligence.services.project_service.create_audit_log", new_callable=AsyncMock):
            assignment = await service.assign_expert(
                AssignProjectRequest(project_id="PRJ-1", expert_id="EXP-1"), "admin-1", NOW
            )
        assert assignment.points_awarded == 25


class TestWithdrawAndLifecycle:

    @pytest.mark.asyncio
    async def test_withdraw_frees_slot(self):
        db = MagicMock()
        db.project_assignments.find_one_and_update = AsyncMock(return_value={
            "assignment_id": "ASG-1", "project_id": "PRJ-1", "expert_id": "EXP-1", "status": "WITHDRAWN",
        })
        db.projects.update_one = AsyncMock()
        service = _service(db)
        with patch("diligence.services.project_service.create_audit_log", new_callable=AsyncMock):
            assignment = await service.withdraw_assignment("PRJ-1", "EXP-1", actor_id="admin-1", now=NOW)

        assert assignment.status.value == "WITHDRAWN"
        first_update = db.projects.update_one.call_args_list[0][0]
        assert first_update[0] == {"project_id": "PRJ-1", "assignment_count": {"$gt": 0}}
        assert first_update[1]["$inc"] == {"assignment_count": -1}

    @pytest.mark.asyncio
    async def test_started_assignment_cannot_be_withdrawn(self):
        db = MagicMock()
        db.project_assignments.find_one_and_update = AsyncMock(return_value=None)
        db.project_assignments.find_one = AsyncMock(return_value={"assignment_id": "ASG-1", "status": "IN_PROGRESS"})
        service = _service(db)
        with pytest.raises(InvalidStatusTransition):
            await service.withdraw_assignment("PRJ-1", "EXP-1", actor_id="admin-1", now=NOW)

    @pytest.mark.asyncio
    async def test_start_requires_assigned_status(self):
        db = MagicMock()
        db.expert_applications.find_one = AsyncMock(return_value=VERIFIED_EXPERT)
        db.project_assignments.find_one_and_update = AsyncMock(return_value=None)
        service = _service(db)
        with pytest.raises(InvalidStatusTransition):
            await service.start_assignment("ASG-1", "expert-user-1", now=NOW)
        query = db.project_assignments.find_one_and_update.call_args[0][0]
        assert query == {"assignment_id": "ASG-1", "expert_id": "EXP-1", "status": "ASSIGNED"}

    @pytest.mark.asyncio
    async def test_last_evaluation_completes_project(self):
        db = MagicMock()
        db.expert_applications.find_one = AsyncMock(return_value=VERIFIED_EXPERT)
        db.project_assignments.find_one_and_update = AsyncMock(return_value={
            "assignment_id": "ASG-1", "project_id": "PRJ-1", "expert_id": "EXP-1", "status": "COMPLETED",
        })
        db.project_assignments.count_documents = AsyncMock(return_value=0)
        db.projects.find_one = AsyncMock(return_value={
            "project_id": "PRJ-1", "submitter_id": "u1", "status": "EVALUATION_IN_PROGRESS",
        })
        db.projects.find_one_and_update = AsyncMock(return_value={"project_id": "PRJ-1", "status": "COMPLETED"})
        db.projects.update_one = AsyncMock()
        scores_cursor = MagicMock()
        scores_cursor.to_list = AsyncMock(return_value=[{"overall_score": 8.0}, {"overall_score": 7.0}])
        db.evaluations.find = MagicMock(return_value=scores_cursor)
        db.evaluations.insert_one = AsyncMock()
        db.users.find_one = AsyncMock(return_value={"user_id": "u1", "completed_projects": 1, "average_project_score": 6.0})
        db.users.update_one = AsyncMock()
        service = _service(db)

        with patch("diligence.services.project_service.reputation_service.award_points",
                   new_callable=AsyncMock) as award, \
             patch("diligence.services.project_service.create_audit_log", new_callable=AsyncMock):
            evaluation = await service.submit_evaluation(
                "ASG-1", "expert-user-1", EvaluationCreate(overall_score=8.0, comments={"team": "solid"}), now=NOW
            )

        assert evaluation.submitter_id == "u1"
        assert award.call_args[0][:2] == ("expert-user-1", 25)
        db.projects.update_one.assert_awaited_once_with(
            {"project_id": "PRJ-1"}, {"$set": {"average_score": 7.5}}
        )
        user_update = db.users.update_one.call_args[0][1]
        assert user_update["$inc"] == {"completed_projects": 1, "successful_projects": 1}
        assert user_update["$set"]["average_project_score"] == 6.75

    @pytest.mark.asyncio
    async def test_evaluation_on_unstarted_assignment_rejected(self):
        db = MagicMock()
        db.expert_applications.find_one = AsyncMock(return_value=VERIFIED_EXPERT)
        db.project_assignments.find_one_and_update = AsyncMock(return_value=None)
        db.evaluations.insert_one = AsyncMock()
        service = _service(db)
        with pytest.raises(InvalidStatusTransition):
            await service.submit_evaluation("ASG-1", "expert-user-1", EvaluationCreate(overall_score=5), now=NOW)
        db.evaluations.insert_one.assert_not_called()


class TestProjectRewards:

    @pytest.mark.asyncio
    async def test_rewards_pay_once(self):
        db = MagicMock()
        db.projects.find_one_and_update = AsyncMock(return_value=None)
        db.projects.find_one = AsyncMock(return_value={"project_id": "PRJ-1", "status": "COMPLETED", "rewards_distributed": True})
        service = _service(db)
        with pytest.raises(InvalidStatusTransition):
            await service.distribute_project_rewards("PRJ-1", 1000, "admin-1", now=NOW)
