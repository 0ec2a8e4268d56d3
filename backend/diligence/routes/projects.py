"""Project and Expert Assignment Routes

Endpoints:
- POST /api/projects - Submit a project (counts against the monthly quota)
- GET /api/projects/{project_id}/assignments - Assignments on a project
- POST /api/expert/assign-project - Assign a verified expert (admin)
- DELETE /api/expert/assign-project - Withdraw an open assignment (admin)
- POST /api/expert/assignments/{assignment_id}/start - Expert starts work
- POST /api/expert/assignments/{assignment_id}/evaluation - Expert submits an evaluation
- POST /api/admin/projects/{project_id}/open - Open a submitted project for assignment
- POST /api/admin/projects/{project_id}/rewards - Distribute the project fee
"""

from fastapi import APIRouter, HTTPException, Depends
import logging

from middleware import require_auth, admin_route_guard
from diligence.errors import DiligenceError, to_http_exception
from diligence.models.projects import (
    AssignProjectRequest,
    Evaluation,
    EvaluationCreate,
    Project,
    ProjectAssignment,
    ProjectCreate,
    RewardDistribution,
    RewardDistributionRequest,
    WithdrawAssignmentRequest,
)
from diligence.services.project_service import project_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Projects"])


@router.post("/projects", response_model=Project)
async def submit_project(body: ProjectCreate, user: dict = Depends(require_auth)):
    try:
        return await project_service.submit_project(user["user_id"], body)
    except DiligenceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to submit project: {e}")
        raise HTTPException(status_code=500, detail="Failed to submit project")


@router.get("/projects/{project_id}/assignments")
async def list_assignments(project_id: str, admin: dict = Depends(admin_route_guard)):
    assignments = await project_service.list_assignments(project_id)
    return {"project_id": project_id, "assignments": assignments}


@router.post("/expert/assign-project", response_model=ProjectAssignment)
async def assign_project(body: AssignProjectRequest, admin: dict = Depends(admin_route_guard)):
    try:
        return await project_service.assign_expert(body, assigned_by=admin["user_id"])
    except DiligenceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to assign {body.expert_id} to {body.project_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to assign expert")


@router.delete("/expert/assign-project", response_model=ProjectAssignment)
async def withdraw_assignment(body: WithdrawAssignmentRequest, admin: dict = Depends(admin_route_guard)):
    try:
        return await project_service.withdraw_assignment(
            body.project_id, body.expert_id, actor_id=admin["user_id"]
        )
    except DiligenceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to withdraw {body.expert_id} from {body.project_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to withdraw assignment")


@router.post("/expert/assignments/{assignment_id}/start", response_model=ProjectAssignment)
async def start_assignment(assignment_id: str, user: dict = Depends(require_auth)):
    try:
        return await project_service.start_assignment(assignment_id, user["user_id"])
    except DiligenceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to start assignment {assignment_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to start assignment")


@router.post("/expert/assignments/{assignment_id}/evaluation", response_model=Evaluation)
async def submit_evaluation(
    assignment_id: str,
    body: EvaluationCreate,
    user: dict = Depends(require_auth),
):
    try:
        return await project_service.submit_evaluation(assignment_id, user["user_id"], body)
    except DiligenceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to submit evaluation for {assignment_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to submit evaluation")


@router.post("/admin/projects/{project_id}/open", response_model=Project)
async def open_for_assignment(project_id: str, admin: dict = Depends(admin_route_guard)):
    try:
        return await project_service.open_for_assignment(project_id, admin["user_id"])
    except DiligenceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to open project {project_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to open project")


@router.post("/admin/projects/{project_id}/rewards", response_model=RewardDistribution)
async def distribute_rewards(
    project_id: str,
    body: RewardDistributionRequest,
    admin: dict = Depends(admin_route_guard),
):
    try:
        return await project_service.distribute_project_rewards(
            project_id, body.total_fee, admin["user_id"]
        )
    except DiligenceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to distribute rewards for {project_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to distribute rewards")
