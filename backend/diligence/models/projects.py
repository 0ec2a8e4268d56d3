"""Projects, expert assignments and evaluations."""

from pydantic import BaseModel, Field
from typing import Optional, Dict, List
from datetime import datetime, timezone
from enum import Enum
import uuid


class ProjectStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    EXPERT_ASSIGNMENT = "EXPERT_ASSIGNMENT"
    EVALUATION_IN_PROGRESS = "EVALUATION_IN_PROGRESS"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


class AssignmentRole(str, Enum):
    PRIMARY = "PRIMARY"
    SECONDARY = "SECONDARY"
    REVIEWER = "REVIEWER"


class AssignmentStatus(str, Enum):
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    WITHDRAWN = "WITHDRAWN"


MAX_ASSIGNMENTS_PER_PROJECT = 3

ASSIGNABLE_PROJECT_STATUSES = frozenset({
    ProjectStatus.EXPERT_ASSIGNMENT.value,
    ProjectStatus.EVALUATION_IN_PROGRESS.value,
})

OPEN_ASSIGNMENT_STATUSES = frozenset({
    AssignmentStatus.ASSIGNED.value,
    AssignmentStatus.IN_PROGRESS.value,
})

ASSIGNMENT_POINTS: Dict[AssignmentRole, int] = {
    AssignmentRole.PRIMARY: 25,
    AssignmentRole.SECONDARY: 15,
    AssignmentRole.REVIEWER: 15,
}


class Project(BaseModel):
    project_id: str = Field(default_factory=lambda: f"PRJ-{uuid.uuid4().hex[:12].upper()}")
    submitter_id: str
    name: str
    description: str = ""
    category: Optional[str] = None
    website: Optional[str] = None
    token_symbol: Optional[str] = None
    status: ProjectStatus = ProjectStatus.SUBMITTED
    assignment_count: int = 0
    points_awarded: int = 0
    average_score: Optional[float] = None
    rewards_distributed: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore"}


class ProjectCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    category: Optional[str] = None
    website: Optional[str] = None
    token_symbol: Optional[str] = None


class ProjectAssignment(BaseModel):
    assignment_id: str = Field(default_factory=lambda: f"ASG-{uuid.uuid4().hex[:12].upper()}")
    project_id: str
    expert_id: str
    role: AssignmentRole = AssignmentRole.PRIMARY
    status: AssignmentStatus = AssignmentStatus.ASSIGNED
    assigned_by: Optional[str] = None
    points_awarded: int = 0
    assigned_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    withdrawn_at: Optional[datetime] = None

    model_config = {"extra": "ignore"}


class AssignProjectRequest(BaseModel):
    project_id: str
    expert_id: str
    role: AssignmentRole = AssignmentRole.PRIMARY


class WithdrawAssignmentRequest(BaseModel):
    project_id: str
    expert_id: str


class EvaluationCreate(BaseModel):
    overall_score: float = Field(ge=0, le=10)
    comments: Dict[str, str] = Field(default_factory=dict)
    recommendation: Optional[str] = None


class Evaluation(BaseModel):
    evaluation_id: str = Field(default_factory=lambda: f"EVL-{uuid.uuid4().hex[:12].upper()}")
    assignment_id: str
    project_id: str
    expert_id: str
    expert_user_id: str
    submitter_id: str
    overall_score: float
    comments: Dict[str, str] = Field(default_factory=dict)
    recommendation: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore"}


class RewardDistributionRequest(BaseModel):
    total_fee: float = Field(gt=0)


class ExpertPayout(BaseModel):
    expert_id: str
    evaluation_id: str
    quality_multiplier: float
    amount: float
    reputation_points: int


class RewardDistribution(BaseModel):
    distribution_id: str = Field(default_factory=lambda: f"RWD-{uuid.uuid4().hex[:12].upper()}")
    project_id: str
    total_fee: float
    platform_fee: float
    experts_pool: float
    submitter_bonus: float
    submitter_bonus_points: int = 0
    payouts: List[ExpertPayout] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
