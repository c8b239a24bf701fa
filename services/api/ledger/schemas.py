"""Pydantic schemas for the ledger API.

Request/response models for:
- Actors, entities, membership
- Locations, resources, inventory
- Goals, tasks, assignment
- Capture pipeline (tracks, lens runs)
- Review workflow (change sets, questions, answers, audit)

JSON bodies use camelCase; Python attributes stay snake_case.
"""

from datetime import datetime
from typing import Any, Optional, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


MemberRole = Literal["ADMIN", "MEMBER"]
AssignmentRole = Literal["RESPONSIBLE", "ACCOUNTABLE"]
TaskStatus = Literal["PENDING", "IN_PROGRESS", "DONE", "BLOCKED"]
SubjectType = Literal["TASK", "CHANGESET", "INVENTORY", "ENTITY", "TRACK"]
SensorType = Literal["MOBILE_CAMERA", "WEB_UPLOAD"]
LensType = Literal["INVENTORY_LENS", "MEAL_PLAN_LENS"]


class SubjectRef(ApiModel):
    """What a change set or question is about. Only known subject kinds validate."""
    subject_type: SubjectType
    subject_id: str = Field(..., min_length=1, max_length=36)


# --- Actors / entities ---

class ActorCreate(ApiModel):
    email: EmailStr
    name: Optional[str] = None


class ActorOut(ApiModel):
    id: str
    email: str
    name: Optional[str]
    created_at: datetime


class EntityCreate(ApiModel):
    name: str = Field(..., min_length=1, max_length=200)
    admin_actor_id: Optional[str] = None


class EntityOut(ApiModel):
    id: str
    name: str
    created_at: datetime


class MembershipCreate(ApiModel):
    actor_id: str
    role: MemberRole = "MEMBER"


class MembershipOut(ApiModel):
    id: str
    entity_id: str
    actor_id: str
    role: str


# --- Locations / resources / inventory ---

class LocationCreate(ApiModel):
    name: str = Field(..., min_length=1, max_length=200)
    parent_id: Optional[str] = None


class LocationOut(ApiModel):
    id: str
    entity_id: str
    name: str
    parent_id: Optional[str]


class EntityCreated(ApiModel):
    entity: EntityOut
    locations: list[LocationOut]


class ResourceCreate(ApiModel):
    name: str = Field(..., min_length=1, max_length=200)
    unit: Optional[str] = Field(None, max_length=40)


class ResourceOut(ApiModel):
    id: str
    entity_id: str
    name: str
    unit: Optional[str]


class InventoryUpsert(ApiModel):
    resource_id: str
    location_id: str
    quantity: float
    expires_at: Optional[datetime] = None


class InventoryItemOut(ApiModel):
    id: str
    entity_id: str
    resource_id: str
    location_id: str
    quantity: float
    expires_at: Optional[datetime]
    updated_at: Optional[datetime] = None


# --- Goals / tasks ---

class GoalOut(ApiModel):
    id: str
    entity_id: str
    type: str
    state: str
    period_start: Optional[datetime]
    period_end: Optional[datetime]
    recurring: bool


class WeeklyPlanRequest(ApiModel):
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None


class TaskActorOut(ApiModel):
    id: str
    task_id: str
    actor_id: str
    role: str


class TaskOut(ApiModel):
    id: str
    entity_id: str
    type: str
    status: str
    tags: list[str] = []
    goal_id: Optional[str]
    solution_id: Optional[str]
    step_id: Optional[str]
    location_id: Optional[str]
    due_at: Optional[datetime]
    starts_at: Optional[datetime]
    metadata: dict = Field(
        default_factory=dict,
        validation_alias=AliasChoices("meta", "metadata"),
        serialization_alias="metadata",
    )
    task_actors: list[TaskActorOut] = []
    created_at: datetime


class WeeklyPlanOut(ApiModel):
    goal: GoalOut
    planning_task: TaskOut


class TaskCreate(ApiModel):
    type: str = Field(..., min_length=1, max_length=60)
    status: TaskStatus = "PENDING"
    tags: list[str] = []
    goal_id: Optional[str] = None
    location_id: Optional[str] = None
    due_at: Optional[datetime] = None
    starts_at: Optional[datetime] = None
    metadata: dict[str, Any] = {}


class TaskStatusUpdate(ApiModel):
    status: TaskStatus


class TaskAssignment(ApiModel):
    actor_id: str
    role: AssignmentRole = "RESPONSIBLE"


class OkResponse(ApiModel):
    ok: bool = True


class SummaryOut(ApiModel):
    tasks: list[TaskOut]
    inventory: list[InventoryItemOut]
    goals: list[GoalOut]


# --- Change set payloads ---

class InventoryDiffItem(ApiModel):
    """One proposed inventory line. Missing resource/location ids are tolerated and skipped."""
    resource_id: Optional[str] = None
    location_id: Optional[str] = None
    quantity: Optional[float] = None
    action: Optional[str] = None  # TO_BUY | DELETE | None (upsert)
    expires_at: Optional[datetime] = None
    inventory_item_id: Optional[str] = None


class InventoryDiffPayload(ApiModel):
    items: list[InventoryDiffItem] = []


class PlannedTask(ApiModel):
    type: str
    status: Optional[TaskStatus] = None
    goal_id: Optional[str] = None
    solution_id: Optional[str] = None
    step_id: Optional[str] = None
    due_at: Optional[datetime] = None
    starts_at: Optional[datetime] = None


class WeeklyMealPlanPayload(ApiModel):
    tasks: list[PlannedTask] = []


# --- Change sets / questions / answers ---

class ChangeSetCreate(SubjectRef):
    type: str = Field(..., min_length=1, max_length=40)
    payload: dict[str, Any]
    task_id: Optional[str] = None
    track_id: Optional[str] = None


class ChangeSetOut(ApiModel):
    id: str
    entity_id: str
    task_id: Optional[str]
    track_id: Optional[str]
    subject_type: str
    subject_id: str
    type: str
    payload: dict
    status: str
    approved_at: Optional[datetime]
    applied_at: Optional[datetime]
    created_at: datetime


class QuestionCreate(SubjectRef):
    prompt: str = Field(..., min_length=1)
    question_type: str = "YES_NO"
    change_set_id: Optional[str] = None
    task_id: Optional[str] = None
    goal_id: Optional[str] = None
    batch_id: Optional[str] = None
    config: Optional[dict[str, Any]] = None


class QuestionOut(ApiModel):
    id: str
    entity_id: str
    task_id: Optional[str]
    goal_id: Optional[str]
    change_set_id: Optional[str]
    subject_type: str
    subject_id: str
    question_type: str
    config: Optional[dict]
    batch_id: Optional[str]
    prompt: str
    created_at: datetime


class ProposalOut(ApiModel):
    change_set: ChangeSetOut
    question: QuestionOut


class AnswerCreate(ApiModel):
    task_id: str
    value: Any


class AnswerOut(ApiModel):
    id: str
    question_id: str
    task_id: str
    value: Any
    created_at: datetime


class ApplyOut(ApiModel):
    change_set_id: str
    applied: bool = True
    result: dict
    change_set: ChangeSetOut


class AuditLogOut(ApiModel):
    id: str
    entity_id: str
    actor_id: Optional[str]
    subject_type: str
    subject_id: str
    action: str
    payload: Optional[dict]
    created_at: datetime


# --- Capture pipeline ---

class TrackCreate(ApiModel):
    actor_id: str
    media_url: str = Field(..., min_length=1)
    telemetry: Optional[dict[str, Any]] = None
    location_id: Optional[str] = None
    sensor_type: SensorType = "MOBILE_CAMERA"
    lens_type: str = "INVENTORY_LENS"


class TrackOut(ApiModel):
    id: str
    entity_id: str
    actor_id: str
    sensor_id: str
    location_id: Optional[str]
    media_url: str
    telemetry: Optional[dict]
    created_at: datetime


class LensRunCreate(ApiModel):
    track_id: str
    lens_type: str = "INVENTORY_LENS"


class LensRunOut(ApiModel):
    id: str
    track_id: str
    lens_id: str
    analyst_type: str
    status: str
    raw_output: Optional[dict]
    created_at: datetime


class LensRunProcessed(ApiModel):
    lens_run: LensRunOut
    change_set: ChangeSetOut
    question: QuestionOut


# --- Seed ---

class SeedResponse(ApiModel):
    actor: ActorOut
    entity: EntityOut
    membership: MembershipOut
    goal: GoalOut
    plan_task: TaskOut
