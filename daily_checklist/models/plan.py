from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional
from datetime import date

from daily_checklist.models.activity import ActivityResponse
from daily_checklist.models.child import ChildResponse

PlanType = Literal["weekly", "daily"]


class PlannedActivityCreate(BaseModel):
    activity_id: int
    scheduled_date: date
    scheduled_time: Optional[str] = None
    reminder: Optional[bool] = True
    completed: Optional[bool] = False


class PlannedActivityUpsert(BaseModel):
    # With id: update that planned activity. Without: create one.
    id: Optional[int] = None
    activity_id: Optional[int] = None
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[str] = None
    reminder: Optional[bool] = None
    completed: Optional[bool] = None


class PlanCreate(BaseModel):
    type: PlanType
    start_date: date
    child_id: Optional[int] = None
    child_ids: Optional[List[int]] = None
    activities: List[PlannedActivityCreate] = Field(..., min_length=1)


class PlanUpdate(BaseModel):
    type: Optional[PlanType] = None
    start_date: Optional[date] = None
    child_id: Optional[int] = None
    child_ids: Optional[List[int]] = None
    activities: Optional[List[PlannedActivityUpsert]] = None
    deleted_activities: Optional[List[int]] = None


class ActivityStatusUpdate(BaseModel):
    completed: bool


class PlannedActivityResponse(BaseModel):
    id: int
    plan_id: int
    activity_id: int
    scheduled_date: date
    scheduled_time: Optional[str] = None
    reminder: bool
    completed: bool
    activity: Optional[ActivityResponse] = None

    model_config = ConfigDict(from_attributes=True)


class PlanResponse(BaseModel):
    id: int
    teacher_id: int
    type: str
    start_date: date
    child_id: Optional[int] = None
    children: List[ChildResponse] = []
    planned_activities: List[PlannedActivityResponse] = []

    model_config = ConfigDict(from_attributes=True)


class ActivityStatusResponse(BaseModel):
    message: str
    planned_activity: PlannedActivityResponse
