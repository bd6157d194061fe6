from pydantic import BaseModel, ConfigDict, Field
from typing import Any, List, Literal, Optional
from datetime import datetime


class ChecklistCreate(BaseModel):
    child_id: int
    activity_id: int
    custom_steps_used: List[Any]
    due_date: Optional[datetime] = None


class ChecklistUpdate(BaseModel):
    due_date: Optional[datetime] = None
    custom_steps_used: Optional[List[Any]] = None


class ChecklistStatusUpdate(BaseModel):
    status: Literal["pending", "in-progress", "completed"]


class HomeObservationCreate(BaseModel):
    duration: int = Field(..., ge=1)
    engagement: int = Field(..., ge=1, le=5)
    notes: str


class SchoolObservationCreate(HomeObservationCreate):
    learning_outcomes: str


class ObservationResponse(BaseModel):
    id: int
    checklist_id: int
    completed: bool
    completed_at: Optional[datetime] = None
    duration: Optional[int] = None
    engagement: Optional[int] = None
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class SchoolObservationResponse(ObservationResponse):
    learning_outcomes: Optional[str] = None


class ChecklistResponse(BaseModel):
    id: int
    child_id: int
    activity_id: int
    assigned_date: datetime
    due_date: Optional[datetime] = None
    status: str
    custom_steps_used: Optional[List[Any]] = None
    is_overdue: bool
    is_completed: bool
    status_icon: str
    home_observation: Optional[ObservationResponse] = None
    school_observation: Optional[SchoolObservationResponse] = None

    model_config = ConfigDict(from_attributes=True)
