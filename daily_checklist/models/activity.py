from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import List, Literal, Optional
from datetime import datetime

Environment = Literal["Home", "School", "Both"]
Difficulty = Literal["Easy", "Medium", "Hard"]


class ActivityCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str
    environment: Environment
    difficulty: Difficulty
    min_age: float = Field(..., ge=0, le=6)
    max_age: float = Field(..., ge=0, le=6)
    duration: Optional[int] = Field(None, ge=1)
    next_activity_id: Optional[int] = None
    steps: List[str] = Field(..., min_length=1)
    photos: Optional[List[Optional[str]]] = None

    @model_validator(mode="after")
    def check_age_range(self):
        if self.max_age < self.min_age:
            raise ValueError("max_age must be greater than or equal to min_age")
        return self


class ActivityUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    environment: Optional[Environment] = None
    difficulty: Optional[Difficulty] = None
    min_age: Optional[float] = Field(None, ge=0, le=6)
    max_age: Optional[float] = Field(None, ge=0, le=6)
    duration: Optional[int] = Field(None, ge=1)
    next_activity_id: Optional[int] = None

    @model_validator(mode="after")
    def check_age_range(self):
        if self.min_age is not None and self.max_age is not None and self.max_age < self.min_age:
            raise ValueError("max_age must be greater than or equal to min_age")
        return self


class CustomStepsRequest(BaseModel):
    steps: List[str] = Field(..., min_length=1)
    photos: Optional[List[Optional[str]]] = None


class ActivityStepResponse(BaseModel):
    id: int
    activity_id: int
    teacher_id: int
    steps: List[str]
    photos: Optional[List[Optional[str]]] = None

    model_config = ConfigDict(from_attributes=True)


class ActivityResponse(BaseModel):
    id: int
    title: str
    description: str
    environment: str
    difficulty: str
    min_age: float
    max_age: float
    duration: Optional[int] = None
    next_activity_id: Optional[int] = None
    created_by: int
    created_at: datetime
    activity_steps: List[ActivityStepResponse] = []

    model_config = ConfigDict(from_attributes=True)
