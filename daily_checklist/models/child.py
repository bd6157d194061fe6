from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import date


class ChildCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    age: int = Field(..., ge=1, le=20)
    date_of_birth: Optional[date] = None
    parent_id: int
    avatar_url: Optional[str] = None


class ChildUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    age: Optional[int] = Field(None, ge=1, le=20)
    date_of_birth: Optional[date] = None
    avatar_url: Optional[str] = None


class ChildResponse(BaseModel):
    id: int
    name: str
    age: int
    date_of_birth: Optional[date] = None
    parent_id: Optional[int] = None
    teacher_id: Optional[int] = None
    avatar_url: str = Field(validation_alias="display_avatar_url")

    model_config = ConfigDict(from_attributes=True)
