from pydantic import BaseModel, EmailStr, field_validator, ConfigDict, Field
from typing import Literal, Optional
from datetime import datetime

from daily_checklist.database.models import Role, UserStatus


class TeacherRegister(BaseModel):
    name: str = Field(..., max_length=255)
    email: EmailStr
    password: str
    phone_number: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = None
    profile_picture: Optional[str] = None

    @field_validator('name')
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError('Name cannot be empty')
        return v.strip()

    @field_validator('password')
    def validate_password(cls, v):
        if len(v) < 8:
            raise ValueError('Password must be at least 8 characters long')
        return v


class ParentRegister(TeacherRegister):
    pass


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ChangePasswordRequest(BaseModel):
    current_password: Optional[str] = None
    new_password: str

    @field_validator('new_password')
    def validate_password(cls, v):
        if len(v) < 6:
            raise ValueError('Password must be at least 6 characters long')
        return v


class ResetPasswordRequest(BaseModel):
    new_password: str
    is_temp_password: Optional[bool] = None

    @field_validator('new_password')
    def validate_password(cls, v):
        if len(v) < 6:
            raise ValueError('Password must be at least 6 characters long')
        return v


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = None
    profile_picture: Optional[str] = None
    status: Optional[Literal["active", "inactive"]] = None


class UserResponse(BaseModel):
    id: int
    name: str
    email: EmailStr
    role: Role
    created_by: Optional[int] = None
    is_temp_password: bool
    phone_number: Optional[str] = None
    address: Optional[str] = None
    profile_picture: Optional[str] = None
    status: UserStatus
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class AuthResponse(BaseModel):
    user: UserResponse
    token: str
    token_type: str = "bearer"


class ParentCreatedResponse(BaseModel):
    user: UserResponse
    message: str
