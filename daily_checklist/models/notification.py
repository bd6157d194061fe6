# file: models/notification.py

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import List, Optional


class NotificationBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    body: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1, max_length=100)
    related_id: Optional[str] = Field(None, max_length=255)


class NotificationCreate(NotificationBase):
    user_id: int
    child_id: Optional[int] = None


class NotificationUpdate(BaseModel):
    is_read: Optional[bool] = None


class NotificationResponse(NotificationBase):
    id: int
    user_id: int
    child_id: Optional[int] = None
    is_read: bool
    sent_by: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SystemNotificationRequest(NotificationBase):
    pass


class ParentsNotificationRequest(NotificationBase):
    child_ids: List[int] = Field(..., min_length=1)


class NewPlanNotificationRequest(BaseModel):
    plan_id: str = Field(..., max_length=255)
    plan_title: str
    child_id: int


class ActivityStatusNotificationRequest(BaseModel):
    activity_id: str = Field(..., max_length=255)
    activity_title: str
    child_id: int
    status: str


class FanOutResponse(BaseModel):
    message: str
    notification_count: int
    failed_count: int


class DeviceTokenRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=512)
    device_info: Optional[str] = None


class DeviceTokenResponse(BaseModel):
    id: int
    user_id: int
    token: str
    device_info: Optional[str] = None
    is_active: bool
    last_used: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
