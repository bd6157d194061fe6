# file: controllers/notification.py

import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from sqlalchemy.dialects import postgresql, sqlite
from typing import List, Optional

from daily_checklist.database.connection import get_db
from daily_checklist.database.models import (Child, DeviceToken, Notification as NotificationModel, User,
                                             utcnow)
from daily_checklist.models.notification import (NotificationCreate, NotificationUpdate, NotificationResponse,
                                                 SystemNotificationRequest, ParentsNotificationRequest,
                                                 NewPlanNotificationRequest, ActivityStatusNotificationRequest,
                                                 FanOutResponse, DeviceTokenRequest, DeviceTokenResponse)
from daily_checklist.services import notification_service
from daily_checklist.services.auth import get_current_user
from daily_checklist.services.fcm_service import get_push_gateway
from daily_checklist.services.notification_service import PushGateway
from daily_checklist.services.permissions import Capability, require_capability

router = APIRouter()
logger = logging.getLogger(__name__)


def _dialect_insert(db: AsyncSession):
    # ON CONFLICT upserts live on the dialect-specific insert constructs.
    if db.get_bind().dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


async def _get_own_notification(db: AsyncSession, notification_id: int, current_user: User) -> NotificationModel:
    result = await db.execute(select(NotificationModel).where(NotificationModel.id == notification_id))
    db_notification = result.scalars().first()
    if not db_notification:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    if db_notification.user_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")
    return db_notification


@router.get("/", response_model=List[NotificationResponse])
async def get_user_notifications(
        child_id: Optional[int] = None,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    """
    Retrieves the caller's notifications, most recent first.
    With child_id, only rows about that child are returned.
    """
    stmt = select(NotificationModel).where(NotificationModel.user_id == current_user.id)
    if child_id is not None:
        stmt = stmt.where(NotificationModel.child_id == child_id)
    result = await db.execute(stmt.order_by(NotificationModel.created_at.desc(), NotificationModel.id.desc()))
    return result.scalars().all()


@router.post("/", response_model=NotificationResponse, status_code=status.HTTP_201_CREATED)
async def create_notification(
        notification: NotificationCreate,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
        gateway: PushGateway = Depends(get_push_gateway),
):
    result = await db.execute(select(User.id).where(User.id == notification.user_id))
    if result.scalar_one_or_none() is None:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="user_id does not exist")
    if notification.child_id is not None:
        result = await db.execute(select(Child.id).where(Child.id == notification.child_id))
        if result.scalar_one_or_none() is None:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="child_id does not exist")

    try:
        return await notification_service.notify_user_directly(
            db, gateway,
            sender_id=current_user.id,
            recipient_id=notification.user_id,
            title=notification.title,
            body=notification.body,
            type=notification.type,
            related_id=notification.related_id,
            child_id=notification.child_id,
        )
    except Exception as e:
        logger.error("Error creating notification: %s", e)
        raise HTTPException(status_code=500, detail="Failed to create notification")


@router.put("/read-all")
async def mark_all_as_read(current_user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    stmt = (
        update(NotificationModel)
        .where(NotificationModel.user_id == current_user.id, NotificationModel.is_read.is_(False))
        .values(is_read=True)
    )
    result = await db.execute(stmt)
    await db.commit()
    return {"message": "All notifications marked as read", "updated": result.rowcount}


@router.get("/unread-count")
async def get_unread_count(current_user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    stmt = select(func.count(NotificationModel.id)).where(
        NotificationModel.user_id == current_user.id,
        NotificationModel.is_read.is_(False),
    )
    result = await db.execute(stmt)
    return {"unread_count": result.scalar_one()}


@router.post("/firebase-token", response_model=DeviceTokenResponse)
async def register_device_token(
        data: DeviceTokenRequest,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    """
    Registers a device for push. A token already on file moves to the
    caller and is reactivated; there is never more than one row per token.
    """
    user_id = current_user.id
    now = utcnow()

    stmt = _dialect_insert(db)(DeviceToken).values(
        user_id=user_id,
        token=data.token,
        device_info=data.device_info,
        is_active=True,
        last_used=now,
        created_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[DeviceToken.token],
        set_=dict(
            user_id=stmt.excluded.user_id,
            device_info=stmt.excluded.device_info,
            is_active=True,
            last_used=stmt.excluded.last_used,
        ),
    )

    try:
        await db.execute(stmt)
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error("Error registering device token for user %s: %s", user_id, e)
        raise HTTPException(status_code=500, detail="Failed to register device token")

    result = await db.execute(
        select(DeviceToken).where(DeviceToken.token == data.token).execution_options(populate_existing=True)
    )
    return result.scalars().one()


@router.delete("/firebase-token/{token}")
async def deactivate_device_token(
        token: str,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(DeviceToken).where(
        DeviceToken.token == token,
        DeviceToken.user_id == current_user.id,
    ))
    device_token = result.scalars().first()
    if not device_token:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Device token not found")

    device_token.is_active = False
    await db.commit()
    return {"message": "Device token deactivated"}


@router.post("/system", response_model=FanOutResponse, status_code=status.HTTP_201_CREATED)
async def send_system_notification(
        data: SystemNotificationRequest,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
        gateway: PushGateway = Depends(get_push_gateway),
):
    require_capability(current_user, Capability.BROADCAST_NOTIFICATIONS, "Only teachers can send notifications")
    try:
        outcome = await notification_service.broadcast_to_all_parents(
            db, gateway,
            sender_id=current_user.id,
            title=data.title,
            body=data.body,
            type=data.type,
            related_id=data.related_id,
        )
    except Exception as e:
        logger.error("System notification failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to send notifications")

    return FanOutResponse(
        message="System notification sent to all parents",
        notification_count=outcome.notification_count,
        failed_count=outcome.failed_count,
    )


@router.post("/send-to-parents", response_model=FanOutResponse, status_code=status.HTTP_201_CREATED)
async def send_to_parents(
        data: ParentsNotificationRequest,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
        gateway: PushGateway = Depends(get_push_gateway),
):
    require_capability(current_user, Capability.BROADCAST_NOTIFICATIONS, "Only teachers can send notifications")
    try:
        outcome = await notification_service.broadcast_to_children_parents(
            db, gateway,
            sender_id=current_user.id,
            child_ids=data.child_ids,
            title=data.title,
            body=data.body,
            type=data.type,
            related_id=data.related_id,
        )
    except Exception as e:
        logger.error("Notification to parents of %s failed: %s", data.child_ids, e)
        raise HTTPException(status_code=500, detail="Failed to send notifications")

    return FanOutResponse(
        message="Notifications sent to parents",
        notification_count=outcome.notification_count,
        failed_count=outcome.failed_count,
    )


@router.post("/new-plan")
async def send_new_plan_notification(
        data: NewPlanNotificationRequest,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
        gateway: PushGateway = Depends(get_push_gateway),
):
    require_capability(current_user, Capability.BROADCAST_NOTIFICATIONS, "Only teachers can send notifications")
    sent = await notification_service.notify_new_plan(
        db, gateway,
        sender_id=current_user.id,
        plan_id=data.plan_id,
        child_id=data.child_id,
        plan_title=data.plan_title,
    )
    if not sent:
        raise HTTPException(status_code=500, detail="Failed to send notification")
    return {"message": "Notification sent successfully"}


@router.post("/activity-status")
async def send_activity_status_notification(
        data: ActivityStatusNotificationRequest,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
        gateway: PushGateway = Depends(get_push_gateway),
):
    require_capability(current_user, Capability.BROADCAST_NOTIFICATIONS, "Only teachers can send notifications")
    sent = await notification_service.notify_activity_status(
        db, gateway,
        sender_id=current_user.id,
        activity_id=data.activity_id,
        child_id=data.child_id,
        activity_title=data.activity_title,
        status=data.status,
    )
    if not sent:
        raise HTTPException(status_code=500, detail="Failed to send notification")
    return {"message": "Notification sent successfully"}


@router.get("/{notification_id}", response_model=NotificationResponse)
async def get_notification(
        notification_id: int,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    return await _get_own_notification(db, notification_id, current_user)


@router.put("/{notification_id}", response_model=NotificationResponse)
async def update_notification(
        notification_id: int,
        data: NotificationUpdate,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    """
    Only the read flag can change once a notification exists.
    """
    db_notification = await _get_own_notification(db, notification_id, current_user)
    db_notification.is_read = True if data.is_read is None else data.is_read
    await db.commit()
    await db.refresh(db_notification)
    return db_notification


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
        notification_id: int,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    db_notification = await _get_own_notification(db, notification_id, current_user)
    await db.delete(db_notification)
    await db.commit()
    return
