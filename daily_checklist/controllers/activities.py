import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List

from daily_checklist.database.connection import get_db
from daily_checklist.database.models import Activity, ActivityStep, User
from daily_checklist.models.activity import ActivityCreate, ActivityUpdate, ActivityResponse, CustomStepsRequest
from daily_checklist.services.auth import get_current_user
from daily_checklist.services.permissions import Capability, require_capability

router = APIRouter()
logger = logging.getLogger(__name__)


async def _load_activity(db: AsyncSession, activity_id: int) -> Activity:
    stmt = select(Activity).where(Activity.id == activity_id).execution_options(populate_existing=True)
    result = await db.execute(stmt)
    activity = result.scalars().first()
    if not activity:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Activity not found")
    return activity


async def _check_next_activity(db: AsyncSession, next_activity_id):
    if next_activity_id is None:
        return
    result = await db.execute(select(Activity.id).where(Activity.id == next_activity_id))
    if result.scalar_one_or_none() is None:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="next_activity_id does not exist")


@router.get("/", response_model=List[ActivityResponse])
async def list_activities(current_user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Activity).order_by(Activity.created_at.desc(), Activity.id.desc()))
    activities = result.scalars().all()
    logger.info("Found %d activities", len(activities))
    return activities


@router.post("/", response_model=ActivityResponse, status_code=status.HTTP_201_CREATED)
async def create_activity(
        activity: ActivityCreate,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    require_capability(current_user, Capability.MANAGE_ACTIVITIES, "Only teachers can add activities")
    await _check_next_activity(db, activity.next_activity_id)

    db_activity = Activity(
        **activity.model_dump(exclude={"steps", "photos"}),
        created_by=current_user.id,
    )
    db.add(db_activity)
    await db.flush()
    db.add(ActivityStep(
        activity_id=db_activity.id,
        teacher_id=current_user.id,
        steps=activity.steps,
        photos=activity.photos or [],
    ))
    await db.commit()
    return await _load_activity(db, db_activity.id)


@router.get("/{activity_id}", response_model=ActivityResponse)
async def get_activity(activity_id: int, current_user: User = Depends(get_current_user),
                       db: AsyncSession = Depends(get_db)):
    return await _load_activity(db, activity_id)


@router.put("/{activity_id}", response_model=ActivityResponse)
async def update_activity(
        activity_id: int,
        activity_update: ActivityUpdate,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    require_capability(current_user, Capability.MANAGE_ACTIVITIES, "Only teachers can update activities")
    activity = await _load_activity(db, activity_id)
    if activity.created_by != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You can only update your own activities")

    changes = activity_update.model_dump(exclude_unset=True)
    min_age = changes.get("min_age", activity.min_age)
    max_age = changes.get("max_age", activity.max_age)
    if max_age < min_age:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                            detail="max_age must be greater than or equal to min_age")
    if "next_activity_id" in changes:
        await _check_next_activity(db, changes["next_activity_id"])

    for field, value in changes.items():
        setattr(activity, field, value)
    await db.commit()
    return await _load_activity(db, activity_id)


@router.delete("/{activity_id}")
async def delete_activity(activity_id: int, current_user: User = Depends(get_current_user),
                          db: AsyncSession = Depends(get_db)):
    require_capability(current_user, Capability.MANAGE_ACTIVITIES, "Only teachers can delete activities")
    activity = await _load_activity(db, activity_id)
    if activity.created_by != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You can only delete your own activities")

    await db.delete(activity)
    await db.commit()
    return {"message": "Activity deleted successfully"}


@router.post("/{activity_id}/steps", response_model=ActivityResponse)
async def add_custom_steps(
        activity_id: int,
        data: CustomStepsRequest,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    """Creates or replaces the calling teacher's own step list for an activity."""
    require_capability(current_user, Capability.MANAGE_ACTIVITIES, "Only teachers can add custom steps")
    await _load_activity(db, activity_id)

    result = await db.execute(select(ActivityStep).where(
        ActivityStep.activity_id == activity_id,
        ActivityStep.teacher_id == current_user.id,
    ))
    activity_step = result.scalars().first()

    if activity_step:
        activity_step.steps = data.steps
        if data.photos is not None:
            activity_step.photos = data.photos
    else:
        db.add(ActivityStep(
            activity_id=activity_id,
            teacher_id=current_user.id,
            steps=data.steps,
            photos=data.photos or [],
        ))
    await db.commit()
    return await _load_activity(db, activity_id)
