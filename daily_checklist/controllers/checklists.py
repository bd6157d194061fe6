import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List

from daily_checklist.controllers.children import get_accessible_child
from daily_checklist.database.connection import get_db
from daily_checklist.database.models import (Activity, Checklist, ChecklistStatus, HomeObservation, SchoolObservation,
                                             User, utcnow)
from daily_checklist.models.checklist import (ChecklistCreate, ChecklistUpdate, ChecklistStatusUpdate,
                                              ChecklistResponse, HomeObservationCreate, SchoolObservationCreate)
from daily_checklist.services.auth import get_current_user
from daily_checklist.services.permissions import Capability, require_capability

router = APIRouter()
logger = logging.getLogger(__name__)


async def _load_checklist(db: AsyncSession, checklist_id: int) -> Checklist:
    stmt = select(Checklist).where(Checklist.id == checklist_id).execution_options(populate_existing=True)
    result = await db.execute(stmt)
    checklist = result.scalars().first()
    if not checklist:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Checklist not found")
    return checklist


async def _accessible_checklist(db: AsyncSession, checklist_id: int, current_user: User,
                                action: str = "view") -> Checklist:
    checklist = await _load_checklist(db, checklist_id)
    await get_accessible_child(db, checklist.child_id, current_user, action)
    return checklist


@router.get("/", response_model=List[ChecklistResponse])
async def list_checklists(
        child_id: int,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    await get_accessible_child(db, child_id, current_user)
    stmt = (select(Checklist)
            .where(Checklist.child_id == child_id)
            .order_by(Checklist.assigned_date.desc(), Checklist.id.desc()))
    result = await db.execute(stmt)
    return result.scalars().all()


@router.post("/", response_model=ChecklistResponse, status_code=status.HTTP_201_CREATED)
async def create_checklist(
        checklist: ChecklistCreate,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    require_capability(current_user, Capability.ASSIGN_CHECKLISTS, "Only teachers can assign checklists")
    await get_accessible_child(db, checklist.child_id, current_user, "assign a checklist to")

    result = await db.execute(select(Activity.id).where(Activity.id == checklist.activity_id))
    if result.scalar_one_or_none() is None:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="activity_id does not exist")

    # Both observation slots exist from the start, empty until recorded.
    db_checklist = Checklist(
        child_id=checklist.child_id,
        activity_id=checklist.activity_id,
        assigned_date=utcnow(),
        due_date=checklist.due_date,
        status=ChecklistStatus.PENDING.value,
        custom_steps_used=checklist.custom_steps_used,
        home_observation=HomeObservation(completed=False),
        school_observation=SchoolObservation(completed=False),
    )
    try:
        db.add(db_checklist)
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error("Error creating checklist: %s", e)
        raise HTTPException(status_code=500, detail="Failed to create checklist")
    return await _load_checklist(db, db_checklist.id)


@router.get("/{checklist_id}", response_model=ChecklistResponse)
async def get_checklist(checklist_id: int, current_user: User = Depends(get_current_user),
                        db: AsyncSession = Depends(get_db)):
    return await _accessible_checklist(db, checklist_id, current_user)


@router.put("/{checklist_id}", response_model=ChecklistResponse)
async def update_checklist(
        checklist_id: int,
        checklist_update: ChecklistUpdate,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    require_capability(current_user, Capability.ASSIGN_CHECKLISTS, "Only teachers can update checklists")
    checklist = await _accessible_checklist(db, checklist_id, current_user, "update")
    for field, value in checklist_update.model_dump(exclude_unset=True).items():
        setattr(checklist, field, value)
    await db.commit()
    return await _load_checklist(db, checklist_id)


@router.delete("/{checklist_id}")
async def delete_checklist(checklist_id: int, current_user: User = Depends(get_current_user),
                           db: AsyncSession = Depends(get_db)):
    require_capability(current_user, Capability.ASSIGN_CHECKLISTS, "Only teachers can delete checklists")
    checklist = await _accessible_checklist(db, checklist_id, current_user, "delete")
    await db.delete(checklist)
    await db.commit()
    return {"message": "Checklist deleted successfully"}


@router.put("/{checklist_id}/status", response_model=ChecklistResponse)
async def update_checklist_status(
        checklist_id: int,
        data: ChecklistStatusUpdate,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    checklist = await _accessible_checklist(db, checklist_id, current_user, "update")
    checklist.status = data.status
    await db.commit()
    return await _load_checklist(db, checklist_id)


def _record(observation, data):
    for field, value in data.model_dump().items():
        setattr(observation, field, value)
    observation.completed = True
    observation.completed_at = utcnow()


@router.post("/{checklist_id}/home-observation", response_model=ChecklistResponse)
async def add_home_observation(
        checklist_id: int,
        data: HomeObservationCreate,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    require_capability(current_user, Capability.RECORD_HOME_OBSERVATION, "Only parents can add home observations")
    checklist = await _accessible_checklist(db, checklist_id, current_user, "observe")

    if checklist.home_observation is None:
        checklist.home_observation = HomeObservation()
    _record(checklist.home_observation, data)
    checklist.status = ChecklistStatus.COMPLETED.value
    await db.commit()
    return await _load_checklist(db, checklist_id)


@router.post("/{checklist_id}/school-observation", response_model=ChecklistResponse)
async def add_school_observation(
        checklist_id: int,
        data: SchoolObservationCreate,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    require_capability(current_user, Capability.RECORD_SCHOOL_OBSERVATION,
                       "Only teachers can add school observations")
    checklist = await _accessible_checklist(db, checklist_id, current_user, "observe")

    if checklist.school_observation is None:
        checklist.school_observation = SchoolObservation()
    _record(checklist.school_observation, data)
    checklist.status = ChecklistStatus.COMPLETED.value
    await db.commit()
    return await _load_checklist(db, checklist_id)
