# file: controllers/plans.py

import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_
from typing import List, Optional

from daily_checklist.database.connection import get_db
from daily_checklist.database.models import Activity, Child, Plan, PlannedActivity, User
from daily_checklist.models.plan import (PlanCreate, PlanUpdate, PlanResponse, PlanType, ActivityStatusUpdate,
                                         ActivityStatusResponse, PlannedActivityResponse)
from daily_checklist.services import notification_service
from daily_checklist.services.auth import get_current_user
from daily_checklist.services.fcm_service import get_push_gateway
from daily_checklist.services.notification_service import PushGateway
from daily_checklist.services.permissions import Capability, require_capability, is_teacher, can_view_plan

router = APIRouter()
planned_activities_router = APIRouter()
logger = logging.getLogger(__name__)


async def _load_plan(db: AsyncSession, plan_id: int) -> Plan:
    stmt = select(Plan).where(Plan.id == plan_id).execution_options(populate_existing=True)
    result = await db.execute(stmt)
    plan = result.scalars().first()
    if not plan:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Plan not found")
    return plan


async def _load_planned_activity(db: AsyncSession, planned_activity_id: int) -> PlannedActivity:
    stmt = (select(PlannedActivity)
            .where(PlannedActivity.id == planned_activity_id)
            .execution_options(populate_existing=True))
    result = await db.execute(stmt)
    planned = result.scalars().first()
    if not planned:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Planned activity not found")
    return planned


async def _own_child_ids(db: AsyncSession, user: User) -> set:
    result = await db.execute(select(Child.id).where(Child.parent_id == user.id))
    return set(result.scalars().all())


async def _fetch_children(db: AsyncSession, child_ids: List[int]) -> List[Child]:
    # Keeps the caller's order; duplicates collapse onto the first occurrence.
    unique_ids = list(dict.fromkeys(child_ids))
    if not unique_ids:
        return []
    result = await db.execute(select(Child).where(Child.id.in_(unique_ids)))
    by_id = {child.id: child for child in result.scalars().all()}
    missing = [child_id for child_id in unique_ids if child_id not in by_id]
    if missing:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                            detail=f"Unknown child ids: {missing}")
    return [by_id[child_id] for child_id in unique_ids]


async def _check_activities_exist(db: AsyncSession, activity_ids):
    wanted = set(activity_ids)
    if not wanted:
        return
    result = await db.execute(select(Activity.id).where(Activity.id.in_(list(wanted))))
    missing = wanted - set(result.scalars().all())
    if missing:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                            detail=f"Unknown activity ids: {sorted(missing)}")


def _requested_child_ids(child_ids: Optional[List[int]], child_id: Optional[int]) -> List[int]:
    if child_ids:
        return child_ids
    if child_id:
        return [child_id]
    return []


@router.get("/", response_model=List[PlanResponse])
async def list_plans(
        child_id: Optional[int] = None,
        type: Optional[PlanType] = None,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    stmt = select(Plan)
    if is_teacher(current_user):
        stmt = stmt.where(Plan.teacher_id == current_user.id)
    else:
        own_ids = await _own_child_ids(db, current_user)
        stmt = stmt.where(or_(Plan.children.any(Child.id.in_(list(own_ids))), ~Plan.children.any()))

    if child_id is not None:
        stmt = stmt.where(or_(Plan.children.any(Child.id == child_id), ~Plan.children.any()))
    if type is not None:
        stmt = stmt.where(Plan.type == type)

    result = await db.execute(stmt.order_by(Plan.start_date.desc(), Plan.id.desc()))
    return result.scalars().all()


@router.post("/", response_model=PlanResponse, status_code=status.HTTP_201_CREATED)
async def create_plan(
        plan: PlanCreate,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
        gateway: PushGateway = Depends(get_push_gateway),
):
    require_capability(current_user, Capability.MANAGE_PLANS, "Only teachers can create activity plans")

    children = await _fetch_children(db, _requested_child_ids(plan.child_ids, plan.child_id))
    await _check_activities_exist(db, [item.activity_id for item in plan.activities])

    try:
        db_plan = Plan(
            teacher_id=current_user.id,
            type=plan.type,
            start_date=plan.start_date,
            child_id=plan.child_id,
            children=children,
        )
        db.add(db_plan)
        await db.flush()
        for item in plan.activities:
            db.add(PlannedActivity(
                plan_id=db_plan.id,
                activity_id=item.activity_id,
                scheduled_date=item.scheduled_date,
                scheduled_time=item.scheduled_time,
                reminder=True if item.reminder is None else item.reminder,
                completed=False,
            ))
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error("Error creating plan: %s", e)
        raise HTTPException(status_code=500, detail="Failed to create plan")

    plan_id = db_plan.id
    plan_label = "weekly" if plan.type == "weekly" else "daily"
    try:
        if children:
            outcome = await notification_service.broadcast_to_children_parents(
                db, gateway,
                sender_id=current_user.id,
                child_ids=[child.id for child in children],
                title="New Activity Plan",
                body=f"The teacher has created a new {plan_label} activity plan",
                type=notification_service.NEW_PLAN,
                related_id=str(plan_id),
            )
        else:
            # Global plans go to every parent.
            outcome = await notification_service.broadcast_to_all_parents(
                db, gateway,
                sender_id=current_user.id,
                title="New Activity Plan",
                body=f"The teacher has created a new {plan_label} activity plan",
                type=notification_service.NEW_PLAN,
                related_id=str(plan_id),
            )
        logger.info("Plan %s: %d notifications sent, %d failed", plan_id, outcome.notification_count,
                    outcome.failed_count)
    except Exception as e:
        logger.error("Plan %s was created but notifications could not be written: %s", plan_id, e)

    return await _load_plan(db, plan_id)


@router.get("/{plan_id}", response_model=PlanResponse)
async def get_plan(plan_id: int, current_user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    plan = await _load_plan(db, plan_id)
    own_ids = set() if is_teacher(current_user) else await _own_child_ids(db, current_user)
    if not can_view_plan(current_user, plan, own_ids):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")
    return plan


@router.put("/{plan_id}", response_model=PlanResponse)
async def update_plan(
        plan_id: int,
        plan_update: PlanUpdate,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
        gateway: PushGateway = Depends(get_push_gateway),
):
    require_capability(current_user, Capability.MANAGE_PLANS, "Only teachers can update activity plans")
    plan = await _load_plan(db, plan_id)
    if plan.teacher_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")

    changes = plan_update.model_dump(exclude_unset=True)
    if "child_ids" in changes:
        plan.children = await _fetch_children(db, plan_update.child_ids or [])
    elif "child_id" in changes:
        plan.children = await _fetch_children(db, [plan_update.child_id] if plan_update.child_id else [])
        plan.child_id = plan_update.child_id

    if plan_update.type is not None:
        plan.type = plan_update.type
    if plan_update.start_date is not None:
        plan.start_date = plan_update.start_date

    existing = {item.id: item for item in plan.planned_activities}
    completed_now = []
    for item in plan_update.activities or []:
        if item.id is not None:
            planned = existing.get(item.id)
            if planned is None:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND,
                                    detail=f"Planned activity {item.id} not found in this plan")
            if item.scheduled_date is not None:
                planned.scheduled_date = item.scheduled_date
            if item.scheduled_time is not None:
                planned.scheduled_time = item.scheduled_time
            if item.reminder is not None:
                planned.reminder = item.reminder
            if item.completed is not None:
                if item.completed and not planned.completed:
                    completed_now.append(planned)
                planned.completed = item.completed
        else:
            if item.activity_id is None or item.scheduled_date is None:
                raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                                    detail="New planned activities need activity_id and scheduled_date")
            await _check_activities_exist(db, [item.activity_id])
            plan.planned_activities.append(PlannedActivity(
                activity_id=item.activity_id,
                scheduled_date=item.scheduled_date,
                scheduled_time=item.scheduled_time,
                reminder=True if item.reminder is None else item.reminder,
                completed=bool(item.completed),
            ))

    for deleted_id in plan_update.deleted_activities or []:
        planned = existing.get(deleted_id)
        if planned is not None:
            plan.planned_activities.remove(planned)

    try:
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error("Error updating plan %s: %s", plan_id, e)
        raise HTTPException(status_code=500, detail="Failed to update plan")

    # A failed notification batch rolls the session back and expires loaded rows.
    sender_id = current_user.id
    child_ids = [child.id for child in plan.children]
    completed_items = [(planned.id, planned.activity.title) for planned in completed_now]
    for planned_id, activity_title in completed_items:
        for child_id in child_ids:
            await notification_service.notify_activity_status(
                db, gateway,
                sender_id=sender_id,
                activity_id=planned_id,
                child_id=child_id,
                activity_title=activity_title,
                status="completed",
            )

    return await _load_plan(db, plan_id)


@router.delete("/{plan_id}")
async def delete_plan(plan_id: int, current_user: User = Depends(get_current_user),
                      db: AsyncSession = Depends(get_db)):
    require_capability(current_user, Capability.MANAGE_PLANS, "Only teachers can delete activity plans")
    plan = await _load_plan(db, plan_id)
    if plan.teacher_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")

    try:
        await db.delete(plan)
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error("Error deleting plan %s: %s", plan_id, e)
        raise HTTPException(status_code=500, detail="Failed to delete plan")
    return {"message": "Plan deleted successfully"}


@planned_activities_router.put("/{planned_activity_id}/status", response_model=ActivityStatusResponse)
async def update_activity_status(
        planned_activity_id: int,
        data: ActivityStatusUpdate,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
        gateway: PushGateway = Depends(get_push_gateway),
):
    """
    Marks a planned activity complete or incomplete.

    A teacher change notifies the parent of every child on the plan. A parent
    change notifies the plan's teacher directly.
    """
    require_capability(current_user, Capability.UPDATE_ACTIVITY_STATUS)

    planned = await _load_planned_activity(db, planned_activity_id)
    plan = await _load_plan(db, planned.plan_id)
    child_ids = [child.id for child in plan.children]

    teacher_update = is_teacher(current_user)
    if teacher_update:
        authorized = plan.teacher_id == current_user.id
    else:
        authorized = bool(await _own_child_ids(db, current_user) & set(child_ids))
    if not authorized:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")

    changed = planned.completed != data.completed
    planned.completed = data.completed
    await db.commit()

    if changed:
        # Plain values only from here on; a failed notification batch expires the session.
        sender_id = current_user.id
        teacher_id = plan.teacher_id
        planned_id = planned.id
        activity_title = planned.activity.title
        if teacher_update:
            for child_id in child_ids:
                await notification_service.notify_activity_status(
                    db, gateway,
                    sender_id=sender_id,
                    activity_id=planned_id,
                    child_id=child_id,
                    activity_title=activity_title,
                    status="completed" if data.completed else "incomplete",
                )
        else:
            state = "completed" if data.completed else "not completed"
            try:
                await notification_service.notify_user_directly(
                    db, gateway,
                    sender_id=sender_id,
                    recipient_id=teacher_id,
                    title="Activity Status Updated",
                    body=f'A parent has marked the activity "{activity_title}" as {state}',
                    type=notification_service.ACTIVITY_STATUS,
                    related_id=str(planned_id),
                    child_id=child_ids[0] if child_ids else None,
                )
            except Exception as e:
                logger.error("Could not notify teacher %s about activity %s: %s", teacher_id, planned_id, e)

    planned = await _load_planned_activity(db, planned_activity_id)
    return ActivityStatusResponse(
        message="Activity status updated successfully",
        planned_activity=PlannedActivityResponse.model_validate(planned),
    )
