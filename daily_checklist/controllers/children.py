from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List

from daily_checklist.database.connection import get_db
from daily_checklist.database.models import Child, Role, User
from daily_checklist.models.child import ChildCreate, ChildUpdate, ChildResponse
from daily_checklist.services.auth import get_current_user
from daily_checklist.services.permissions import Capability, require_capability, can_access_child, is_teacher

router = APIRouter()


async def get_accessible_child(db: AsyncSession, child_id: int, current_user: User, action: str = "view") -> Child:
    result = await db.execute(select(Child).where(Child.id == child_id))
    child = result.scalars().first()
    if not child:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Child not found")
    if not can_access_child(current_user, child):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Unauthorized to {action} this child")
    return child


@router.get("/", response_model=List[ChildResponse])
async def list_children(current_user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    if is_teacher(current_user):
        stmt = select(Child).where(Child.teacher_id == current_user.id)
    else:
        stmt = select(Child).where(Child.parent_id == current_user.id)
    result = await db.execute(stmt.order_by(Child.id))
    return result.scalars().all()


@router.post("/", response_model=ChildResponse, status_code=status.HTTP_201_CREATED)
async def create_child(
        child: ChildCreate,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    require_capability(current_user, Capability.MANAGE_CHILDREN, "Only teachers can add children")

    result = await db.execute(select(User).where(User.id == child.parent_id, User.role == Role.PARENT))
    if not result.scalars().first():
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="parent_id must reference a parent")

    db_child = Child(**child.model_dump(), teacher_id=current_user.id)
    db.add(db_child)
    await db.commit()
    await db.refresh(db_child)
    return db_child


@router.get("/{child_id}", response_model=ChildResponse)
async def get_child(child_id: int, current_user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await get_accessible_child(db, child_id, current_user)


@router.put("/{child_id}", response_model=ChildResponse)
async def update_child(
        child_id: int,
        child_update: ChildUpdate,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    child = await get_accessible_child(db, child_id, current_user, "update")
    for field, value in child_update.model_dump(exclude_unset=True).items():
        setattr(child, field, value)
    await db.commit()
    await db.refresh(child)
    return child


@router.delete("/{child_id}")
async def delete_child(child_id: int, current_user: User = Depends(get_current_user),
                       db: AsyncSession = Depends(get_db)):
    require_capability(current_user, Capability.MANAGE_CHILDREN, "Unauthorized to delete this child")
    child = await get_accessible_child(db, child_id, current_user, "delete")
    await db.delete(child)
    await db.commit()
    return {"message": "Child deleted successfully"}
