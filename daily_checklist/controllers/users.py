from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_
from typing import List, Optional

from daily_checklist.database.connection import get_db
from daily_checklist.database.models import Role, User, UserStatus
from daily_checklist.models.user import UserResponse, UserUpdate, ResetPasswordRequest
from daily_checklist.services.auth import get_current_user
from daily_checklist.services.permissions import Capability, has_capability, require_capability
from daily_checklist.utils.security import hash_password

router = APIRouter()


async def _get_user_or_404(db: AsyncSession, user_id: int) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalars().first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@router.get("/", response_model=List[UserResponse])
async def list_users(
        role: Optional[Role] = None,
        created_by: Optional[int] = None,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    """
    Teachers see themselves and the accounts they created.
    Parents see every teacher and themselves.
    """
    stmt = select(User).order_by(User.created_at.desc(), User.id.desc())
    if role is not None:
        stmt = stmt.where(User.role == role)

    if has_capability(current_user, Capability.MANAGE_USERS):
        if created_by is not None and created_by != current_user.id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")
        stmt = stmt.where(or_(User.created_by == current_user.id, User.id == current_user.id))
    else:
        stmt = stmt.where(or_(User.role == Role.TEACHER, User.id == current_user.id))

    result = await db.execute(stmt)
    return result.scalars().all()


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
        user_id: int,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    user = await _get_user_or_404(db, user_id)
    if user.role == Role.TEACHER or has_capability(current_user, Capability.MANAGE_USERS):
        return user
    if current_user.id not in (user.id, user.created_by):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")
    return user


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
        user_id: int,
        user_update: UserUpdate,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    user = await _get_user_or_404(db, user_id)
    can_manage = has_capability(current_user, Capability.MANAGE_USERS)
    if not can_manage and current_user.id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")

    changes = user_update.model_dump(exclude_unset=True)
    if "email" in changes and changes["email"] != user.email:
        result = await db.execute(select(User).where(User.email == changes["email"], User.id != user.id))
        if result.scalars().first():
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

    # Only teachers may change account status.
    status_value = changes.pop("status", None)
    if status_value is not None and can_manage:
        user.status = UserStatus(status_value)

    for field, value in changes.items():
        setattr(user, field, value)

    await db.commit()
    await db.refresh(user)
    return user


@router.delete("/{user_id}")
async def deactivate_user(
        user_id: int,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    require_capability(current_user, Capability.MANAGE_USERS, "Unauthorized")
    user = await _get_user_or_404(db, user_id)

    if user.id == current_user.id or user.created_by != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot delete this user")

    # Accounts are never removed, only deactivated.
    user.status = UserStatus.INACTIVE
    await db.commit()
    return {"message": "User deactivated successfully"}


@router.put("/{user_id}/change-password")
async def reset_user_password(
        user_id: int,
        data: ResetPasswordRequest,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    user = await _get_user_or_404(db, user_id)
    can_manage = has_capability(current_user, Capability.MANAGE_USERS)

    if not can_manage and current_user.id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")
    if can_manage and current_user.id != user.id and user.created_by != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="You can only reset passwords for users you created")

    user.password = hash_password(data.new_password)
    if data.is_temp_password is not None:
        user.is_temp_password = data.is_temp_password
    await db.commit()
    return {"message": "Password changed successfully"}
