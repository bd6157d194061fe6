import logging

from fastapi import APIRouter, Depends, status, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from daily_checklist.database.connection import get_db
from daily_checklist.database.models import Role, User, UserStatus
from daily_checklist.models.user import (TeacherRegister, ParentRegister, LoginRequest, ChangePasswordRequest,
                                         UserResponse, AuthResponse, ParentCreatedResponse)
from daily_checklist.services.auth import get_current_user
from daily_checklist.services.permissions import Capability, require_capability
from daily_checklist.utils.security import hash_password, verify_password, create_user_token

router = APIRouter()
logger = logging.getLogger(__name__)


async def _ensure_email_free(db: AsyncSession, email: str):
    result = await db.execute(select(User).where(User.email == email))
    if result.scalars().first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")


async def _create_user(db: AsyncSession, data: TeacherRegister, role: Role, created_by=None,
                       is_temp_password: bool = False) -> User:
    await _ensure_email_free(db, data.email)
    new_user = User(
        name=data.name,
        email=data.email,
        password=hash_password(data.password),
        role=role,
        created_by=created_by,
        is_temp_password=is_temp_password,
        phone_number=data.phone_number,
        address=data.address,
        profile_picture=data.profile_picture,
        status=UserStatus.ACTIVE,
        token_version=0,
    )
    try:
        db.add(new_user)
        await db.commit()
        await db.refresh(new_user)
    except Exception as e:
        await db.rollback()
        logger.error("Database error on user registration: %s", e)
        raise HTTPException(status_code=500, detail="Registration failed due to database error")
    return new_user


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register_teacher(data: TeacherRegister, db: AsyncSession = Depends(get_db)):
    """Public sign-up. Every self-registered account is a teacher."""
    user = await _create_user(db, data, Role.TEACHER)
    return AuthResponse(user=UserResponse.model_validate(user), token=create_user_token(user))


@router.post("/register-parent", response_model=ParentCreatedResponse, status_code=status.HTTP_201_CREATED)
async def register_parent(
        data: ParentRegister,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
):
    require_capability(current_user, Capability.REGISTER_PARENTS, "Only teachers can create parent accounts")
    user = await _create_user(db, data, Role.PARENT, created_by=current_user.id, is_temp_password=True)
    return ParentCreatedResponse(user=UserResponse.model_validate(user), message="Parent account created")


@router.post("/login", response_model=AuthResponse)
async def login(credentials: LoginRequest, db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(User).where(User.email == credentials.email))
    user = result.scalars().first()

    if not user or not verify_password(credentials.password, user.password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="The provided credentials are incorrect.")
    if user.status == UserStatus.INACTIVE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is inactive")

    return AuthResponse(user=UserResponse.model_validate(user), token=create_user_token(user))


@router.post("/logout")
async def logout(current_user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    current_user.token_version = (current_user.token_version or 0) + 1
    await db.commit()
    return {"message": "Logged out successfully"}


@router.get("/user", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    return UserResponse.model_validate(current_user)


@router.post("/change-password")
async def change_password(
        data: ChangePasswordRequest,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
):
    if data.current_password and not verify_password(data.current_password, current_user.password):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Current password is incorrect")

    current_user.password = hash_password(data.new_password)
    if current_user.is_temp_password:
        current_user.is_temp_password = False
    await db.commit()
    return {"message": "Password changed successfully"}
