import enum
from datetime import datetime, timezone
from urllib.parse import quote

from sqlalchemy.orm import relationship
from sqlalchemy import (Column, Integer, String, Date, DateTime, Text, Boolean, JSON, ForeignKey, Float, Table,
                        UniqueConstraint, Enum)

from daily_checklist.database.connection import Base


def utcnow() -> datetime:
    # Naive UTC, matching what DateTime columns hand back.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, enum.Enum):
    TEACHER = "teacher"
    PARENT = "parent"


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class ChecklistStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password = Column(String(255), nullable=False)
    role = Column(Enum(Role, name="user_role", values_callable=_enum_values), nullable=False, index=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    is_temp_password = Column(Boolean, default=False, nullable=False)
    phone_number = Column(String(20), nullable=True)
    address = Column(Text, nullable=True)
    profile_picture = Column(Text, nullable=True)
    status = Column(Enum(UserStatus, name="user_status", values_callable=_enum_values),
                    default=UserStatus.ACTIVE, nullable=False)
    token_version = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Child(Base):
    __tablename__ = "children"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    age = Column(Integer, nullable=False)
    date_of_birth = Column(Date, nullable=True)
    parent_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    teacher_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    avatar_url = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    @property
    def display_avatar_url(self) -> str:
        if self.avatar_url:
            return self.avatar_url
        return f"https://api.dicebear.com/9.x/thumbs/png?seed={quote(self.name or '')}"


class Activity(Base):
    __tablename__ = "activities"
    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    environment = Column(String(20), nullable=False)
    difficulty = Column(String(20), nullable=False)
    min_age = Column(Float, nullable=False)
    max_age = Column(Float, nullable=False)
    duration = Column(Integer, nullable=True)
    next_activity_id = Column(Integer, ForeignKey("activities.id", ondelete="SET NULL"), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    activity_steps = relationship("ActivityStep", back_populates="activity", cascade="all, delete-orphan",
                                  lazy="selectin")

    def is_appropriate_for_age(self, age: float) -> bool:
        return self.min_age <= age <= self.max_age


class ActivityStep(Base):
    __tablename__ = "activity_steps"
    id = Column(Integer, primary_key=True, index=True)
    activity_id = Column(Integer, ForeignKey("activities.id", ondelete="CASCADE"), nullable=False)
    teacher_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    steps = Column(JSON, nullable=False)
    photos = Column(JSON, nullable=True)

    activity = relationship("Activity", back_populates="activity_steps")
    __table_args__ = (UniqueConstraint('activity_id', 'teacher_id', name='_activity_teacher_uc'),)


plan_children = Table(
    "plan_children",
    Base.metadata,
    Column("plan_id", Integer, ForeignKey("plans.id", ondelete="CASCADE"), primary_key=True),
    Column("child_id", Integer, ForeignKey("children.id", ondelete="CASCADE"), primary_key=True),
)


class Plan(Base):
    __tablename__ = "plans"
    id = Column(Integer, primary_key=True, index=True)
    teacher_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(20), nullable=False)
    start_date = Column(Date, nullable=False)
    # Single-child link kept alongside plan_children for older clients.
    child_id = Column(Integer, ForeignKey("children.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    children = relationship("Child", secondary=plan_children, lazy="selectin", order_by="Child.id")
    planned_activities = relationship("PlannedActivity", back_populates="plan", cascade="all, delete-orphan",
                                      lazy="selectin", order_by="PlannedActivity.id")


class PlannedActivity(Base):
    __tablename__ = "planned_activities"
    id = Column(Integer, primary_key=True, index=True)
    plan_id = Column(Integer, ForeignKey("plans.id", ondelete="CASCADE"), nullable=False, index=True)
    activity_id = Column(Integer, ForeignKey("activities.id"), nullable=False)
    scheduled_date = Column(Date, nullable=False)
    scheduled_time = Column(String(50), nullable=True)
    reminder = Column(Boolean, default=True, nullable=False)
    completed = Column(Boolean, default=False, nullable=False)

    plan = relationship("Plan", back_populates="planned_activities")
    activity = relationship("Activity", lazy="selectin")


class Checklist(Base):
    __tablename__ = "checklists"
    id = Column(Integer, primary_key=True, index=True)
    child_id = Column(Integer, ForeignKey("children.id", ondelete="CASCADE"), nullable=False, index=True)
    activity_id = Column(Integer, ForeignKey("activities.id"), nullable=False)
    assigned_date = Column(DateTime, default=utcnow, nullable=False)
    due_date = Column(DateTime, nullable=True)
    status = Column(String(20), default=ChecklistStatus.PENDING.value, nullable=False)
    custom_steps_used = Column(JSON, nullable=True)

    child = relationship("Child")
    activity = relationship("Activity")
    home_observation = relationship("HomeObservation", back_populates="checklist", uselist=False,
                                    cascade="all, delete-orphan", lazy="selectin")
    school_observation = relationship("SchoolObservation", back_populates="checklist", uselist=False,
                                      cascade="all, delete-orphan", lazy="selectin")

    @property
    def is_overdue(self) -> bool:
        if not self.due_date or self.status == ChecklistStatus.COMPLETED.value:
            return False
        due = self.due_date
        if due.tzinfo is not None:
            due = due.astimezone(timezone.utc).replace(tzinfo=None)
        return due < utcnow()

    @property
    def is_completed(self) -> bool:
        return (self.status == ChecklistStatus.COMPLETED.value
                or bool(self.home_observation and self.home_observation.completed)
                or bool(self.school_observation and self.school_observation.completed))

    @property
    def status_icon(self) -> str:
        if self.is_completed:
            return "✓"
        if self.is_overdue:
            return "⚠️"
        if self.status == ChecklistStatus.IN_PROGRESS.value:
            return "🔄"
        return "⏱️"


class HomeObservation(Base):
    __tablename__ = "home_observations"
    id = Column(Integer, primary_key=True, index=True)
    checklist_id = Column(Integer, ForeignKey("checklists.id", ondelete="CASCADE"), nullable=False, unique=True)
    completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    duration = Column(Integer, nullable=True)
    engagement = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)

    checklist = relationship("Checklist", back_populates="home_observation")


class SchoolObservation(Base):
    __tablename__ = "school_observations"
    id = Column(Integer, primary_key=True, index=True)
    checklist_id = Column(Integer, ForeignKey("checklists.id", ondelete="CASCADE"), nullable=False, unique=True)
    completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    duration = Column(Integer, nullable=True)
    engagement = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)
    learning_outcomes = Column(Text, nullable=True)

    checklist = relationship("Checklist", back_populates="school_observation")


class Notification(Base):
    __tablename__ = "notifications"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)
    type = Column(String(100), nullable=False)
    related_id = Column(String(255), nullable=True)
    child_id = Column(Integer, ForeignKey("children.id", ondelete="SET NULL"), nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    sent_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class DeviceToken(Base):
    __tablename__ = "device_tokens"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token = Column(String(512), unique=True, nullable=False)
    device_info = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_used = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
