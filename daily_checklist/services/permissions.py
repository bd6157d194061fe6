"""
Role-based capability checks.

Every operation names the capability it needs; roles are mapped to the
capabilities they hold here and nowhere else.
"""
import enum
from typing import Optional

from fastapi import HTTPException, status

from daily_checklist.database.models import Role, User, Child, Plan


class Capability(str, enum.Enum):
    REGISTER_PARENTS = "register_parents"
    MANAGE_USERS = "manage_users"
    MANAGE_CHILDREN = "manage_children"
    MANAGE_ACTIVITIES = "manage_activities"
    MANAGE_PLANS = "manage_plans"
    ASSIGN_CHECKLISTS = "assign_checklists"
    RECORD_SCHOOL_OBSERVATION = "record_school_observation"
    RECORD_HOME_OBSERVATION = "record_home_observation"
    UPDATE_ACTIVITY_STATUS = "update_activity_status"
    BROADCAST_NOTIFICATIONS = "broadcast_notifications"


ROLE_CAPABILITIES = {
    Role.TEACHER: frozenset({
        Capability.REGISTER_PARENTS,
        Capability.MANAGE_USERS,
        Capability.MANAGE_CHILDREN,
        Capability.MANAGE_ACTIVITIES,
        Capability.MANAGE_PLANS,
        Capability.ASSIGN_CHECKLISTS,
        Capability.RECORD_SCHOOL_OBSERVATION,
        Capability.RECORD_HOME_OBSERVATION,
        Capability.UPDATE_ACTIVITY_STATUS,
        Capability.BROADCAST_NOTIFICATIONS,
    }),
    Role.PARENT: frozenset({
        Capability.RECORD_HOME_OBSERVATION,
        Capability.UPDATE_ACTIVITY_STATUS,
    }),
}


def has_capability(user: User, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(Role(user.role), frozenset())


def require_capability(user: User, capability: Capability, detail: Optional[str] = None) -> None:
    if not has_capability(user, capability):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail or "You are not allowed to perform this action",
        )


def is_teacher(user: User) -> bool:
    return Role(user.role) == Role.TEACHER


def can_access_child(user: User, child: Child) -> bool:
    """A teacher sees the children they teach; a parent sees their own."""
    if is_teacher(user):
        return child.teacher_id == user.id
    return child.parent_id == user.id


def can_view_plan(user: User, plan: Plan, own_child_ids: set) -> bool:
    if is_teacher(user):
        return plan.teacher_id == user.id
    # Plans without children are global and visible to every parent.
    if not plan.children:
        return True
    return any(child.id in own_child_ids for child in plan.children)
