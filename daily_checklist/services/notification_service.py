# file: services/notification_service.py
"""
Notification fan-out.

Every orchestrator runs the same pipeline: resolve who should hear about an
event, write one notification per recipient inside a single transaction, then
push each written notification to the recipient's active devices. Writes are
isolated per recipient with savepoints; pushes are best effort and never fail
the orchestration.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from daily_checklist.database.models import Child, DeviceToken, Notification, Role, User

logger = logging.getLogger(__name__)

NEW_PLAN = "new_plan"
ACTIVITY_COMPLETED = "activity_completed"
ACTIVITY_STATUS = "activity_status"

CLICK_ACTION = "FLUTTER_NOTIFICATION_CLICK"


class PushGateway(Protocol):
    async def send_each(self, tokens: List[str], title: str, body: str,
                        data: Optional[Dict[str, str]] = None) -> Dict[str, bool]: ...

    async def send(self, tokens: List[str], title: str, body: str,
                   data: Optional[Dict[str, str]] = None) -> bool: ...


@dataclass
class NotificationDraft:
    recipient_id: int
    title: str
    body: str
    type: str
    related_id: Optional[str] = None
    child_id: Optional[int] = None
    sent_by: Optional[int] = None


@dataclass
class WriteResult:
    created: List[Notification] = field(default_factory=list)
    failed_count: int = 0


@dataclass
class DispatchResult:
    notification_id: Optional[int]
    success: bool
    attempted: int = 0
    delivered: int = 0
    error: Optional[str] = None


@dataclass
class FanOutResult:
    notifications: List[Notification] = field(default_factory=list)
    failed_count: int = 0
    dispatches: List[DispatchResult] = field(default_factory=list)

    @property
    def notification_count(self) -> int:
        return len(self.notifications)


async def resolve_guardians(db: AsyncSession, child_ids: Sequence[int]) -> List[Tuple[int, int]]:
    """
    Maps child ids to (child_id, parent_id) pairs in input order.

    Children without a parent are skipped, and a parent reached through
    several children is kept only for the first of them.
    """
    if not child_ids:
        return []

    stmt = select(Child.id, Child.parent_id).where(Child.id.in_(list(set(child_ids))))
    result = await db.execute(stmt)
    parent_by_child = {child_id: parent_id for child_id, parent_id in result.all()}

    seen_parents = set()
    resolved = []
    for child_id in child_ids:
        parent_id = parent_by_child.get(child_id)
        if parent_id is None:
            logger.warning("Child %s has no linked parent, skipping", child_id)
            continue
        if parent_id in seen_parents:
            continue
        seen_parents.add(parent_id)
        resolved.append((child_id, parent_id))
    return resolved


async def write_notifications(db: AsyncSession, drafts: Sequence[NotificationDraft]) -> WriteResult:
    """
    Persists the drafts in one transaction, each under its own savepoint.

    A draft that fails to flush is rolled back to its savepoint and counted
    in failed_count; the rest are committed together. Anything that breaks
    the outer transaction rolls everything back and is re-raised.
    """
    result = WriteResult()
    if not drafts:
        return result

    try:
        for draft in drafts:
            notification = Notification(
                user_id=draft.recipient_id,
                title=draft.title,
                body=draft.body,
                type=draft.type,
                related_id=draft.related_id,
                child_id=draft.child_id,
                is_read=False,
                sent_by=draft.sent_by,
            )
            try:
                async with db.begin_nested():
                    db.add(notification)
            except SQLAlchemyError as e:
                logger.error("Failed to write notification for user %s: %s", draft.recipient_id, e)
                result.failed_count += 1
                continue
            result.created.append(notification)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return result


def build_push_payload(notification: Notification) -> Dict[str, str]:
    return {
        "notification_id": str(notification.id),
        "type": notification.type,
        "related_id": notification.related_id or "",
        "child_id": str(notification.child_id) if notification.child_id is not None else "",
        "click_action": CLICK_ACTION,
    }


async def dispatch_push(db: AsyncSession, notification: Notification, gateway: PushGateway) -> DispatchResult:
    """Sends a written notification to every active device of its recipient. Never raises."""
    try:
        stmt = select(DeviceToken.token).where(
            DeviceToken.user_id == notification.user_id,
            DeviceToken.is_active.is_(True),
        ).order_by(DeviceToken.id)
        result = await db.execute(stmt)
        tokens = list(result.scalars().all())

        if not tokens:
            logger.info("User %s has no active device tokens. Skipping push notification.", notification.user_id)
            return DispatchResult(notification.id, success=False, error="no active device tokens")

        outcomes = await gateway.send_each(tokens, notification.title, notification.body,
                                           build_push_payload(notification))
        delivered = 0
        for token, ok in outcomes.items():
            if ok:
                delivered += 1
            else:
                logger.warning("Push delivery failed for user %s on token %s...", notification.user_id, token[:12])

        return DispatchResult(
            notification.id,
            success=delivered > 0,
            attempted=len(tokens),
            delivered=delivered,
            error=None if delivered else "delivery failed for every token",
        )
    except Exception as e:
        logger.error("Error sending push notification %s: %s", notification.id, e)
        return DispatchResult(notification.id, success=False, error=str(e))


async def fan_out(db: AsyncSession, drafts: Sequence[NotificationDraft], gateway: PushGateway) -> FanOutResult:
    written = await write_notifications(db, drafts)
    dispatches = []
    for notification in written.created:
        dispatches.append(await dispatch_push(db, notification, gateway))
    return FanOutResult(notifications=written.created, failed_count=written.failed_count, dispatches=dispatches)


async def broadcast_to_all_parents(db: AsyncSession, gateway: PushGateway, *, sender_id: Optional[int], title: str,
                                   body: str, type: str, related_id: Optional[str] = None) -> FanOutResult:
    stmt = select(User.id).where(User.role == Role.PARENT).order_by(User.id)
    result = await db.execute(stmt)
    drafts = [
        NotificationDraft(recipient_id=parent_id, title=title, body=body, type=type, related_id=related_id,
                          sent_by=sender_id)
        for parent_id in result.scalars().all()
    ]
    return await fan_out(db, drafts, gateway)


async def broadcast_to_children_parents(db: AsyncSession, gateway: PushGateway, *, sender_id: Optional[int],
                                        child_ids: Sequence[int], title: str, body: str, type: str,
                                        related_id: Optional[str] = None) -> FanOutResult:
    drafts = [
        NotificationDraft(recipient_id=parent_id, title=title, body=body, type=type, related_id=related_id,
                          child_id=child_id, sent_by=sender_id)
        for child_id, parent_id in await resolve_guardians(db, child_ids)
    ]
    return await fan_out(db, drafts, gateway)


async def notify_child_guardian(db: AsyncSession, gateway: PushGateway, *, sender_id: Optional[int], child_id: int,
                                title: str, body: str, type: str, related_id: Optional[str] = None) -> bool:
    """
    Notifies the parent of a single child.

    Returns False, without raising, when the child has no parent on file
    or the write did not go through.
    """
    try:
        resolved = await resolve_guardians(db, [child_id])
        if not resolved:
            logger.warning("Cannot send notification: Child %s has no linked parent", child_id)
            return False
        _, parent_id = resolved[0]
        draft = NotificationDraft(recipient_id=parent_id, title=title, body=body, type=type, related_id=related_id,
                                  child_id=child_id, sent_by=sender_id)
        result = await fan_out(db, [draft], gateway)
    except SQLAlchemyError as e:
        logger.error("Error sending %s notification for child %s: %s", type, child_id, e)
        return False
    return result.notification_count > 0


async def notify_new_plan(db: AsyncSession, gateway: PushGateway, *, sender_id: Optional[int], plan_id,
                          child_id: int, plan_title: str) -> bool:
    return await notify_child_guardian(
        db, gateway,
        sender_id=sender_id,
        child_id=child_id,
        title="New Plan",
        body=f"The teacher has created a new plan: {plan_title}",
        type=NEW_PLAN,
        related_id=str(plan_id),
    )


async def notify_activity_status(db: AsyncSession, gateway: PushGateway, *, sender_id: Optional[int], activity_id,
                                 child_id: int, activity_title: str, status: str) -> bool:
    status_text = "completed" if status == "completed" else "updated"
    return await notify_child_guardian(
        db, gateway,
        sender_id=sender_id,
        child_id=child_id,
        title="Activity Status Updated",
        body=f"Activity '{activity_title}' has been {status_text}",
        type=ACTIVITY_COMPLETED,
        related_id=str(activity_id),
    )


async def notify_user_directly(db: AsyncSession, gateway: PushGateway, *, sender_id: Optional[int],
                               recipient_id: int, title: str, body: str, type: str,
                               related_id: Optional[str] = None, child_id: Optional[int] = None) -> Notification:
    """
    Creates one notification for an explicit recipient without going through
    guardian resolution. Used for messages addressed to a teacher and for the
    plain create endpoint. Database errors propagate to the caller.
    """
    notification = Notification(
        user_id=recipient_id,
        title=title,
        body=body,
        type=type,
        related_id=related_id,
        child_id=child_id,
        is_read=False,
        sent_by=sender_id,
    )
    try:
        db.add(notification)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await dispatch_push(db, notification, gateway)
    return notification
