# notification_service.py — Notification fanout: persist, push, email
"""
NotificationService is the only writer of Notification rows. A notification
to the member who triggered it, or to a member who is no longer active in
the company, is never created.

After the row is committed the service pushes it to the recipient's
websocket room and sends an email. Both deliveries are bounded and their
failures land in the FailureSink; neither can undo the stored row.
"""
import logging
from typing import Any, Dict, List, Optional, Protocol, Tuple

from sqlalchemy.ext.asyncio import async_sessionmaker

from models import Notification, NotificationType, EntityRef, User, ref_columns
from repositories import MemberRepository
from side_effects import FailureSink, SIDE_EFFECT_TIMEOUT_SECONDS, default_sink, run_bounded

logger = logging.getLogger("taskhub.notifications")


class RealtimePublisher(Protocol):
    async def publish(self, recipient_id: str, payload: Dict[str, Any]) -> None: ...


def _ts(dt) -> Optional[str]:
    return dt.isoformat() if dt else None


def notification_payload(n: Notification, actor: Optional[User] = None) -> Dict[str, Any]:
    actor = actor if actor is not None else n.actor
    return {
        "id": n.id,
        "type": n.type.value if hasattr(n.type, "value") else n.type,
        "message": n.message,
        "recipient_id": n.recipient_id,
        "triggered_by": {
            "id": n.triggered_by,
            "name": actor.name if actor else None,
            "email": actor.email if actor else None,
        },
        "related_type": n.related_type,
        "related_id": n.related_id,
        "read": bool(n.read),
        "read_at": _ts(n.read_at),
        "created_at": _ts(n.created_at),
    }


# ============================================================
# RECIPIENT POLICY
# ============================================================

def status_change_recipients(actor_id: str, assignee_id: Optional[str],
                             creator_id: Optional[str]) -> List[str]:
    """Assignee first, then creator; never the actor, never twice."""
    recipients: List[str] = []
    for member_id in (assignee_id, creator_id):
        if member_id and member_id != actor_id and member_id not in recipients:
            recipients.append(member_id)
    return recipients


def comment_recipients(author_id: str, assignee_id: Optional[str], creator_id: Optional[str],
                       mentioned_ids: List[str]) -> List[Tuple[str, NotificationType]]:
    """At most one (recipient, type) per member for one new comment."""
    recipients: List[Tuple[str, NotificationType]] = []
    notified = {author_id}
    for member_id in (assignee_id, creator_id):
        if member_id and member_id not in notified:
            recipients.append((member_id, NotificationType.COMMENT_ADDED))
            notified.add(member_id)
    for member_id in mentioned_ids:
        if member_id not in notified:
            recipients.append((member_id, NotificationType.COMMENT_MENTIONED))
            notified.add(member_id)
    return recipients


# ============================================================
# SERVICE
# ============================================================

class NotificationService:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        publisher: Optional[RealtimePublisher] = None,
        email=None,
        sink: Optional[FailureSink] = None,
        timeout: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.publisher = publisher
        self.email = email
        self.sink = sink or default_sink
        self.timeout = timeout

    @property
    def budget(self) -> float:
        """Time one notify call may take: the write plus both bounded deliveries."""
        return 3 * (self.timeout or SIDE_EFFECT_TIMEOUT_SECONDS)

    async def notify(
        self,
        recipient_id: str,
        type: NotificationType,
        message: str,
        triggered_by: str,
        company_id: str,
        related: Optional[EntityRef] = None,
    ) -> Optional[Notification]:
        if recipient_id == triggered_by:
            return None

        related_type, related_id = ref_columns(related)
        async with self.session_factory() as session:
            recipient = await MemberRepository(session).find_by_id(company_id, recipient_id)
            if recipient is None:
                logger.info(f"Skipping {type.value} for inactive member {recipient_id[:8]}")
                return None

            notification = Notification(
                company_id=company_id,
                recipient_id=recipient_id,
                triggered_by=triggered_by,
                type=type,
                message=message,
                related_type=related_type,
                related_id=related_id,
                read=False,
            )
            session.add(notification)
            await session.commit()
            actor = await session.get(User, triggered_by)
            payload = notification_payload(notification, actor)

        logger.info(f"Notification {type.value} → {recipient_id[:8]}")

        if self.publisher is not None:
            await run_bounded(
                "realtime.publish",
                lambda: self.publisher.publish(recipient_id, payload),
                self.sink, self.timeout,
            )
        if self.email is not None:
            await run_bounded(
                "email.send",
                lambda: self.email.send_notification_email(recipient_id, type, message, related_id),
                self.sink, self.timeout,
            )
        return notification

    # --- typed helpers ---

    async def task_assigned(self, task, assignee_id: str, actor) -> Optional[Notification]:
        return await self.notify(
            assignee_id, NotificationType.TASK_ASSIGNED,
            f'{actor.name} assigned you to "{task.title}"',
            actor.id, actor.company_id, EntityRef.task(task.id),
        )

    async def task_status_changed(self, task, old_status, new_status, actor,
                                  recipient_id: str) -> Optional[Notification]:
        return await self.notify(
            recipient_id, NotificationType.TASK_STATUS_CHANGED,
            f'{actor.name} moved "{task.title}" from {_label(old_status)} to {_label(new_status)}',
            actor.id, actor.company_id, EntityRef.task(task.id),
        )

    async def comment_added(self, task, actor, recipient_id: str) -> Optional[Notification]:
        return await self.notify(
            recipient_id, NotificationType.COMMENT_ADDED,
            f'{actor.name} commented on "{task.title}"',
            actor.id, actor.company_id, EntityRef.task(task.id),
        )

    async def comment_mentioned(self, task, actor, recipient_id: str) -> Optional[Notification]:
        return await self.notify(
            recipient_id, NotificationType.COMMENT_MENTIONED,
            f'{actor.name} mentioned you in a comment on "{task.title}"',
            actor.id, actor.company_id, EntityRef.task(task.id),
        )

    async def goal_assigned(self, goal, project, actor) -> Optional[Notification]:
        return await self.notify(
            goal.user_id, NotificationType.GOAL_ASSIGNED,
            f'{actor.name} set a goal of {goal.target_count} tasks for you on "{project.name}" '
            f'for {goal.month:%B %Y}',
            actor.id, actor.company_id, EntityRef.goal(goal.id),
        )

    async def feedback_received(self, feedback, project, actor) -> Optional[Notification]:
        return await self.notify(
            feedback.target_user_id, NotificationType.FEEDBACK_RECEIVED,
            f'{actor.name} gave you {feedback.rating}/5 feedback on "{project.name}"',
            actor.id, actor.company_id, EntityRef.feedback(feedback.id),
        )


def _label(value) -> str:
    return value.value if hasattr(value, "value") else str(value)
