# comment_service.py — Comments with @mentions and notification fanout
import logging
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from activity_log import ActivityLogRecorder
from auth import CurrentUser, Operation, can
from exceptions import ForbiddenError, InvalidOperationError, NotFoundError
from mentions import MentionResolver
from models import Comment, NotificationType, ActivityAction, EntityRef, utcnow
from notification_service import NotificationService, comment_recipients
from repositories import CommentRepository, TaskRepository
from side_effects import DeferredEffects

logger = logging.getLogger("taskhub.comments")

MAX_COMMENT_LENGTH = 5000


class CommentService:
    def __init__(
        self,
        db: AsyncSession,
        notifications: NotificationService,
        activity: ActivityLogRecorder,
        effects: DeferredEffects,
    ):
        self.db = db
        self.tasks = TaskRepository(db)
        self.comments = CommentRepository(db)
        self.mentions = MentionResolver(db)
        self.notifications = notifications
        self.activity = activity
        self.effects = effects

    async def _get_task(self, task_id: str, actor: CurrentUser):
        task = await self.tasks.find_by_id(actor.company_id, task_id)
        if task is None:
            raise NotFoundError("Task not found in your company")
        return task

    async def create_comment(self, task_id: str, text: str, actor: CurrentUser) -> Comment:
        text = (text or "").strip()
        if not text:
            raise InvalidOperationError("Comment text is required")
        if len(text) > MAX_COMMENT_LENGTH:
            raise InvalidOperationError(f"Comment must be at most {MAX_COMMENT_LENGTH} characters")

        task = await self._get_task(task_id, actor)
        mentioned = await self.mentions.resolve(actor.company_id, text)

        comment = Comment(
            company_id=actor.company_id,
            task_id=task.id,
            author_id=actor.id,
            text=text,
            mentions=mentioned,
        )
        self.db.add(comment)
        await self.db.commit()
        await self.db.refresh(comment)

        self.effects.defer(
            "activity.comment_added",
            lambda: self.activity.record(
                actor.company_id, ActivityAction.COMMENT_ADDED, actor.id,
                EntityRef.comment(comment.id), f'Comment added on task "{task.title}"',
                {"task_id": task.id, "mention_count": len(mentioned)},
            ),
        )
        for recipient_id, kind in comment_recipients(actor.id, task.assigned_to, task.created_by, mentioned):
            if kind == NotificationType.COMMENT_MENTIONED:
                factory = lambda rid=recipient_id: self.notifications.comment_mentioned(task, actor, rid)
            else:
                factory = lambda rid=recipient_id: self.notifications.comment_added(task, actor, rid)
            self.effects.defer(f"notify.{kind.value.lower()}", factory, timeout=self.notifications.budget)

        logger.info(f"Comment {comment.id[:8]} on task {task.id[:8]} mentions={len(mentioned)}")
        return comment

    async def list_comments(self, task_id: str, actor: CurrentUser) -> List[Comment]:
        task = await self._get_task(task_id, actor)
        return await self.comments.list_for_task(actor.company_id, task.id)

    async def delete_comment(self, comment_id: str, actor: CurrentUser) -> None:
        if not can(actor.role, Operation.COMMENTS_DELETE):
            raise ForbiddenError("Only managers or admins can delete comments")

        comment = await self.comments.find_by_id(actor.company_id, comment_id)
        if comment is None:
            raise NotFoundError("Comment not found")
        comment.is_deleted = True
        comment.deleted_at = utcnow()
        await self.db.commit()

        task_id = comment.task_id
        self.effects.defer(
            "activity.comment_deleted",
            lambda: self.activity.record(
                actor.company_id, ActivityAction.COMMENT_DELETED, actor.id,
                EntityRef.comment(comment_id), "Comment deleted",
                {"task_id": task_id},
            ),
        )
