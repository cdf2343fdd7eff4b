# task_service.py — Task mutations: status changes, assignment, full update
"""
Every mutation validates first, writes second and only then queues its
activity-log entries and notifications on the request's DeferredEffects.
A rejected call leaves the task untouched.

Writes that involve the task status go through a conditional update keyed
on the status observed at read time. Losing that race triggers one fresh
read: the request is re-evaluated against the new status and either retried
once or rejected with ConflictError.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from activity_log import ActivityLogRecorder
from auth import CurrentUser, Operation, can
from exceptions import ConflictError, DomainError, ForbiddenError, NotFoundError
from models import (
    Task, TaskStatus, TaskPriority, UserRole, ActivityAction, EntityRef, utcnow,
)
from notification_service import NotificationService, status_change_recipients
from repositories import MemberRepository, ProjectRepository, TaskRepository
from side_effects import DeferredEffects
from status_machine import (
    allowed_transitions, check_member_update, check_status_change,
    completed_at_for, ensure_transition,
)

logger = logging.getLogger("taskhub.tasks")

EDITABLE_FIELDS = ("title", "description", "priority", "due_date")


def _label(value) -> str:
    return value.value if hasattr(value, "value") else str(value)


def _comparable(value):
    # SQLite hands back naive UTC datetimes; requests may carry an offset
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class TaskService:
    def __init__(
        self,
        db: AsyncSession,
        notifications: NotificationService,
        activity: ActivityLogRecorder,
        effects: DeferredEffects,
    ):
        self.db = db
        self.tasks = TaskRepository(db)
        self.members = MemberRepository(db)
        self.projects = ProjectRepository(db)
        self.notifications = notifications
        self.activity = activity
        self.effects = effects

    # ============================================================
    # READS
    # ============================================================

    async def _get_task(self, actor: CurrentUser, task_id: str) -> Task:
        task = await self.tasks.find_by_id(actor.company_id, task_id)
        if task is None:
            raise NotFoundError("Task not found")
        return task

    async def get_task(self, task_id: str, actor: CurrentUser) -> Task:
        task = await self._get_task(actor, task_id)
        if actor.role == UserRole.MEMBER and task.assigned_to != actor.id:
            raise NotFoundError("Task not found")
        return task

    async def _ensure_assignee(self, actor: CurrentUser, assignee_id: str) -> None:
        if await self.members.find_by_id(actor.company_id, assignee_id) is None:
            raise NotFoundError("Assignee not found in your company")

    # ============================================================
    # GUARDED WRITE
    # ============================================================

    async def _write_guarded(
        self,
        actor: CurrentUser,
        task: Task,
        target_status: Optional[TaskStatus],
        fields: Dict[str, Any],
        revalidate: Callable[[Task], None],
    ) -> Tuple[Task, TaskStatus]:
        """Conditionally write status + fields. Returns (fresh task, status before the write)."""
        for attempt in range(2):
            observed = TaskStatus(task.status)
            new_status = target_status or observed
            completed_at = completed_at_for(new_status, task.completed_at, utcnow())
            written = await self.tasks.update_status(
                actor.company_id, task.id, observed, new_status, completed_at, **fields
            )
            if written:
                await self.db.commit()
                return await self._get_task(actor, task.id), observed

            await self.db.rollback()
            task = await self._get_task(actor, task.id)
            current = TaskStatus(task.status)
            logger.info(
                f"Status race lost on task {task.id[:8]} (expected {observed.value}, "
                f"found {current.value}, attempt {attempt + 1})"
            )
            if attempt == 1:
                break
            try:
                revalidate(task)
            except DomainError as e:
                raise ConflictError(
                    f"Task was changed concurrently and is now {current.value}: {e.message}",
                    current_status=current,
                    allowed=allowed_transitions(current),
                )

        current = TaskStatus(task.status)
        raise ConflictError(
            f"Task was changed concurrently and is now {current.value}",
            current_status=current,
            allowed=allowed_transitions(current),
        )

    # ============================================================
    # STATUS
    # ============================================================

    async def change_status(self, task_id: str, requested, actor: CurrentUser,
                            other_fields: Iterable[str] = ()) -> Task:
        requested = TaskStatus(requested)
        other_fields = list(other_fields)
        task = await self._get_task(actor, task_id)

        def revalidate(fresh: Task) -> None:
            check_status_change(actor.id, actor.role, fresh.assigned_to, fresh.status, requested, other_fields)

        revalidate(task)
        updated, old_status = await self._write_guarded(actor, task, requested, {}, revalidate)
        self._defer_status_effects(actor, updated, old_status, requested, updated.assigned_to)
        return updated

    def _defer_status_effects(self, actor: CurrentUser, task: Task, old_status: TaskStatus,
                              new_status: TaskStatus, assignee_id: Optional[str]) -> None:
        self.effects.defer(
            "activity.task_status_changed",
            lambda: self.activity.record(
                actor.company_id, ActivityAction.TASK_STATUS_CHANGED, actor.id,
                EntityRef.task(task.id),
                f"Status changed from {old_status.value} to {new_status.value}",
                {"from": old_status.value, "to": new_status.value},
            ),
        )
        for recipient_id in status_change_recipients(actor.id, assignee_id, task.created_by):
            self.effects.defer(
                "notify.task_status_changed",
                lambda rid=recipient_id: self.notifications.task_status_changed(
                    task, old_status, new_status, actor, rid
                ),
                timeout=self.notifications.budget,
            )

    # ============================================================
    # ASSIGNMENT
    # ============================================================

    async def assign(self, task_id: str, assignee_id: Optional[str], actor: CurrentUser) -> Task:
        if not can(actor.role, Operation.TASKS_ASSIGN):
            raise ForbiddenError("Only managers or admins can assign tasks")

        task = await self._get_task(actor, task_id)
        assignee_id = assignee_id or None
        if assignee_id:
            await self._ensure_assignee(actor, assignee_id)

        if task.assigned_to == assignee_id:
            return task

        task.assigned_to = assignee_id
        await self.db.commit()
        task = await self._get_task(actor, task_id)
        self._defer_assignment_effects(actor, task, assignee_id, "assigned" if assignee_id else "unassigned")
        return task

    def _defer_assignment_effects(self, actor: CurrentUser, task: Task,
                                  assignee_id: Optional[str], verb: str) -> None:
        self.effects.defer(
            "activity.task_assigned",
            lambda: self.activity.record(
                actor.company_id, ActivityAction.TASK_ASSIGNED, actor.id,
                EntityRef.task(task.id), f'Task "{task.title}" {verb}',
                {"assigned_to": assignee_id},
            ),
        )
        if assignee_id:
            self.effects.defer(
                "notify.task_assigned",
                lambda: self.notifications.task_assigned(task, assignee_id, actor),
                timeout=self.notifications.budget,
            )

    # ============================================================
    # FULL UPDATE
    # ============================================================

    async def update_task(self, task_id: str, fields: Dict[str, Any], actor: CurrentUser) -> Task:
        """Apply an update request; ``fields`` holds only the keys the caller sent."""
        if not can(actor.role, Operation.TASKS_UPDATE):
            raise ForbiddenError("Access denied")

        if actor.role == UserRole.MEMBER:
            task = await self._get_task(actor, task_id)
            others = [k for k in fields if k != "status"]
            check_member_update(actor.id, task.assigned_to, task.status, fields.get("status") is not None, others)
            return await self.change_status(task_id, fields["status"], actor)

        task = await self._get_task(actor, task_id)
        changes: Dict[str, Any] = {}
        for name in EDITABLE_FIELDS:
            if name in fields and fields[name] is not None \
                    and _comparable(fields[name]) != _comparable(getattr(task, name)):
                changes[name] = fields[name]
        if "priority" in changes:
            changes["priority"] = TaskPriority(changes["priority"])

        requested = None
        if fields.get("status") is not None and TaskStatus(fields["status"]) != TaskStatus(task.status):
            requested = TaskStatus(fields["status"])
            ensure_transition(task.status, requested)

        new_assignee = task.assigned_to
        if "assigned_to" in fields and (fields["assigned_to"] or None) != task.assigned_to:
            new_assignee = fields["assigned_to"] or None
            if new_assignee:
                await self._ensure_assignee(actor, new_assignee)
            changes["assigned_to"] = new_assignee

        if not changes and requested is None:
            return task

        previous_assignee = task.assigned_to

        def revalidate(fresh: Task) -> None:
            if requested is not None:
                ensure_transition(fresh.status, requested)

        updated, old_status = await self._write_guarded(actor, task, requested, changes, revalidate)

        if requested is not None:
            self._defer_status_effects(actor, updated, old_status, requested, previous_assignee)
        if "assigned_to" in changes:
            self._defer_assignment_effects(actor, updated, new_assignee, "reassigned")
        edited = [name for name in EDITABLE_FIELDS if name in changes]
        if edited:
            self.effects.defer(
                "activity.task_updated",
                lambda: self.activity.record(
                    actor.company_id, ActivityAction.TASK_UPDATED, actor.id,
                    EntityRef.task(updated.id), f'Task "{updated.title}" updated',
                    {"fields": edited},
                ),
            )
        return updated

    # ============================================================
    # CREATE / DELETE
    # ============================================================

    async def create_task(self, actor: CurrentUser, project_id: str, title: str,
                          description: str = "", assigned_to: Optional[str] = None,
                          priority=TaskPriority.MEDIUM, due_date=None) -> Task:
        if not can(actor.role, Operation.TASKS_CREATE):
            raise ForbiddenError("Only managers or admins can create tasks")

        project = await self.projects.find_by_id(actor.company_id, project_id)
        if project is None:
            raise NotFoundError("Project not found in your company")
        assigned_to = assigned_to or None
        if assigned_to:
            await self._ensure_assignee(actor, assigned_to)

        task = Task(
            company_id=actor.company_id,
            project_id=project.id,
            title=title,
            description=description or "",
            assigned_to=assigned_to,
            created_by=actor.id,
            status=TaskStatus.TODO,
            priority=TaskPriority(priority),
            due_date=due_date,
        )
        self.db.add(task)
        await self.db.commit()
        await self.db.refresh(task)

        self.effects.defer(
            "activity.task_created",
            lambda: self.activity.record(
                actor.company_id, ActivityAction.TASK_CREATED, actor.id,
                EntityRef.task(task.id), f'Task "{task.title}" created',
            ),
        )
        if assigned_to:
            self._defer_assignment_effects(actor, task, assigned_to, "assigned")
        return task

    async def delete_task(self, task_id: str, actor: CurrentUser) -> None:
        if not can(actor.role, Operation.TASKS_DELETE):
            raise ForbiddenError("Only managers or admins can delete tasks")

        task = await self._get_task(actor, task_id)
        task.is_deleted = True
        task.deleted_at = utcnow()
        await self.db.commit()

        title = task.title
        self.effects.defer(
            "activity.task_deleted",
            lambda: self.activity.record(
                actor.company_id, ActivityAction.TASK_DELETED, actor.id,
                EntityRef.task(task_id), f'Task "{title}" deleted',
            ),
        )
