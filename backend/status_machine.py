# status_machine.py — Task status transitions and role gating
"""
Pure rules for task status changes. Nothing here touches the database;
task_service applies the results with a conditional update.
"""
from datetime import datetime
from typing import Dict, Iterable, Optional, Tuple

from exceptions import ForbiddenError, InvalidOperationError, InvalidTransitionError
from models import TaskStatus, UserRole

TRANSITIONS: Dict[TaskStatus, Tuple[TaskStatus, ...]] = {
    TaskStatus.TODO: (TaskStatus.IN_PROGRESS,),
    TaskStatus.IN_PROGRESS: (TaskStatus.IN_REVIEW, TaskStatus.TODO, TaskStatus.BLOCKER),
    TaskStatus.IN_REVIEW: (TaskStatus.DONE, TaskStatus.IN_PROGRESS, TaskStatus.BLOCKER),
    TaskStatus.DONE: (TaskStatus.TODO,),
    TaskStatus.BLOCKER: (TaskStatus.TODO, TaskStatus.IN_PROGRESS),
}


def allowed_transitions(current) -> Tuple[TaskStatus, ...]:
    return TRANSITIONS[TaskStatus(current)]


def is_valid_transition(current, requested) -> bool:
    return TaskStatus(requested) in allowed_transitions(current)


def ensure_transition(current, requested) -> None:
    if not is_valid_transition(current, requested):
        raise InvalidTransitionError(
            TaskStatus(current), TaskStatus(requested), allowed_transitions(current)
        )


def check_member_update(actor_id: str, assignee_id: Optional[str], current,
                        has_status: bool, other_fields: Iterable[str] = ()) -> None:
    """Gate a MEMBER's update request. Order: ownership, BLOCKER, field set."""
    if assignee_id != actor_id:
        raise ForbiddenError("You can only update tasks assigned to you")
    if TaskStatus(current) == TaskStatus.BLOCKER:
        raise ForbiddenError("Only managers or admins can resolve blocked tasks")
    if list(other_fields) or not has_status:
        raise InvalidOperationError("Members can only update task status")


def check_status_change(actor_id: str, actor_role, assignee_id: Optional[str], current,
                        requested, other_fields: Iterable[str] = ()) -> None:
    """Raise the matching domain error if actor may not move the task to requested."""
    if UserRole(actor_role) == UserRole.MEMBER:
        check_member_update(actor_id, assignee_id, current, True, other_fields)
    ensure_transition(current, requested)


def completed_at_for(status, current_completed_at: Optional[datetime],
                     now: datetime) -> Optional[datetime]:
    # completed_at is non-null exactly when status is DONE
    if TaskStatus(status) == TaskStatus.DONE:
        return current_completed_at or now
    return None
