# routers/tasks.py — Tasks: listing, status workflow, assignment
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from dependencies import get_task_service
from models import Task, TaskPriority, TaskStatus, UserRole
from repositories import TaskRepository
from status_machine import allowed_transitions
from task_service import TaskService

router = APIRouter(prefix="/api/v1/tasks", tags=["Tasks"])


# ============================================================
# SCHEMAS
# ============================================================

class TaskCreate(BaseModel):
    project_id: str
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=5000)
    assigned_to: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[datetime] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assigned_to: Optional[str] = None
    due_date: Optional[datetime] = None


class TaskAssign(BaseModel):
    assigned_to: Optional[str] = None


def _ts(dt) -> Optional[str]:
    return dt.isoformat() if dt else None


def _task_out(t: Task) -> dict:
    status = TaskStatus(t.status)
    return {
        "id": t.id,
        "company_id": t.company_id,
        "project_id": t.project_id,
        "title": t.title,
        "description": t.description or "",
        "assigned_to": t.assigned_to,
        "created_by": t.created_by,
        "status": status.value,
        "allowed_transitions": [s.value for s in allowed_transitions(status)],
        "priority": t.priority.value if hasattr(t.priority, "value") else t.priority,
        "due_date": _ts(t.due_date),
        "completed_at": _ts(t.completed_at),
        "created_at": _ts(t.created_at),
        "updated_at": _ts(t.updated_at),
    }


# ============================================================
# READ
# ============================================================

@router.get("")
async def list_tasks(
    project_id: Optional[str] = Query(None),
    status: Optional[TaskStatus] = Query(None),
    priority: Optional[TaskPriority] = Query(None),
    assigned_to: Optional[str] = Query(None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=500),
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    # Members only ever see their own tasks
    if user.role == UserRole.MEMBER:
        assigned_to = user.id
    tasks, total = await TaskRepository(db).list(
        user.company_id, assigned_to=assigned_to, project_id=project_id,
        status=status, priority=priority, offset=(page - 1) * limit, limit=limit,
    )
    return {
        "data": [_task_out(t) for t in tasks],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": -(-total // limit)},
    }


@router.get("/{task_id}")
async def get_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    return _task_out(await service.get_task(task_id, user))


# ============================================================
# WRITE
# ============================================================

@router.post("", status_code=201)
async def create_task(
    data: TaskCreate,
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    task = await service.create_task(
        user, data.project_id, data.title, description=data.description,
        assigned_to=data.assigned_to, priority=data.priority, due_date=data.due_date,
    )
    return _task_out(task)


@router.put("/{task_id}")
async def update_task(
    task_id: str,
    data: TaskUpdate,
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """Full update for managers/admins; members may only move the status"""
    task = await service.update_task(task_id, data.model_dump(exclude_unset=True), user)
    return _task_out(task)


@router.patch("/{task_id}/assign")
async def assign_task(
    task_id: str,
    data: TaskAssign,
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    task = await service.assign(task_id, data.assigned_to, user)
    return _task_out(task)


@router.delete("/{task_id}")
async def delete_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    await service.delete_task(task_id, user)
    return {"message": "Task deleted"}
