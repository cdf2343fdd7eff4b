# routers/goals.py — Monthly task goals per member and project
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import require_permission, CurrentUser, Operation
from database import get_db_session
from dependencies import get_effects, get_notification_service
from models import UserGoal, UserRole
from notification_service import NotificationService
from repositories import GoalRepository, MemberRepository, ProjectRepository
from side_effects import DeferredEffects

router = APIRouter(prefix="/api/v1/goals", tags=["Goals"])


class GoalCreate(BaseModel):
    user_id: str
    project_id: str
    month: date
    target_count: int = Field(..., ge=1)
    description: str = Field(default="", max_length=500)


class GoalUpdate(BaseModel):
    target_count: Optional[int] = Field(None, ge=1)
    description: Optional[str] = Field(None, max_length=500)


def _ts(dt) -> Optional[str]:
    return dt.isoformat() if dt else None


def _goal_out(g: UserGoal) -> dict:
    return {
        "id": g.id,
        "company_id": g.company_id,
        "user": {"id": g.user_id, "name": g.user.name if g.user else None},
        "project": {
            "id": g.project_id,
            "name": g.project.name if g.project else None,
            "status": g.project.status.value if g.project else None,
        },
        "month": g.month.isoformat(),
        "target_count": g.target_count,
        "description": g.description or "",
        "created_at": _ts(g.created_at),
        "updated_at": _ts(g.updated_at),
    }


def _parse_month(value: str) -> date:
    year, month = value.split("-")
    try:
        return date(int(year), int(month), 1)
    except ValueError:
        raise HTTPException(400, "month must be YYYY-MM")


@router.post("", status_code=201)
async def create_goal(
    data: GoalCreate,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission(Operation.GOALS_CREATE)),
    notifications: NotificationService = Depends(get_notification_service),
    effects: DeferredEffects = Depends(get_effects),
):
    """Set a member's target for one project and month; the month is stored as its first day"""
    if await MemberRepository(db).find_by_id(user.company_id, data.user_id) is None:
        raise HTTPException(404, "User not found")
    project = await ProjectRepository(db).find_by_id(user.company_id, data.project_id)
    if project is None:
        raise HTTPException(404, "Project not found")

    goal = UserGoal(
        company_id=user.company_id,
        user_id=data.user_id,
        project_id=project.id,
        month=data.month.replace(day=1),
        target_count=data.target_count,
        description=data.description,
    )
    db.add(goal)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(409, "A goal already exists for this user, project, and month")

    goal = await GoalRepository(db).find_by_id(user.company_id, goal.id)
    effects.defer(
        "notify.goal_assigned",
        lambda: notifications.goal_assigned(goal, project, user),
        timeout=notifications.budget,
    )
    return _goal_out(goal)


@router.put("/{goal_id}")
async def update_goal(
    goal_id: str,
    data: GoalUpdate,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission(Operation.GOALS_UPDATE)),
):
    goals = GoalRepository(db)
    goal = await goals.find_by_id(user.company_id, goal_id)
    if goal is None:
        raise HTTPException(404, "Goal not found")

    for field, value in data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(goal, field, value)
    await db.commit()
    return _goal_out(await goals.find_by_id(user.company_id, goal_id))


@router.get("")
async def list_goals(
    user_id: Optional[str] = Query(None),
    month: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}$"),
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission(Operation.GOALS_LIST)),
):
    """Members only ever see their own goals"""
    if user.role == UserRole.MEMBER:
        if user_id and user_id != user.id:
            raise HTTPException(403, "Access denied")
        user_id = user.id

    goals = await GoalRepository(db).list(
        user.company_id, user_id=user_id, month=_parse_month(month) if month else None,
    )
    return {"data": [_goal_out(g) for g in goals]}
