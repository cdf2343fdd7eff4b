# routers/projects.py — Projects within a company
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from activity_log import ActivityLogRecorder
from auth import require_permission, CurrentUser, Operation
from database import get_db_session
from dependencies import get_activity_recorder, get_effects
from models import Project, ProjectStatus, UserRole, ActivityAction, EntityRef, utcnow
from repositories import MemberRepository, ProjectRepository
from side_effects import DeferredEffects

router = APIRouter(prefix="/api/v1/projects", tags=["Projects"])


# --- Schemas ---

class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=2000)
    member_ids: List[str] = Field(default_factory=list)
    deadline: Optional[datetime] = None


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    status: Optional[ProjectStatus] = None
    deadline: Optional[datetime] = None


class MembersAdd(BaseModel):
    user_ids: List[str] = Field(..., min_length=1)


def _ts(dt) -> Optional[str]:
    return dt.isoformat() if dt else None


def _project_out(p: Project) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "description": p.description or "",
        "company_id": p.company_id,
        "created_by": p.created_by,
        "member_ids": list(p.member_ids or []),
        "status": p.status.value if hasattr(p.status, "value") else p.status,
        "deadline": _ts(p.deadline),
        "created_at": _ts(p.created_at),
        "updated_at": _ts(p.updated_at),
    }


async def _get_project(db: AsyncSession, user: CurrentUser, project_id: str) -> Project:
    project = await ProjectRepository(db).find_by_id(user.company_id, project_id)
    if not project:
        raise HTTPException(404, "Project not found")
    return project


def _log(effects: DeferredEffects, activity: ActivityLogRecorder, action: ActivityAction,
         user: CurrentUser, project_id: str, description: str, metadata: Optional[dict] = None):
    effects.defer(
        f"activity.{action.value.lower()}",
        lambda: activity.record(
            user.company_id, action, user.id, EntityRef.project(project_id), description, metadata,
        ),
    )


# ============================================================
# LIST / GET
# ============================================================

@router.get("")
async def list_projects(
    status: Optional[ProjectStatus] = Query(None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission(Operation.PROJECTS_LIST)),
):
    member_id = user.id if user.role == UserRole.MEMBER else None
    projects, total = await ProjectRepository(db).list(
        user.company_id, member_id=member_id, status=status,
        offset=(page - 1) * limit, limit=limit,
    )
    return {
        "data": [_project_out(p) for p in projects],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": -(-total // limit)},
    }


@router.get("/{project_id}")
async def get_project(
    project_id: str,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission(Operation.PROJECTS_READ)),
):
    project = await _get_project(db, user, project_id)
    if user.role == UserRole.MEMBER and user.id not in (project.member_ids or []):
        raise HTTPException(404, "Project not found")
    return _project_out(project)


# ============================================================
# CREATE / UPDATE / DELETE
# ============================================================

@router.post("", status_code=201)
async def create_project(
    data: ProjectCreate,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission(Operation.PROJECTS_CREATE)),
    activity: ActivityLogRecorder = Depends(get_activity_recorder),
    effects: DeferredEffects = Depends(get_effects),
):
    valid = await MemberRepository(db).find_many(user.company_id, data.member_ids)
    member_ids = [user.id]
    for member in valid:
        if member.id not in member_ids:
            member_ids.append(member.id)

    project = Project(
        company_id=user.company_id,
        name=data.name,
        description=data.description,
        created_by=user.id,
        member_ids=member_ids,
        deadline=data.deadline,
    )
    db.add(project)
    await db.commit()
    await db.refresh(project)

    _log(effects, activity, ActivityAction.PROJECT_CREATED, user, project.id,
         f'{user.name} created project "{project.name}"')
    return _project_out(project)


@router.put("/{project_id}")
async def update_project(
    project_id: str,
    data: ProjectUpdate,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission(Operation.PROJECTS_UPDATE)),
    activity: ActivityLogRecorder = Depends(get_activity_recorder),
    effects: DeferredEffects = Depends(get_effects),
):
    project = await _get_project(db, user, project_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(project, field, value)
    await db.commit()
    await db.refresh(project)

    _log(effects, activity, ActivityAction.PROJECT_UPDATED, user, project.id,
         f'{user.name} updated project "{project.name}"')
    return _project_out(project)


@router.post("/{project_id}/members")
async def add_members(
    project_id: str,
    data: MembersAdd,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission(Operation.PROJECTS_ADD_MEMBER)),
    activity: ActivityLogRecorder = Depends(get_activity_recorder),
    effects: DeferredEffects = Depends(get_effects),
):
    project = await _get_project(db, user, project_id)
    valid = await MemberRepository(db).find_many(user.company_id, data.user_ids)
    existing = list(project.member_ids or [])
    added = [m.id for m in valid if m.id not in existing]

    if added:
        project.member_ids = existing + added
        await db.commit()
        await db.refresh(project)
        _log(effects, activity, ActivityAction.PROJECT_UPDATED, user, project.id,
             f'{user.name} added {len(added)} member(s) to project "{project.name}"',
             {"added_user_ids": added})
    return _project_out(project)


@router.delete("/{project_id}/members/{member_id}")
async def remove_project_member(
    project_id: str,
    member_id: str,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission(Operation.PROJECTS_REMOVE_MEMBER)),
    activity: ActivityLogRecorder = Depends(get_activity_recorder),
    effects: DeferredEffects = Depends(get_effects),
):
    project = await _get_project(db, user, project_id)
    members = list(project.member_ids or [])
    if member_id not in members:
        raise HTTPException(404, "User is not a member of this project")
    if member_id == project.created_by:
        raise HTTPException(400, "The project creator is always a member")

    project.member_ids = [m for m in members if m != member_id]
    await db.commit()
    await db.refresh(project)

    _log(effects, activity, ActivityAction.PROJECT_UPDATED, user, project.id,
         f'{user.name} removed a member from project "{project.name}"',
         {"removed_user_id": member_id})
    return _project_out(project)


@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission(Operation.PROJECTS_DELETE)),
    activity: ActivityLogRecorder = Depends(get_activity_recorder),
    effects: DeferredEffects = Depends(get_effects),
):
    project = await _get_project(db, user, project_id)
    project.is_deleted = True
    project.deleted_at = utcnow()
    await db.commit()

    _log(effects, activity, ActivityAction.PROJECT_DELETED, user, project.id,
         f'{user.name} deleted project "{project.name}"')
    return {"message": "Project deleted"}
