# routers/users.py — Company member directory and admin management
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from activity_log import ActivityLogRecorder
from auth import require_permission, CurrentUser, Operation
from database import get_db_session
from dependencies import get_activity_recorder, get_effects
from models import UserRole, ActivityAction, EntityRef, utcnow
from repositories import MemberRepository
from side_effects import DeferredEffects

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


# --- Schemas ---

class MemberOut(BaseModel):
    id: str
    name: str
    email: str
    role: str
    company_id: str
    created_at: Optional[str] = None


class RoleUpdate(BaseModel):
    role: str = Field(..., pattern=r"^(ADMIN|MANAGER|MEMBER)$")


def _member_out(u) -> dict:
    return MemberOut(
        id=u.id, name=u.name, email=u.email,
        role=u.role.value if hasattr(u.role, "value") else str(u.role),
        company_id=u.company_id,
        created_at=u.created_at.isoformat() if u.created_at else None,
    ).model_dump()


@router.get("")
async def list_members(
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission(Operation.USERS_LIST)),
):
    members = await MemberRepository(db).find_by_company(user.company_id)
    return [_member_out(m) for m in members]


@router.get("/{member_id}")
async def get_member(
    member_id: str,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission(Operation.USERS_READ)),
):
    member = await MemberRepository(db).find_by_id(user.company_id, member_id)
    if not member:
        raise HTTPException(404, "User not found")
    return _member_out(member)


@router.put("/{member_id}/role")
async def update_role(
    member_id: str,
    data: RoleUpdate,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission(Operation.USERS_UPDATE_ROLE)),
):
    member = await MemberRepository(db).find_by_id(user.company_id, member_id)
    if not member:
        raise HTTPException(404, "User not found")
    member.role = UserRole(data.role)
    await db.commit()
    return _member_out(member)


@router.delete("/{member_id}")
async def remove_member(
    member_id: str,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission(Operation.USERS_REMOVE)),
    activity: ActivityLogRecorder = Depends(get_activity_recorder),
    effects: DeferredEffects = Depends(get_effects),
):
    if member_id == user.id:
        raise HTTPException(400, "You cannot remove yourself")
    member = await MemberRepository(db).find_by_id(user.company_id, member_id)
    if not member:
        raise HTTPException(404, "User not found")

    member.is_deleted = True
    member.deleted_at = utcnow()
    await db.commit()

    name = member.name
    effects.defer(
        "activity.user_removed",
        lambda: activity.record(
            user.company_id, ActivityAction.USER_REMOVED, user.id,
            EntityRef.user(member_id), f"{user.name} removed {name} from the team",
        ),
    )
    return {"message": "User removed"}
