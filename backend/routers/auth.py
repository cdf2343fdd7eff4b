# routers/auth.py — Signup (company find-or-create), login, current user
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from activity_log import ActivityLogRecorder
from auth import (
    AuthService, UserSignup, UserLogin, get_current_user, CurrentUser,
    ACCESS_TOKEN_EXPIRE_MINUTES, ROLE_PERMISSIONS,
)
from database import get_db_session
from dependencies import get_activity_recorder, get_effects
from models import Company, ActivityAction, EntityRef, UserRole
from side_effects import DeferredEffects

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: Dict[str, Any]


def _permissions_for(role) -> list:
    role = UserRole(role)
    return sorted(op.value for op, roles in ROLE_PERMISSIONS.items() if role in roles)


def _user_out(user, company_name: Optional[str] = None) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "company_id": user.company_id,
        "company_name": company_name,
        "role": user.role.value if isinstance(user.role, UserRole) else user.role,
        "permissions": _permissions_for(user.role),
    }


def _build_token_response(user, company_name: Optional[str] = None) -> TokenResponse:
    return TokenResponse(
        access_token=AuthService.token_for(user),
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=_user_out(user, company_name),
    )


@router.get("/check-company")
async def check_company(
    company_name: str = Query(default=""),
    db: AsyncSession = Depends(get_db_session),
):
    """Whether a company with this name (by slug) already exists"""
    if not company_name.strip():
        return {"exists": False}
    return {"exists": await AuthService.company_exists(company_name, db)}


@router.post("/signup", response_model=TokenResponse, status_code=201)
async def signup(
    data: UserSignup,
    db: AsyncSession = Depends(get_db_session),
    activity: ActivityLogRecorder = Depends(get_activity_recorder),
    effects: DeferredEffects = Depends(get_effects),
):
    """Create a member; the first member of a new company becomes ADMIN"""
    user, company, created_company = await AuthService.signup(data, db)

    if created_company:
        effects.defer(
            "activity.company_created",
            lambda: activity.record(
                company.id, ActivityAction.COMPANY_CREATED, user.id,
                EntityRef.company(company.id), f'{user.name} created company "{company.name}"',
            ),
        )
    effects.defer(
        "activity.user_joined",
        lambda: activity.record(
            company.id, ActivityAction.USER_JOINED, user.id,
            EntityRef.user(user.id), f"{user.name} joined as {user.role.value}",
        ),
    )
    return _build_token_response(user, company.name)


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    db: AsyncSession = Depends(get_db_session),
):
    """Authenticate and receive an access token"""
    user = await AuthService.authenticate_user(credentials.email, credentials.password, db)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    company_name = (await db.execute(select(Company.name).where(Company.id == user.company_id))).scalar()
    return _build_token_response(user, company_name)


@router.get("/me")
async def me(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    company_name = (await db.execute(select(Company.name).where(Company.id == user.company_id))).scalar()
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "company_id": user.company_id,
        "company_name": company_name,
        "role": user.role.value,
        "permissions": _permissions_for(user.role),
    }
