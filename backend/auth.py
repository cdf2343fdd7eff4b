# auth.py — Authentication & role permissions for TaskHub
# Features:
# - bcrypt password hashing
# - JWT access tokens (HS256) with JTI
# - 3-tier roles per company (ADMIN, MANAGER, MEMBER)
# - Enum-keyed operation -> roles permission table
# - Company find-or-create on signup (first member is ADMIN)

import os
import re
import uuid
import secrets
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Dict, Any, FrozenSet

import bcrypt
from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import HTTPException, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from models import User, Company, UserRole

logger = logging.getLogger("taskhub.auth")

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY or SECRET_KEY == "change-this-to-a-secure-random-key-in-production":
    SECRET_KEY = secrets.token_urlsafe(64)
    logger.warning(
        "JWT_SECRET_KEY not set or insecure. Generated ephemeral key. "
        "Set JWT_SECRET_KEY in production!"
    )

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(7 * 24 * 60)))
MIN_PASSWORD_LENGTH = 6

security = HTTPBearer()


# ============================================================
# OPERATIONS & PERMISSIONS
# ============================================================

class Operation(str, Enum):
    USERS_LIST = "users:list"
    USERS_READ = "users:read"
    USERS_UPDATE_ROLE = "users:update-role"
    USERS_REMOVE = "users:remove"
    PROJECTS_CREATE = "projects:create"
    PROJECTS_LIST = "projects:list"
    PROJECTS_READ = "projects:read"
    PROJECTS_UPDATE = "projects:update"
    PROJECTS_DELETE = "projects:delete"
    PROJECTS_ADD_MEMBER = "projects:add-member"
    PROJECTS_REMOVE_MEMBER = "projects:remove-member"
    TASKS_CREATE = "tasks:create"
    TASKS_LIST = "tasks:list"
    TASKS_READ = "tasks:read"
    TASKS_UPDATE = "tasks:update"
    TASKS_ASSIGN = "tasks:assign"
    TASKS_DELETE = "tasks:delete"
    COMMENTS_CREATE = "comments:create"
    COMMENTS_LIST = "comments:list"
    COMMENTS_DELETE = "comments:delete"
    GOALS_CREATE = "goals:create"
    GOALS_UPDATE = "goals:update"
    GOALS_LIST = "goals:list"
    FEEDBACK_CREATE = "feedback:create"
    FEEDBACK_LIST = "feedback:list"
    ACTIVITY_LOGS_LIST = "activity-logs:list"


_ALL = frozenset({UserRole.ADMIN, UserRole.MANAGER, UserRole.MEMBER})
_LEADS = frozenset({UserRole.ADMIN, UserRole.MANAGER})
_ADMIN = frozenset({UserRole.ADMIN})
_MANAGER = frozenset({UserRole.MANAGER})

ROLE_PERMISSIONS: Dict[Operation, FrozenSet[UserRole]] = {
    Operation.USERS_LIST: _ALL,
    Operation.USERS_READ: _ALL,
    Operation.USERS_UPDATE_ROLE: _ADMIN,
    Operation.USERS_REMOVE: _ADMIN,
    Operation.PROJECTS_CREATE: _LEADS,
    Operation.PROJECTS_LIST: _ALL,
    Operation.PROJECTS_READ: _ALL,
    Operation.PROJECTS_UPDATE: _LEADS,
    Operation.PROJECTS_DELETE: _LEADS,
    Operation.PROJECTS_ADD_MEMBER: _LEADS,
    Operation.PROJECTS_REMOVE_MEMBER: _LEADS,
    Operation.TASKS_CREATE: _LEADS,
    Operation.TASKS_LIST: _ALL,
    Operation.TASKS_READ: _ALL,
    Operation.TASKS_UPDATE: _ALL,
    Operation.TASKS_ASSIGN: _LEADS,
    Operation.TASKS_DELETE: _LEADS,
    Operation.COMMENTS_CREATE: _ALL,
    Operation.COMMENTS_LIST: _ALL,
    Operation.COMMENTS_DELETE: _LEADS,
    Operation.GOALS_CREATE: _LEADS,
    Operation.GOALS_UPDATE: _LEADS,
    Operation.GOALS_LIST: _ALL,
    Operation.FEEDBACK_CREATE: _MANAGER,
    Operation.FEEDBACK_LIST: _ALL,
    Operation.ACTIVITY_LOGS_LIST: _ADMIN,
}

_missing = set(Operation) - set(ROLE_PERMISSIONS)
if _missing:
    raise RuntimeError(f"Operations without a permission entry: {sorted(o.value for o in _missing)}")


def can(role, operation: Operation) -> bool:
    return UserRole(role) in ROLE_PERMISSIONS[operation]


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class UserSignup(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., max_length=128)
    company_name: str = Field(..., min_length=1, max_length=100)
    role: Optional[str] = None

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        return v

    @field_validator("name", "company_name")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Must not be blank")
        return v


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class CurrentUser(BaseModel):
    id: str
    email: str
    name: str
    company_id: str
    role: UserRole


# ============================================================
# AUTH SERVICE
# ============================================================

def to_slug(name: str) -> str:
    slug = re.sub(r"\s+", "-", name.lower())
    return re.sub(r"[^a-z0-9-]", "", slug)


class AuthService:
    """Credentials, tokens and company onboarding"""

    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=12)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))

    @staticmethod
    def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        to_encode.update({
            "exp": now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)),
            "iat": now,
            "type": "access",
            "jti": str(uuid.uuid4()),
        })
        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    @staticmethod
    def token_for(user: User) -> str:
        return AuthService.create_access_token({
            "sub": user.id,
            "company_id": user.company_id,
            "role": user.role.value if isinstance(user.role, UserRole) else user.role,
        })

    @staticmethod
    def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
        """Shared by HTTP and websocket auth. Returns None for any invalid token."""
        try:
            payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        except JWTError:
            return None
        if payload.get("type") != "access" or not payload.get("sub"):
            return None
        return payload

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        try:
            payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token expired")
        except JWTError:
            raise HTTPException(status_code=401, detail="Invalid token")
        if payload.get("type") != "access":
            raise HTTPException(status_code=401, detail="Invalid token type")
        return payload

    @staticmethod
    async def company_exists(company_name: str, db: AsyncSession) -> bool:
        result = await db.execute(
            select(Company.id).where(Company.slug == to_slug(company_name), Company.is_deleted.is_(False))
        )
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def _find_company(slug: str, db: AsyncSession) -> Optional[Company]:
        result = await db.execute(select(Company).where(Company.slug == slug))
        return result.scalar_one_or_none()

    @staticmethod
    async def signup(data: UserSignup, db: AsyncSession):
        """Find or create the company, then create the member.

        Returns (user, company, created_company) after committing.
        """
        email = data.email.lower()
        existing = await db.execute(select(User).where(User.email == email))
        if existing.scalar_one_or_none():
            raise HTTPException(status_code=400, detail="User already exists with this email")

        slug = to_slug(data.company_name)
        if not slug:
            raise HTTPException(status_code=400, detail="Company name must contain letters or digits")

        company = await AuthService._find_company(slug, db)
        created_company = company is None
        if company is None:
            company = Company(name=data.company_name, slug=slug)
            db.add(company)
            try:
                await db.flush()
            except IntegrityError:
                # another signup created the same company first; join it instead
                await db.rollback()
                company = await AuthService._find_company(slug, db)
                if company is None:
                    raise
                created_company = False
                logger.info(f"Company {slug} created concurrently; joining it")

        if created_company:
            role = UserRole.ADMIN
        elif company.is_deleted:
            raise HTTPException(status_code=400, detail="Company is no longer active")
        else:
            role = UserRole(data.role) if data.role in (UserRole.MANAGER.value, UserRole.MEMBER.value) else UserRole.MEMBER

        user = User(
            name=data.name,
            email=email,
            password_hash=AuthService.hash_password(data.password),
            company_id=company.id,
            role=role,
        )
        db.add(user)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise HTTPException(status_code=400, detail="User already exists with this email")
        await db.refresh(user)
        return user, company, created_company

    @staticmethod
    async def authenticate_user(email: str, password: str, db: AsyncSession) -> Optional[User]:
        result = await db.execute(select(User).where(User.email == email.lower()))
        user = result.scalar_one_or_none()

        if not user or not AuthService.verify_password(password, user.password_hash):
            return None
        if user.is_deleted:
            return None
        return user


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> CurrentUser:
    payload = AuthService.verify_token(credentials.credentials)

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    result = await db.execute(select(User).where(User.id == user_id, User.is_deleted.is_(False)))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=401, detail="User not found or removed")

    return CurrentUser(
        id=user.id,
        email=user.email,
        name=user.name,
        company_id=user.company_id,
        role=user.role,
    )


def require_permission(operation: Operation):
    """Dependency factory: require the caller's role to be allowed the operation"""
    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not can(user.role, operation):
            raise HTTPException(status_code=403, detail="Access denied")
        return user
    return _check
