# models.py — Database models for TaskHub
# - UUID string primary keys everywhere
# - Every row carries company_id (tenant scope)
# - Soft deletes via is_deleted + deleted_at
# - Notifications and activity logs are append-only

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional, Tuple

from sqlalchemy import (
    Column, String, DateTime, Date, JSON, Boolean, Integer,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, PyEnum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    MEMBER = "MEMBER"


class ProjectStatus(str, PyEnum):
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"
    COMPLETED = "COMPLETED"


class TaskStatus(str, PyEnum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    IN_REVIEW = "IN_REVIEW"
    DONE = "DONE"
    BLOCKER = "BLOCKER"


class TaskPriority(str, PyEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class NotificationType(str, PyEnum):
    TASK_ASSIGNED = "TASK_ASSIGNED"
    TASK_STATUS_CHANGED = "TASK_STATUS_CHANGED"
    COMMENT_ADDED = "COMMENT_ADDED"
    COMMENT_MENTIONED = "COMMENT_MENTIONED"
    GOAL_ASSIGNED = "GOAL_ASSIGNED"
    FEEDBACK_RECEIVED = "FEEDBACK_RECEIVED"


class ActivityAction(str, PyEnum):
    COMPANY_CREATED = "COMPANY_CREATED"
    USER_JOINED = "USER_JOINED"
    USER_REMOVED = "USER_REMOVED"
    PROJECT_CREATED = "PROJECT_CREATED"
    PROJECT_UPDATED = "PROJECT_UPDATED"
    PROJECT_DELETED = "PROJECT_DELETED"
    TASK_CREATED = "TASK_CREATED"
    TASK_UPDATED = "TASK_UPDATED"
    TASK_DELETED = "TASK_DELETED"
    TASK_ASSIGNED = "TASK_ASSIGNED"
    TASK_STATUS_CHANGED = "TASK_STATUS_CHANGED"
    COMMENT_ADDED = "COMMENT_ADDED"
    COMMENT_DELETED = "COMMENT_DELETED"


class RefKind(str, PyEnum):
    COMPANY = "Company"
    USER = "User"
    PROJECT = "Project"
    TASK = "Task"
    COMMENT = "Comment"
    GOAL = "Goal"
    FEEDBACK = "Feedback"


# ============================================================
# POLYMORPHIC REFERENCES
# ============================================================

@dataclass(frozen=True)
class EntityRef:
    """Typed pointer to one of the tenant-owned entities.

    Stored as a (type, id) column pair on Notification and ActivityLog;
    use to_columns()/from_columns() at that boundary only.
    """
    kind: RefKind
    id: str

    @classmethod
    def company(cls, id: str) -> "EntityRef":
        return cls(RefKind.COMPANY, id)

    @classmethod
    def user(cls, id: str) -> "EntityRef":
        return cls(RefKind.USER, id)

    @classmethod
    def project(cls, id: str) -> "EntityRef":
        return cls(RefKind.PROJECT, id)

    @classmethod
    def task(cls, id: str) -> "EntityRef":
        return cls(RefKind.TASK, id)

    @classmethod
    def comment(cls, id: str) -> "EntityRef":
        return cls(RefKind.COMMENT, id)

    @classmethod
    def goal(cls, id: str) -> "EntityRef":
        return cls(RefKind.GOAL, id)

    @classmethod
    def feedback(cls, id: str) -> "EntityRef":
        return cls(RefKind.FEEDBACK, id)

    def to_columns(self) -> Tuple[str, str]:
        return self.kind.value, self.id

    @classmethod
    def from_columns(cls, kind: Optional[str], id: Optional[str]) -> Optional["EntityRef"]:
        if not kind or not id:
            return None
        return cls(RefKind(kind), id)


def ref_columns(ref: Optional[EntityRef]) -> Tuple[Optional[str], Optional[str]]:
    if ref is None:
        return None, None
    return ref.to_columns()


# ============================================================
# COMPANIES (tenants)
# ============================================================

class Company(Base):
    __tablename__ = "companies"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False, index=True)
    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    users = relationship("User", back_populates="company")


# ============================================================
# USERS (members)
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    company_id = Column(String, ForeignKey("companies.id"), nullable=False, index=True)
    role = Column(SQLEnum(UserRole), default=UserRole.MEMBER, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    company = relationship("Company", back_populates="users")

    __table_args__ = (
        Index("idx_user_company_deleted", "company_id", "is_deleted"),
    )


# ============================================================
# PROJECTS
# ============================================================

class Project(Base):
    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=new_uuid)
    company_id = Column(String, ForeignKey("companies.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    created_by = Column(String, ForeignKey("users.id"), nullable=False)
    member_ids = Column(JSON, nullable=False, default=list)
    status = Column(SQLEnum(ProjectStatus), default=ProjectStatus.ACTIVE, nullable=False)
    deadline = Column(DateTime(timezone=True), nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)


# ============================================================
# TASKS
# ============================================================

class Task(Base):
    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    company_id = Column(String, ForeignKey("companies.id"), nullable=False, index=True)
    project_id = Column(String, ForeignKey("projects.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    assigned_to = Column(String, ForeignKey("users.id"), nullable=True, index=True)
    created_by = Column(String, ForeignKey("users.id"), nullable=False)
    status = Column(SQLEnum(TaskStatus), default=TaskStatus.TODO, nullable=False)
    priority = Column(SQLEnum(TaskPriority), default=TaskPriority.MEDIUM, nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)  # set iff status == DONE
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_task_company_project", "company_id", "project_id"),
        Index("idx_task_company_assignee", "company_id", "assigned_to"),
        Index("idx_task_company_status", "company_id", "status"),
    )


class Comment(Base):
    __tablename__ = "comments"

    id = Column(String, primary_key=True, default=new_uuid)
    company_id = Column(String, ForeignKey("companies.id"), nullable=False, index=True)
    task_id = Column(String, ForeignKey("tasks.id"), nullable=False, index=True)
    author_id = Column(String, ForeignKey("users.id"), nullable=False)
    text = Column(Text, nullable=False)
    mentions = Column(JSON, nullable=False, default=list)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_comment_task_created", "task_id", "created_at"),
    )


# ============================================================
# GOALS & FEEDBACK
# ============================================================

class UserGoal(Base):
    """Monthly target of completed tasks for one member on one project"""
    __tablename__ = "user_goals"

    id = Column(String, primary_key=True, default=new_uuid)
    company_id = Column(String, ForeignKey("companies.id"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    project_id = Column(String, ForeignKey("projects.id"), nullable=False)
    month = Column(Date, nullable=False)  # always the first day of the month
    target_count = Column(Integer, nullable=False)
    description = Column(Text, nullable=False, default="")
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", foreign_keys=[user_id], lazy="joined")
    project = relationship("Project", foreign_keys=[project_id], lazy="joined")

    __table_args__ = (
        UniqueConstraint("user_id", "project_id", "month", name="uq_goal_user_project_month"),
        Index("idx_goal_company_user", "company_id", "user_id"),
    )


class UserFeedback(Base):
    __tablename__ = "user_feedback"

    id = Column(String, primary_key=True, default=new_uuid)
    company_id = Column(String, ForeignKey("companies.id"), nullable=False, index=True)
    target_user_id = Column(String, ForeignKey("users.id"), nullable=False)
    given_by = Column(String, ForeignKey("users.id"), nullable=False)
    project_id = Column(String, ForeignKey("projects.id"), nullable=False)
    rating = Column(Integer, nullable=False)  # 1..5
    comment = Column(Text, nullable=False, default="")
    completed_in_timeline = Column(Boolean, nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    target_user = relationship("User", foreign_keys=[target_user_id], lazy="joined")
    author = relationship("User", foreign_keys=[given_by], lazy="joined")
    project = relationship("Project", foreign_keys=[project_id], lazy="joined")

    __table_args__ = (
        UniqueConstraint("given_by", "target_user_id", "project_id", name="uq_feedback_author_target_project"),
        Index("idx_feedback_company_target", "company_id", "target_user_id"),
    )


# ============================================================
# NOTIFICATIONS (created once; only read/read_at change)
# ============================================================

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=new_uuid)
    company_id = Column(String, ForeignKey("companies.id"), nullable=False, index=True)
    recipient_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    triggered_by = Column(String, ForeignKey("users.id"), nullable=False)
    type = Column(SQLEnum(NotificationType), nullable=False)
    message = Column(String, nullable=False)
    related_type = Column(String, nullable=True)
    related_id = Column(String, nullable=True)
    read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    actor = relationship("User", foreign_keys=[triggered_by], lazy="joined")

    __table_args__ = (
        Index("idx_notif_recipient_read_created", "recipient_id", "read", "created_at"),
    )

    @property
    def related(self) -> Optional[EntityRef]:
        return EntityRef.from_columns(self.related_type, self.related_id)


# ============================================================
# ACTIVITY LOGS (write-once)
# ============================================================

class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(String, primary_key=True, default=new_uuid)
    company_id = Column(String, ForeignKey("companies.id"), nullable=False, index=True)
    action = Column(SQLEnum(ActivityAction), nullable=False, index=True)
    description = Column(String, nullable=False)
    performed_by = Column(String, ForeignKey("users.id"), nullable=False)
    target_type = Column(String, nullable=True)
    target_id = Column(String, nullable=True)
    details = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    performer = relationship("User", foreign_keys=[performed_by], lazy="joined")

    __table_args__ = (
        Index("idx_activity_company_created", "company_id", "created_at"),
    )

    @property
    def target(self) -> Optional[EntityRef]:
        return EntityRef.from_columns(self.target_type, self.target_id)
