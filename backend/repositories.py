# repositories.py — Tenant-scoped storage access
# Every read takes company_id and an explicit include_deleted flag (default False).
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from models import User, Project, Task, Comment, TaskStatus, UserGoal, UserFeedback, utcnow


class MemberRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_id(self, company_id: str, member_id: str,
                         include_deleted: bool = False) -> Optional[User]:
        query = select(User).where(User.id == member_id, User.company_id == company_id)
        if not include_deleted:
            query = query.where(User.is_deleted.is_(False))
        return (await self.db.execute(query)).scalar_one_or_none()

    async def find_by_company(self, company_id: str, include_deleted: bool = False) -> List[User]:
        query = select(User).where(User.company_id == company_id)
        if not include_deleted:
            query = query.where(User.is_deleted.is_(False))
        query = query.order_by(User.created_at)
        return list((await self.db.execute(query)).scalars().all())

    async def find_many(self, company_id: str, member_ids: List[str],
                        include_deleted: bool = False) -> List[User]:
        if not member_ids:
            return []
        query = select(User).where(User.company_id == company_id, User.id.in_(member_ids))
        if not include_deleted:
            query = query.where(User.is_deleted.is_(False))
        return list((await self.db.execute(query)).scalars().all())


class ProjectRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_id(self, company_id: str, project_id: str,
                         include_deleted: bool = False) -> Optional[Project]:
        query = select(Project).where(Project.id == project_id, Project.company_id == company_id)
        if not include_deleted:
            query = query.where(Project.is_deleted.is_(False))
        return (await self.db.execute(query)).scalar_one_or_none()

    async def list(self, company_id: str, member_id: Optional[str] = None, status=None,
                   offset: int = 0, limit: int = 20, include_deleted: bool = False):
        query = select(Project).where(Project.company_id == company_id)
        if not include_deleted:
            query = query.where(Project.is_deleted.is_(False))
        if status:
            query = query.where(Project.status == status)
        projects = list((await self.db.execute(query.order_by(Project.created_at.desc()))).scalars().all())
        # member_ids is a JSON list, filtered here to stay portable across backends
        if member_id:
            projects = [p for p in projects if member_id in (p.member_ids or [])]
        return projects[offset:offset + limit], len(projects)


class TaskRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_id(self, company_id: str, task_id: str,
                         include_deleted: bool = False) -> Optional[Task]:
        query = (
            select(Task)
            .where(Task.id == task_id, Task.company_id == company_id)
            .execution_options(populate_existing=True)
        )
        if not include_deleted:
            query = query.where(Task.is_deleted.is_(False))
        return (await self.db.execute(query)).scalar_one_or_none()

    async def list(self, company_id: str, assigned_to: Optional[str] = None,
                   project_id: Optional[str] = None, status=None, priority=None,
                   offset: int = 0, limit: int = 20, include_deleted: bool = False):
        filters = [Task.company_id == company_id]
        if not include_deleted:
            filters.append(Task.is_deleted.is_(False))
        if assigned_to:
            filters.append(Task.assigned_to == assigned_to)
        if project_id:
            filters.append(Task.project_id == project_id)
        if status:
            filters.append(Task.status == status)
        if priority:
            filters.append(Task.priority == priority)

        total = (await self.db.execute(select(func.count(Task.id)).where(*filters))).scalar() or 0
        result = await self.db.execute(
            select(Task).where(*filters).order_by(Task.created_at.desc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all()), total

    async def update_status(self, company_id: str, task_id: str, expected_status: TaskStatus,
                            new_status: TaskStatus, completed_at: Optional[datetime],
                            **fields) -> bool:
        """Conditional update; False when the stored status is no longer expected_status."""
        stmt = (
            update(Task)
            .where(
                Task.id == task_id,
                Task.company_id == company_id,
                Task.status == expected_status,
                Task.is_deleted.is_(False),
            )
            .values(status=new_status, completed_at=completed_at, updated_at=utcnow(), **fields)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1


class CommentRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_id(self, company_id: str, comment_id: str,
                         include_deleted: bool = False) -> Optional[Comment]:
        query = select(Comment).where(Comment.id == comment_id, Comment.company_id == company_id)
        if not include_deleted:
            query = query.where(Comment.is_deleted.is_(False))
        return (await self.db.execute(query)).scalar_one_or_none()

    async def list_for_task(self, company_id: str, task_id: str,
                            include_deleted: bool = False) -> List[Comment]:
        query = select(Comment).where(Comment.company_id == company_id, Comment.task_id == task_id)
        if not include_deleted:
            query = query.where(Comment.is_deleted.is_(False))
        return list((await self.db.execute(query.order_by(Comment.created_at))).scalars().all())


class GoalRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_id(self, company_id: str, goal_id: str,
                         include_deleted: bool = False) -> Optional[UserGoal]:
        query = (
            select(UserGoal)
            .where(UserGoal.id == goal_id, UserGoal.company_id == company_id)
            .execution_options(populate_existing=True)
        )
        if not include_deleted:
            query = query.where(UserGoal.is_deleted.is_(False))
        return (await self.db.execute(query)).scalar_one_or_none()

    async def list(self, company_id: str, user_id: Optional[str] = None, month: Optional[date] = None,
                   include_deleted: bool = False) -> List[UserGoal]:
        query = select(UserGoal).where(UserGoal.company_id == company_id)
        if not include_deleted:
            query = query.where(UserGoal.is_deleted.is_(False))
        if user_id:
            query = query.where(UserGoal.user_id == user_id)
        if month:
            query = query.where(UserGoal.month == month)
        query = query.order_by(UserGoal.month.desc(), UserGoal.created_at)
        return list((await self.db.execute(query)).scalars().unique().all())


class FeedbackRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_id(self, company_id: str, feedback_id: str,
                         include_deleted: bool = False) -> Optional[UserFeedback]:
        query = (
            select(UserFeedback)
            .where(UserFeedback.id == feedback_id, UserFeedback.company_id == company_id)
            .execution_options(populate_existing=True)
        )
        if not include_deleted:
            query = query.where(UserFeedback.is_deleted.is_(False))
        return (await self.db.execute(query)).scalar_one_or_none()

    async def find_existing(self, company_id: str, given_by: str, target_user_id: str,
                            project_id: str) -> Optional[UserFeedback]:
        """Any earlier feedback from the same author, deleted or not, blocks a second one."""
        query = select(UserFeedback).where(
            UserFeedback.company_id == company_id,
            UserFeedback.given_by == given_by,
            UserFeedback.target_user_id == target_user_id,
            UserFeedback.project_id == project_id,
        )
        return (await self.db.execute(query)).scalars().first()

    async def list(self, company_id: str, target_user_id: Optional[str] = None,
                   include_deleted: bool = False) -> List[UserFeedback]:
        query = select(UserFeedback).where(UserFeedback.company_id == company_id)
        if not include_deleted:
            query = query.where(UserFeedback.is_deleted.is_(False))
        if target_user_id:
            query = query.where(UserFeedback.target_user_id == target_user_id)
        query = query.order_by(UserFeedback.created_at.desc())
        return list((await self.db.execute(query)).scalars().unique().all())
