# routers/feedback.py — Manager feedback on members, per project
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import require_permission, CurrentUser, Operation
from database import get_db_session
from dependencies import get_effects, get_notification_service
from models import UserFeedback, UserRole
from notification_service import NotificationService
from repositories import FeedbackRepository, MemberRepository, ProjectRepository
from side_effects import DeferredEffects

router = APIRouter(prefix="/api/v1/feedback", tags=["Feedback"])

DUPLICATE_FEEDBACK = "You have already given feedback for this user on this project"


class FeedbackCreate(BaseModel):
    target_user_id: str
    project_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(default="", max_length=1000)
    completed_in_timeline: Optional[bool] = None


def _ref(user) -> Optional[dict]:
    return {"id": user.id, "name": user.name} if user else None


def _feedback_out(f: UserFeedback) -> dict:
    return {
        "id": f.id,
        "company_id": f.company_id,
        "target_user": _ref(f.target_user),
        "given_by": _ref(f.author),
        "project": {
            "id": f.project_id,
            "name": f.project.name if f.project else None,
            "status": f.project.status.value if f.project else None,
        },
        "rating": f.rating,
        "comment": f.comment or "",
        "completed_in_timeline": f.completed_in_timeline,
        "created_at": f.created_at.isoformat() if f.created_at else None,
    }


@router.post("", status_code=201)
async def create_feedback(
    data: FeedbackCreate,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission(Operation.FEEDBACK_CREATE)),
    notifications: NotificationService = Depends(get_notification_service),
    effects: DeferredEffects = Depends(get_effects),
):
    """One rating per manager, member and project; both must be on the project"""
    target = await MemberRepository(db).find_by_id(user.company_id, data.target_user_id)
    if target is None:
        raise HTTPException(404, "Target user not found")
    if target.role != UserRole.MEMBER:
        raise HTTPException(403, "You can only give feedback to members")

    project = await ProjectRepository(db).find_by_id(user.company_id, data.project_id)
    if project is None:
        raise HTTPException(404, "Project not found")
    member_ids = project.member_ids or []
    if user.id not in member_ids:
        raise HTTPException(403, "You are not a member of this project")
    if target.id not in member_ids:
        raise HTTPException(403, "This user is not a member of the selected project")

    repo = FeedbackRepository(db)
    if await repo.find_existing(user.company_id, user.id, target.id, project.id):
        raise HTTPException(409, DUPLICATE_FEEDBACK)

    feedback = UserFeedback(
        company_id=user.company_id,
        target_user_id=target.id,
        given_by=user.id,
        project_id=project.id,
        rating=data.rating,
        comment=data.comment,
        completed_in_timeline=data.completed_in_timeline,
    )
    db.add(feedback)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(409, DUPLICATE_FEEDBACK)

    feedback = await repo.find_by_id(user.company_id, feedback.id)
    effects.defer(
        "notify.feedback_received",
        lambda: notifications.feedback_received(feedback, project, user),
        timeout=notifications.budget,
    )
    return _feedback_out(feedback)


@router.get("")
async def list_feedback(
    target_user_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission(Operation.FEEDBACK_LIST)),
):
    """Members only ever see feedback about themselves"""
    if user.role == UserRole.MEMBER:
        if target_user_id and target_user_id != user.id:
            raise HTTPException(403, "Access denied")
        target_user_id = user.id

    items = await FeedbackRepository(db).list(user.company_id, target_user_id=target_user_id)
    return {"data": [_feedback_out(f) for f in items]}
