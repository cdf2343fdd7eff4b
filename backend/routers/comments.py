# routers/comments.py — Task comments with @mentions
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from auth import get_current_user, CurrentUser
from comment_service import CommentService, MAX_COMMENT_LENGTH
from dependencies import get_comment_service
from models import Comment

router = APIRouter(prefix="/api/v1/comments", tags=["Comments"])


class CommentCreate(BaseModel):
    task_id: str
    text: str = Field(..., min_length=1, max_length=MAX_COMMENT_LENGTH)


class CommentOut(BaseModel):
    id: str
    task_id: str
    author_id: str
    text: str
    mentions: List[str]
    created_at: Optional[str] = None


def _comment_out(c: Comment) -> dict:
    return CommentOut(
        id=c.id, task_id=c.task_id, author_id=c.author_id, text=c.text,
        mentions=list(c.mentions or []),
        created_at=c.created_at.isoformat() if c.created_at else None,
    ).model_dump()


@router.get("")
async def list_comments(
    task_id: str = Query(...),
    user: CurrentUser = Depends(get_current_user),
    service: CommentService = Depends(get_comment_service),
):
    return [_comment_out(c) for c in await service.list_comments(task_id, user)]


@router.post("", status_code=201)
async def create_comment(
    data: CommentCreate,
    user: CurrentUser = Depends(get_current_user),
    service: CommentService = Depends(get_comment_service),
):
    comment = await service.create_comment(data.task_id, data.text, user)
    return _comment_out(comment)


@router.delete("/{comment_id}")
async def delete_comment(
    comment_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: CommentService = Depends(get_comment_service),
):
    await service.delete_comment(comment_id, user)
    return {"message": "Comment deleted"}
