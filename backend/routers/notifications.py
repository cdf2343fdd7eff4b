# routers/notifications.py — Read side of the notification inbox
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from models import Notification, utcnow
from notification_service import notification_payload

router = APIRouter(prefix="/api/v1/notifications", tags=["Notifications"])


def _mine(user: CurrentUser):
    return (Notification.recipient_id == user.id, Notification.company_id == user.company_id)


async def _unread_count(db: AsyncSession, user: CurrentUser) -> int:
    return (await db.execute(
        select(func.count(Notification.id)).where(*_mine(user), Notification.read.is_(False))
    )).scalar() or 0


# ============================================================
# LIST
# ============================================================

@router.get("")
async def list_notifications(
    unread_only: bool = Query(default=False),
    limit: int = Query(default=20, ge=1, le=100),
    skip: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    filters = list(_mine(user))
    if unread_only:
        filters.append(Notification.read.is_(False))

    total = (await db.execute(select(func.count(Notification.id)).where(*filters))).scalar() or 0
    result = await db.execute(
        select(Notification).where(*filters)
        .order_by(Notification.created_at.desc()).offset(skip).limit(limit)
    )
    return {
        "notifications": [notification_payload(n) for n in result.scalars().unique().all()],
        "total": total,
        "unread_count": await _unread_count(db, user),
    }


@router.get("/unread-count")
async def unread_count(
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    return {"unread_count": await _unread_count(db, user)}


# ============================================================
# MARK READ
# ============================================================

@router.patch("/read-all")
async def mark_all_read(
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    result = await db.execute(
        update(Notification)
        .where(*_mine(user), Notification.read.is_(False))
        .values(read=True, read_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return {"marked": result.rowcount}


@router.patch("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    result = await db.execute(
        select(Notification).where(Notification.id == notification_id, *_mine(user))
    )
    notif = result.scalar_one_or_none()
    if not notif:
        raise HTTPException(404, "Notification not found")
    if not notif.read:
        notif.read = True
        notif.read_at = utcnow()
        await db.commit()
    return notification_payload(notif)
