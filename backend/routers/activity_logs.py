# routers/activity_logs.py — Company audit trail (admins only)
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from auth import require_permission, CurrentUser, Operation
from database import get_db_session
from models import ActivityLog, ActivityAction

router = APIRouter(prefix="/api/v1/activity-logs", tags=["Activity Logs"])


def _log_out(log: ActivityLog) -> dict:
    performer = log.performer
    return {
        "id": log.id,
        "action": log.action.value,
        "description": log.description,
        "performed_by": {
            "id": log.performed_by,
            "name": performer.name if performer else None,
            "email": performer.email if performer else None,
        },
        "target_type": log.target_type,
        "target_id": log.target_id,
        "metadata": log.details,
        "created_at": log.created_at.isoformat() if log.created_at else None,
    }


@router.get("")
async def list_activity_logs(
    action: Optional[ActivityAction] = Query(None),
    limit: int = Query(default=50, ge=1, le=100),
    skip: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission(Operation.ACTIVITY_LOGS_LIST)),
):
    filters = [ActivityLog.company_id == user.company_id]
    if action:
        filters.append(ActivityLog.action == action)

    total = (await db.execute(select(func.count(ActivityLog.id)).where(*filters))).scalar() or 0
    result = await db.execute(
        select(ActivityLog).where(*filters)
        .order_by(ActivityLog.created_at.desc()).offset(skip).limit(limit)
    )
    return {"logs": [_log_out(log) for log in result.scalars().unique().all()], "total": total}
