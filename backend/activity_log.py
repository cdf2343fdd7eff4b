# activity_log.py — Append-only company audit trail
import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from models import ActivityLog, ActivityAction, EntityRef, ref_columns

logger = logging.getLogger("taskhub.activity")


class ActivityLogRecorder:
    """Writes one ActivityLog row per call in its own session.

    Errors propagate; callers run it through DeferredEffects.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def record(
        self,
        company_id: str,
        action: ActivityAction,
        performer_id: str,
        target: Optional[EntityRef],
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ActivityLog:
        target_type, target_id = ref_columns(target)
        entry = ActivityLog(
            company_id=company_id,
            action=action,
            description=description,
            performed_by=performer_id,
            target_type=target_type,
            target_id=target_id,
            details=metadata,
        )
        async with self.session_factory() as session:
            session.add(entry)
            await session.commit()
        logger.debug(f"activity {action.value} by={performer_id[:8]} company={company_id[:8]}")
        return entry
