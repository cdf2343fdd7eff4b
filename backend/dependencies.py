# dependencies.py — Per-request service wiring (FastAPI Depends)
from fastapi import BackgroundTasks, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from activity_log import ActivityLogRecorder
from comment_service import CommentService
from database import get_db_session, get_session_factory
from email_service import EmailDispatcher
from notification_service import NotificationService
from side_effects import DeferredEffects
from task_service import TaskService


def get_effects(request: Request, background_tasks: BackgroundTasks) -> DeferredEffects:
    """Effects queued during the request run after the response is sent."""
    effects = DeferredEffects(sink=request.app.state.side_effect_sink)
    background_tasks.add_task(effects.run)
    return effects


def get_activity_recorder(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> ActivityLogRecorder:
    return ActivityLogRecorder(session_factory)


def get_notification_service(
    request: Request,
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> NotificationService:
    state = request.app.state
    return NotificationService(
        session_factory,
        publisher=state.connections,
        email=EmailDispatcher(session_factory, state.smtp_settings),
        sink=state.side_effect_sink,
    )


def get_task_service(
    db: AsyncSession = Depends(get_db_session),
    notifications: NotificationService = Depends(get_notification_service),
    activity: ActivityLogRecorder = Depends(get_activity_recorder),
    effects: DeferredEffects = Depends(get_effects),
) -> TaskService:
    return TaskService(db, notifications, activity, effects)


def get_comment_service(
    db: AsyncSession = Depends(get_db_session),
    notifications: NotificationService = Depends(get_notification_service),
    activity: ActivityLogRecorder = Depends(get_activity_recorder),
    effects: DeferredEffects = Depends(get_effects),
) -> CommentService:
    return CommentService(db, notifications, activity, effects)
