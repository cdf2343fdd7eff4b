# tests/conftest.py — Shared test fixtures
import os
import uuid

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
for _var in ("SMTP_HOST", "SMTP_USER", "SMTP_PASS"):
    os.environ.pop(_var, None)

from models import (
    Base, Company, User, Project, Task, UserRole, TaskStatus, TaskPriority, utcnow,
)
from activity_log import ActivityLogRecorder
from auth import AuthService, CurrentUser
from comment_service import CommentService
from database import get_db_session, get_session_factory
from notification_service import NotificationService
from side_effects import DeferredEffects, FailureSink
from task_service import TaskService
from main import app

TEST_PASSWORD = "Password123"
PASSWORD_HASH = AuthService.hash_password(TEST_PASSWORD)


class RecordingPublisher:
    """Stands in for the websocket ConnectionManager"""

    def __init__(self):
        self.sent = []

    async def publish(self, recipient_id, payload):
        self.sent.append((recipient_id, payload))

    def recipients(self):
        return [rid for rid, _ in self.sent]


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def sink():
    """Fresh failure sink, also installed on the app"""
    previous = app.state.side_effect_sink
    app.state.side_effect_sink = FailureSink()
    yield app.state.side_effect_sink
    app.state.side_effect_sink = previous


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, sink):
    """HTTP test client with overridden DB dependencies"""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ============================================================
# TENANTS & MEMBERS
# ============================================================

async def make_company(db_session, name="Acme Corp"):
    company = Company(id=str(uuid.uuid4()), name=name, slug=name.lower().replace(" ", "-"))
    db_session.add(company)
    await db_session.commit()
    await db_session.refresh(company)
    return company


async def make_user(db_session, company, name, role=UserRole.MEMBER, email=None):
    user = User(
        id=str(uuid.uuid4()),
        name=name,
        email=email or f"{name.lower().replace(' ', '.')}.{uuid.uuid4().hex[:6]}@acmecorp.io",
        password_hash=PASSWORD_HASH,
        company_id=company.id,
        role=role,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def company(db_session):
    return await make_company(db_session)


@pytest_asyncio.fixture
async def other_company(db_session):
    return await make_company(db_session, name="Globex")


@pytest_asyncio.fixture
async def admin(db_session, company):
    return await make_user(db_session, company, "Ada Admin", UserRole.ADMIN)


@pytest_asyncio.fixture
async def manager(db_session, company):
    return await make_user(db_session, company, "Dave Manager", UserRole.MANAGER)


@pytest_asyncio.fixture
async def member(db_session, company):
    return await make_user(db_session, company, "Mia Member", UserRole.MEMBER)


@pytest_asyncio.fixture
async def other_member(db_session, company):
    return await make_user(db_session, company, "Otto Member", UserRole.MEMBER)


@pytest_asyncio.fixture
async def outsider(db_session, other_company):
    return await make_user(db_session, other_company, "Olga Outsider", UserRole.ADMIN)


# ============================================================
# PROJECTS & TASKS
# ============================================================

@pytest_asyncio.fixture
async def project(db_session, company, manager, member):
    project = Project(
        id=str(uuid.uuid4()),
        company_id=company.id,
        name="Website Relaunch",
        description="",
        created_by=manager.id,
        member_ids=[manager.id, member.id],
    )
    db_session.add(project)
    await db_session.commit()
    await db_session.refresh(project)
    return project


async def make_task(db_session, project, creator, assignee=None, status=TaskStatus.TODO,
                    title="Write landing page copy"):
    task = Task(
        id=str(uuid.uuid4()),
        company_id=project.company_id,
        project_id=project.id,
        title=title,
        description="",
        created_by=creator.id,
        assigned_to=assignee.id if assignee else None,
        status=status,
        priority=TaskPriority.MEDIUM,
        completed_at=utcnow() if status == TaskStatus.DONE else None,
    )
    db_session.add(task)
    await db_session.commit()
    await db_session.refresh(task)
    return task


@pytest_asyncio.fixture
async def task(db_session, project, manager, member):
    """TODO task created by the manager, assigned to the member"""
    return await make_task(db_session, project, manager, member)


# ============================================================
# SERVICES
# ============================================================

def as_actor(user) -> CurrentUser:
    return CurrentUser(
        id=user.id, email=user.email, name=user.name,
        company_id=user.company_id, role=user.role,
    )


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def effects(sink):
    return DeferredEffects(sink=sink)


@pytest.fixture
def recorder(session_factory):
    return ActivityLogRecorder(session_factory)


@pytest.fixture
def notifier(session_factory, publisher, sink):
    return NotificationService(session_factory, publisher=publisher, sink=sink)


@pytest.fixture
def task_service(db_session, notifier, recorder, effects):
    return TaskService(db_session, notifier, recorder, effects)


@pytest.fixture
def comment_service(db_session, notifier, recorder, effects):
    return CommentService(db_session, notifier, recorder, effects)


def get_auth_headers(user) -> dict:
    """Generate auth headers for a user"""
    return {"Authorization": f"Bearer {AuthService.token_for(user)}"}
