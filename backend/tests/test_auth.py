# tests/test_auth.py — Signup, login and role permission tests
import pytest
from httpx import AsyncClient
from sqlalchemy import select

from auth import ROLE_PERMISSIONS, AuthService, Operation, can, to_slug
from models import ActivityLog, ActivityAction, Company, UserRole
from tests.conftest import TEST_PASSWORD, get_auth_headers, make_user


def _signup(name, email, company_name, role=None, password="SecurePass123"):
    body = {"name": name, "email": email, "password": password, "company_name": company_name}
    if role:
        body["role"] = role
    return body


@pytest.mark.asyncio
class TestSignup:
    async def test_first_signup_creates_company_and_admin(self, client: AsyncClient, session_factory):
        res = await client.post("/api/v1/auth/signup", json=_signup("Ada", "ada@acmecorp.io", "Acme Corp"))
        assert res.status_code == 201
        data = res.json()
        assert data["token_type"] == "bearer"
        assert data["user"]["role"] == "ADMIN"
        assert data["user"]["company_name"] == "Acme Corp"
        assert "activity-logs:list" in data["user"]["permissions"]

        async with session_factory() as s:
            company = (await s.execute(select(Company))).scalar_one()
            actions = {log.action for log in (await s.execute(select(ActivityLog))).scalars().unique().all()}
        assert company.slug == "acme-corp"
        assert actions == {ActivityAction.COMPANY_CREATED, ActivityAction.USER_JOINED}

    async def test_joining_company_defaults_to_member(self, client: AsyncClient, session_factory):
        first = await client.post("/api/v1/auth/signup", json=_signup("Ada", "ada@acmecorp.io", "Acme Corp"))
        res = await client.post("/api/v1/auth/signup", json=_signup("Mo", "mo@acmecorp.io", "acme  corp"))
        assert res.status_code == 201
        assert res.json()["user"]["role"] == "MEMBER"
        assert res.json()["user"]["company_id"] == first.json()["user"]["company_id"]

        async with session_factory() as s:
            logs = (await s.execute(
                select(ActivityLog).where(ActivityLog.action == ActivityAction.COMPANY_CREATED)
            )).scalars().unique().all()
        assert len(logs) == 1

    async def test_joining_as_manager(self, client: AsyncClient):
        await client.post("/api/v1/auth/signup", json=_signup("Ada", "ada@acmecorp.io", "Acme Corp"))
        res = await client.post(
            "/api/v1/auth/signup", json=_signup("Max", "max@acmecorp.io", "Acme Corp", role="MANAGER")
        )
        assert res.json()["user"]["role"] == "MANAGER"

    async def test_cannot_join_as_admin(self, client: AsyncClient):
        await client.post("/api/v1/auth/signup", json=_signup("Ada", "ada@acmecorp.io", "Acme Corp"))
        res = await client.post(
            "/api/v1/auth/signup", json=_signup("Eve", "eve@acmecorp.io", "Acme Corp", role="ADMIN")
        )
        assert res.json()["user"]["role"] == "MEMBER"

    async def test_concurrent_signup_joins_company_created_first(self, client: AsyncClient, monkeypatch):
        first = await client.post("/api/v1/auth/signup", json=_signup("Ada", "ada@acmecorp.io", "Acme Corp"))
        real_find = AuthService._find_company
        stale = []

        async def find_missing_once(slug, db):
            # the second request looked before the first one committed
            if not stale:
                stale.append(slug)
                return None
            return await real_find(slug, db)

        monkeypatch.setattr(AuthService, "_find_company", staticmethod(find_missing_once))
        res = await client.post("/api/v1/auth/signup", json=_signup("Mo", "mo@acmecorp.io", "Acme Corp"))

        assert stale == ["acme-corp"]
        assert res.status_code == 201
        assert res.json()["user"]["role"] == "MEMBER"
        assert res.json()["user"]["company_id"] == first.json()["user"]["company_id"]

    async def test_duplicate_email(self, client: AsyncClient):
        await client.post("/api/v1/auth/signup", json=_signup("Ada", "ada@acmecorp.io", "Acme Corp"))
        res = await client.post("/api/v1/auth/signup", json=_signup("Ada 2", "ADA@acmecorp.io", "Other Co"))
        assert res.status_code == 400
        assert res.json()["detail"] == "User already exists with this email"

    async def test_weak_password(self, client: AsyncClient):
        res = await client.post(
            "/api/v1/auth/signup", json=_signup("Ada", "ada@acmecorp.io", "Acme Corp", password="short")
        )
        assert res.status_code == 422

    async def test_invalid_email(self, client: AsyncClient):
        res = await client.post("/api/v1/auth/signup", json=_signup("Ada", "not-an-email", "Acme Corp"))
        assert res.status_code == 422

    async def test_check_company(self, client: AsyncClient, company):
        res = await client.get("/api/v1/auth/check-company", params={"company_name": "ACME corp"})
        assert res.json() == {"exists": True}
        res = await client.get("/api/v1/auth/check-company", params={"company_name": "Initech"})
        assert res.json() == {"exists": False}


@pytest.mark.asyncio
class TestLogin:
    async def test_login_success(self, client: AsyncClient, member):
        res = await client.post("/api/v1/auth/login", json={"email": member.email, "password": TEST_PASSWORD})
        assert res.status_code == 200
        data = res.json()
        assert data["user"]["id"] == member.id
        assert data["user"]["role"] == "MEMBER"
        assert "tasks:assign" not in data["user"]["permissions"]

        me = await client.get(
            "/api/v1/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"}
        )
        assert me.status_code == 200
        assert me.json()["email"] == member.email
        assert me.json()["company_name"] == "Acme Corp"

    async def test_login_wrong_password(self, client: AsyncClient, member):
        res = await client.post("/api/v1/auth/login", json={"email": member.email, "password": "nope-nope"})
        assert res.status_code == 401

    async def test_removed_member_cannot_login_or_use_token(self, client: AsyncClient, db_session, company):
        gone = await make_user(db_session, company, "Gone Member")
        headers = get_auth_headers(gone)
        gone.is_deleted = True
        await db_session.commit()

        res = await client.post("/api/v1/auth/login", json={"email": gone.email, "password": TEST_PASSWORD})
        assert res.status_code == 401
        res = await client.get("/api/v1/auth/me", headers=headers)
        assert res.status_code == 401


# ============================================================
# PERMISSIONS
# ============================================================

def test_every_operation_has_roles():
    assert set(ROLE_PERMISSIONS) == set(Operation)


def test_member_permissions():
    allowed = {op for op in Operation if can(UserRole.MEMBER, op)}
    assert allowed == {
        Operation.USERS_LIST, Operation.USERS_READ,
        Operation.PROJECTS_LIST, Operation.PROJECTS_READ,
        Operation.TASKS_LIST, Operation.TASKS_READ, Operation.TASKS_UPDATE,
        Operation.COMMENTS_CREATE, Operation.COMMENTS_LIST,
        Operation.GOALS_LIST, Operation.FEEDBACK_LIST,
    }


def test_only_admin_manages_members_and_reads_audit_log():
    for op in (Operation.USERS_UPDATE_ROLE, Operation.USERS_REMOVE, Operation.ACTIVITY_LOGS_LIST):
        assert can(UserRole.ADMIN, op)
        assert not can(UserRole.MANAGER, op)
        assert not can("MEMBER", op)


def test_slug():
    assert to_slug("Acme Corp") == "acme-corp"
    assert to_slug("Acme, Inc.") == "acme-inc"


def test_only_managers_give_feedback():
    assert can(UserRole.MANAGER, Operation.FEEDBACK_CREATE)
    assert not can(UserRole.ADMIN, Operation.FEEDBACK_CREATE)
    assert not can(UserRole.MEMBER, Operation.FEEDBACK_CREATE)
