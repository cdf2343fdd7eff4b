# tests/test_activity_logs.py — Activity recorder and audit trail router
import pytest
from httpx import AsyncClient

from models import ActivityAction, EntityRef
from tests.conftest import get_auth_headers


@pytest.mark.asyncio
async def test_recorder_writes_in_own_session(recorder, session_factory, company, manager, task):
    log = await recorder.record(
        company.id, ActivityAction.TASK_UPDATED, manager.id, EntityRef.task(task.id),
        "Task updated", {"fields": ["title"]},
    )
    assert log.target == EntityRef.task(task.id)
    assert log.details == {"fields": ["title"]}


@pytest.mark.asyncio
async def test_admin_lists_logs(client: AsyncClient, recorder, company, admin, manager, task):
    await recorder.record(company.id, ActivityAction.TASK_CREATED, manager.id, EntityRef.task(task.id), "created")
    await recorder.record(company.id, ActivityAction.TASK_DELETED, manager.id, EntityRef.task(task.id), "deleted")

    resp = await client.get("/api/v1/activity-logs", headers=get_auth_headers(admin))
    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 2
    entry = body["logs"][0]
    assert entry["performed_by"]["name"] == manager.name
    assert entry["target_type"] == "Task"

    resp = await client.get("/api/v1/activity-logs?action=TASK_CREATED", headers=get_auth_headers(admin))
    assert [log["action"] for log in resp.json()["logs"]] == ["TASK_CREATED"]


@pytest.mark.asyncio
async def test_logs_are_admin_only(client: AsyncClient, manager, member):
    for user in (manager, member):
        resp = await client.get("/api/v1/activity-logs", headers=get_auth_headers(user))
        assert resp.status_code == 403


@pytest.mark.asyncio
async def test_logs_scoped_to_company(client: AsyncClient, recorder, company, manager, outsider, task):
    await recorder.record(company.id, ActivityAction.TASK_CREATED, manager.id, EntityRef.task(task.id), "created")
    resp = await client.get("/api/v1/activity-logs", headers=get_auth_headers(outsider))
    assert resp.json() == {"logs": [], "total": 0}
