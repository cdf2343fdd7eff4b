# tests/test_projects.py — Project router tests
import pytest
from httpx import AsyncClient
from sqlalchemy import select

from models import ActivityLog, ActivityAction
from tests.conftest import get_auth_headers


@pytest.mark.asyncio
async def test_create_project_adds_creator(client: AsyncClient, session_factory, manager, member, outsider):
    resp = await client.post("/api/v1/projects", json={
        "name": "Mobile App", "member_ids": [member.id, outsider.id],
    }, headers=get_auth_headers(manager))
    assert resp.status_code == 201
    body = resp.json()
    # members from other companies are dropped
    assert body["member_ids"] == [manager.id, member.id]
    assert body["status"] == "ACTIVE"

    async with session_factory() as s:
        logs = (await s.execute(select(ActivityLog))).scalars().unique().all()
    assert [log.action for log in logs] == [ActivityAction.PROJECT_CREATED]


@pytest.mark.asyncio
async def test_member_cannot_create_project(client: AsyncClient, member):
    resp = await client.post("/api/v1/projects", json={"name": "Side quest"}, headers=get_auth_headers(member))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_member_sees_only_joined_projects(client: AsyncClient, project, manager, member, other_member):
    await client.post("/api/v1/projects", json={"name": "Internal"}, headers=get_auth_headers(manager))

    resp = await client.get("/api/v1/projects", headers=get_auth_headers(member))
    assert [p["id"] for p in resp.json()["data"]] == [project.id]

    resp = await client.get("/api/v1/projects", headers=get_auth_headers(other_member))
    assert resp.json()["data"] == []
    resp = await client.get(f"/api/v1/projects/{project.id}", headers=get_auth_headers(other_member))
    assert resp.status_code == 404

    resp = await client.get("/api/v1/projects", headers=get_auth_headers(manager))
    assert resp.json()["pagination"]["total"] == 2


@pytest.mark.asyncio
async def test_update_project(client: AsyncClient, project, manager):
    resp = await client.put(f"/api/v1/projects/{project.id}", json={"name": "Relaunch v2", "status": "ARCHIVED"},
                            headers=get_auth_headers(manager))
    assert resp.status_code == 200
    assert resp.json()["name"] == "Relaunch v2"
    assert resp.json()["status"] == "ARCHIVED"


@pytest.mark.asyncio
async def test_add_and_remove_members(client: AsyncClient, project, manager, member, other_member):
    headers = get_auth_headers(manager)
    resp = await client.post(f"/api/v1/projects/{project.id}/members",
                             json={"user_ids": [other_member.id, member.id]}, headers=headers)
    assert resp.json()["member_ids"] == [manager.id, member.id, other_member.id]

    resp = await client.delete(f"/api/v1/projects/{project.id}/members/{member.id}", headers=headers)
    assert resp.status_code == 200
    assert member.id not in resp.json()["member_ids"]

    resp = await client.delete(f"/api/v1/projects/{project.id}/members/{manager.id}", headers=headers)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_delete_project(client: AsyncClient, project, manager, outsider):
    resp = await client.delete(f"/api/v1/projects/{project.id}", headers=get_auth_headers(outsider))
    assert resp.status_code == 404

    resp = await client.delete(f"/api/v1/projects/{project.id}", headers=get_auth_headers(manager))
    assert resp.status_code == 200
    resp = await client.get(f"/api/v1/projects/{project.id}", headers=get_auth_headers(manager))
    assert resp.status_code == 404
