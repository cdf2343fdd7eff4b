# tests/test_comments.py — Comment creation, mentions fanout and comment routes
import pytest
from sqlalchemy import select

from exceptions import ForbiddenError, InvalidOperationError, NotFoundError
from models import ActivityLog, ActivityAction, Comment, Notification, NotificationType
from tests.conftest import as_actor, get_auth_headers, make_task, make_user


async def _notifications(session_factory):
    async with session_factory() as s:
        return list((await s.execute(select(Notification))).scalars().unique().all())


# ============================================================
# SERVICE
# ============================================================

@pytest.mark.asyncio
async def test_comment_fans_out_to_assignee_creator_and_mentions(
    comment_service, effects, session_factory, db_session, company, project, manager, member, publisher,
):
    bob = await make_user(db_session, company, "Bob Jones")
    alice = await make_user(db_session, company, "alice")
    task = await make_task(db_session, project, manager, member)
    author = await make_user(db_session, company, "Cleo Commenter")

    comment = await comment_service.create_comment(
        task.id, 'Great work @"Bob Jones" and @alice!', as_actor(author)
    )
    await effects.run()

    assert sorted(comment.mentions) == sorted([bob.id, alice.id])
    got = {(n.recipient_id, n.type) for n in await _notifications(session_factory)}
    assert got == {
        (member.id, NotificationType.COMMENT_ADDED),
        (manager.id, NotificationType.COMMENT_ADDED),
        (bob.id, NotificationType.COMMENT_MENTIONED),
        (alice.id, NotificationType.COMMENT_MENTIONED),
    }
    assert len(publisher.sent) == 4


@pytest.mark.asyncio
async def test_mentioned_assignee_is_notified_once(
    comment_service, effects, session_factory, task, admin, member,
):
    await comment_service.create_comment(task.id, f'@"{member.name}" please check', as_actor(admin))
    await effects.run()

    notes = await _notifications(session_factory)
    member_notes = [n for n in notes if n.recipient_id == member.id]
    assert len(member_notes) == 1
    assert member_notes[0].type == NotificationType.COMMENT_ADDED


@pytest.mark.asyncio
async def test_author_never_notifies_self(comment_service, effects, session_factory, task, member, manager):
    await comment_service.create_comment(task.id, "note to self", as_actor(member))
    await effects.run()

    assert [n.recipient_id for n in await _notifications(session_factory)] == [manager.id]


@pytest.mark.asyncio
async def test_comment_logs_activity(comment_service, effects, session_factory, task, manager):
    comment = await comment_service.create_comment(task.id, "Looks good", as_actor(manager))
    await effects.run()

    async with session_factory() as s:
        logs = (await s.execute(select(ActivityLog))).scalars().unique().all()
    assert len(logs) == 1
    assert logs[0].action == ActivityAction.COMMENT_ADDED
    assert logs[0].target_type == "Comment" and logs[0].target_id == comment.id
    assert logs[0].details == {"task_id": task.id, "mention_count": 0}


@pytest.mark.asyncio
async def test_blank_or_oversized_comment_rejected(comment_service, effects, task, manager):
    with pytest.raises(InvalidOperationError):
        await comment_service.create_comment(task.id, "   ", as_actor(manager))
    with pytest.raises(InvalidOperationError):
        await comment_service.create_comment(task.id, "x" * 5001, as_actor(manager))
    assert len(effects) == 0


@pytest.mark.asyncio
async def test_comment_on_foreign_task_not_found(comment_service, task, outsider):
    with pytest.raises(NotFoundError):
        await comment_service.create_comment(task.id, "hello", as_actor(outsider))


@pytest.mark.asyncio
async def test_member_cannot_delete_comments(comment_service, task, manager, member):
    comment = await comment_service.create_comment(task.id, "hello", as_actor(manager))
    with pytest.raises(ForbiddenError):
        await comment_service.delete_comment(comment.id, as_actor(member))


@pytest.mark.asyncio
async def test_deleted_comment_drops_from_list(comment_service, effects, task, manager):
    first = await comment_service.create_comment(task.id, "first", as_actor(manager))
    await comment_service.create_comment(task.id, "second", as_actor(manager))
    await comment_service.delete_comment(first.id, as_actor(manager))

    remaining = await comment_service.list_comments(task.id, as_actor(manager))
    assert [c.text for c in remaining] == ["second"]
    assert effects.names[-1] == "activity.comment_deleted"


# ============================================================
# ROUTES
# ============================================================

@pytest.mark.asyncio
async def test_create_and_list_comments(client, task, member, manager):
    resp = await client.post(
        "/api/v1/comments", json={"task_id": task.id, "text": "On it"},
        headers=get_auth_headers(member),
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["author_id"] == member.id
    assert body["mentions"] == []

    resp = await client.get(f"/api/v1/comments?task_id={task.id}", headers=get_auth_headers(manager))
    assert resp.status_code == 200
    assert [c["text"] for c in resp.json()] == ["On it"]


@pytest.mark.asyncio
async def test_comment_route_notifies_in_background(client, session_factory, task, member, manager):
    resp = await client.post(
        "/api/v1/comments", json={"task_id": task.id, "text": "Ready for review"},
        headers=get_auth_headers(member),
    )
    assert resp.status_code == 201

    notes = await _notifications(session_factory)
    assert [(n.recipient_id, n.type) for n in notes] == [(manager.id, NotificationType.COMMENT_ADDED)]


@pytest.mark.asyncio
async def test_whitespace_comment_returns_400(client, task, member):
    resp = await client.post(
        "/api/v1/comments", json={"task_id": task.id, "text": "   "},
        headers=get_auth_headers(member),
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_operation"


@pytest.mark.asyncio
async def test_cross_tenant_comment_returns_404(client, task, outsider, session_factory):
    resp = await client.post(
        "/api/v1/comments", json={"task_id": task.id, "text": "hi"},
        headers=get_auth_headers(outsider),
    )
    assert resp.status_code == 404
    async with session_factory() as s:
        assert (await s.execute(select(Comment))).scalars().all() == []


@pytest.mark.asyncio
async def test_comments_require_auth(client, task):
    resp = await client.get(f"/api/v1/comments?task_id={task.id}")
    assert resp.status_code in (401, 403)
