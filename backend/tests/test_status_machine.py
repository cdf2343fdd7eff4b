# tests/test_status_machine.py — Transition table and role gating (no database)
from datetime import datetime, timezone

import pytest

from exceptions import ForbiddenError, InvalidOperationError, InvalidTransitionError
from models import TaskStatus, UserRole
from status_machine import (
    TRANSITIONS, allowed_transitions, is_valid_transition, ensure_transition,
    check_status_change, completed_at_for,
)

S = TaskStatus
VALID_EDGES = {
    (S.TODO, S.IN_PROGRESS),
    (S.IN_PROGRESS, S.IN_REVIEW), (S.IN_PROGRESS, S.TODO), (S.IN_PROGRESS, S.BLOCKER),
    (S.IN_REVIEW, S.DONE), (S.IN_REVIEW, S.IN_PROGRESS), (S.IN_REVIEW, S.BLOCKER),
    (S.DONE, S.TODO),
    (S.BLOCKER, S.TODO), (S.BLOCKER, S.IN_PROGRESS),
}


def test_table_covers_every_status():
    assert set(TRANSITIONS) == set(TaskStatus)


def test_valid_edges_match_table():
    edges = {(src, dst) for src, targets in TRANSITIONS.items() for dst in targets}
    assert edges == VALID_EDGES


def test_every_other_pair_is_invalid():
    for src in TaskStatus:
        for dst in TaskStatus:
            assert is_valid_transition(src, dst) == ((src, dst) in VALID_EDGES)


def test_self_transition_is_invalid():
    for status in TaskStatus:
        assert not is_valid_transition(status, status)


def test_invalid_transition_message_lists_allowed_targets():
    with pytest.raises(InvalidTransitionError) as exc:
        ensure_transition(S.IN_PROGRESS, S.DONE)
    assert "IN_REVIEW, TODO, BLOCKER" in exc.value.message
    assert exc.value.allowed == [S.IN_REVIEW, S.TODO, S.BLOCKER]
    assert exc.value.current == S.IN_PROGRESS


def test_accepts_plain_strings():
    assert allowed_transitions("DONE") == (S.TODO,)
    assert is_valid_transition("TODO", "IN_PROGRESS")


def test_member_must_be_assignee():
    with pytest.raises(ForbiddenError, match="assigned to you"):
        check_status_change("m1", UserRole.MEMBER, "someone-else", S.TODO, S.IN_PROGRESS)


def test_member_blocked_on_blocker_for_every_target():
    for target in TaskStatus:
        with pytest.raises(ForbiddenError, match="blocked"):
            check_status_change("m1", UserRole.MEMBER, "m1", S.BLOCKER, target)


def test_member_cannot_bundle_other_fields():
    with pytest.raises(InvalidOperationError):
        check_status_change("m1", UserRole.MEMBER, "m1", S.TODO, S.IN_PROGRESS, ["title"])


def test_manager_may_leave_blocker_without_being_assignee():
    check_status_change("boss", UserRole.MANAGER, "m1", S.BLOCKER, S.TODO)
    check_status_change("boss", UserRole.ADMIN, None, S.BLOCKER, S.IN_PROGRESS)


def test_edge_checked_for_admins_too():
    with pytest.raises(InvalidTransitionError):
        check_status_change("boss", UserRole.ADMIN, None, S.TODO, S.DONE)


def test_completed_at_follows_done():
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)
    earlier = datetime(2024, 4, 1, tzinfo=timezone.utc)
    assert completed_at_for(S.DONE, None, now) == now
    assert completed_at_for(S.DONE, earlier, now) == earlier
    assert completed_at_for(S.TODO, earlier, now) is None
    assert completed_at_for(S.IN_REVIEW, None, now) is None
