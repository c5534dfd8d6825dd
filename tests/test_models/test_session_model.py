"""Tests for the Session model and status transitions."""

import pytest

from agentorchestrator.models.session import (
    ActivityState,
    InvalidTransition,
    PRInfo,
    RuntimeHandle,
    Session,
    SessionStatus,
)


class TestSessionStatus:
    def test_terminal_statuses(self):
        assert SessionStatus.MERGED.is_terminal
        assert SessionStatus.KILLED.is_terminal
        assert SessionStatus.CLEANUP.is_terminal
        assert not SessionStatus.WORKING.is_terminal
        assert not SessionStatus.PR_OPEN.is_terminal

    def test_restorable_statuses(self):
        assert SessionStatus.KILLED.is_restorable
        assert SessionStatus.CLEANUP.is_restorable
        assert not SessionStatus.MERGED.is_restorable
        assert not SessionStatus.WORKING.is_restorable

    def test_forward_transitions(self):
        assert SessionStatus.WORKING.can_transition_to(SessionStatus.PR_OPEN)
        assert SessionStatus.PR_OPEN.can_transition_to(SessionStatus.MERGED)
        assert SessionStatus.WORKING.can_transition_to(SessionStatus.KILLED)

    def test_no_backwards_transitions(self):
        assert not SessionStatus.PR_OPEN.can_transition_to(SessionStatus.WORKING)
        assert not SessionStatus.MERGED.can_transition_to(SessionStatus.PR_OPEN)
        assert not SessionStatus.KILLED.can_transition_to(SessionStatus.WORKING)

    def test_same_status_is_allowed(self):
        for status in SessionStatus:
            assert status.can_transition_to(status)


class TestSession:
    def test_requires_id_and_project(self):
        with pytest.raises(ValueError):
            Session(id="", project_id="app")
        with pytest.raises(ValueError):
            Session(id="app-1", project_id="")

    def test_defaults(self):
        s = Session(id="app-1", project_id="app")
        assert s.status == SessionStatus.WORKING
        assert s.activity == ActivityState.ACTIVE
        assert s.pr is None
        assert s.runtime_handle is None

    def test_with_status_returns_copy(self):
        s = Session(id="app-1", project_id="app")
        moved = s.with_status(SessionStatus.PR_OPEN)
        assert moved.status == SessionStatus.PR_OPEN
        assert s.status == SessionStatus.WORKING

    def test_with_status_same_returns_self(self):
        s = Session(id="app-1", project_id="app")
        assert s.with_status(SessionStatus.WORKING) is s

    def test_with_status_backwards_raises(self):
        s = Session(id="app-1", project_id="app", status=SessionStatus.MERGED)
        with pytest.raises(InvalidTransition, match="merged to working"):
            s.with_status(SessionStatus.WORKING)

    def test_with_activity_unknown_is_noop(self):
        s = Session(id="app-1", project_id="app")
        assert s.with_activity(ActivityState.UNKNOWN) is s

    def test_with_activity_updates_timestamp(self):
        s = Session(id="app-1", project_id="app")
        idle = s.with_activity(ActivityState.IDLE)
        assert idle.activity == ActivityState.IDLE
        assert idle.last_activity_at >= s.last_activity_at

    def test_with_metadata_merges_and_deletes(self):
        s = Session(id="app-1", project_id="app", metadata={"a": "1", "b": "2"})
        updated = s.with_metadata(a="", c="3")
        assert updated.metadata == {"b": "2", "c": "3"}
        assert s.metadata == {"a": "1", "b": "2"}

    def test_to_dict(self):
        s = Session(
            id="app-1",
            project_id="app",
            branch="feat/1",
            pr=PRInfo(number=7, url="https://github.com/acme/app/pull/7"),
            runtime_handle=RuntimeHandle(id="app-1", runtime_name="tmux"),
        )
        d = s.to_dict()
        assert d["status"] == "working"
        assert d["pr"] == "https://github.com/acme/app/pull/7"
        assert d["runtime_handle"] == {"id": "app-1", "runtime_name": "tmux", "data": {}}


class TestRuntimeHandle:
    def test_from_dict(self):
        handle = RuntimeHandle.from_dict({"id": "x", "runtime_name": "tmux", "data": {"pid": 4}})
        assert handle == RuntimeHandle(id="x", runtime_name="tmux", data={"pid": 4})

    def test_from_dict_missing_data(self):
        handle = RuntimeHandle.from_dict({"id": "x"})
        assert handle.runtime_name == ""
        assert handle.data == {}


class TestPRInfo:
    def test_owner_repo(self):
        pr = PRInfo(number=1, url="u", owner="acme", repo="app")
        assert pr.owner_repo == "acme/app"
