"""
tests/test_policy.py -- Unit tests for auth/policy.py.

Covers:
  - Role tables are exhaustive over the Role enum
  - has_role matches set membership for every role/subset combination
  - Administrator override skips relation reads; a missing project is NOT_FOUND for admins too
  - Project leader / member / comment author scenarios against a real store
  - Null leader denies leader-only actions to every non-administrator
  - Membership includes leadership
  - Store errors fail closed with DenyReason.STORE_ERROR and are logged
  - Missing resources deny with NOT_FOUND; no context -> UNAUTHENTICATED
  - visible_tasks / can_move_task / visible_projects filtering
"""

from __future__ import annotations

import itertools
import logging
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from auth.models import AuthContext, Role, User
from auth.policy import (
    _ADMIN_OVERRIDE,
    _SEES_ALL_WORK,
    AuthorizationEngine,
    Decision,
    DenyReason,
    Outcome,
    can_manage_work,
    can_move_task,
    has_role,
    visible_projects,
    visible_tasks,
)
from core.database import DatabaseNotConnected
from tracker.models import Comment, Project, Task
from tracker.store import TrackerStore

ADMIN = User(email="admin@example.com", role=Role.ADMINISTRATOR, id=1)
LEADER = User(email="leader@example.com", role=Role.LEADER, id=2)
MEMBER = User(email="member@example.com", role=Role.DEVELOPER, id=3)
OUTSIDER = User(email="outsider@example.com", role=Role.DEVELOPER, id=4)


@pytest.fixture()
def engine(tracker: TrackerStore) -> AuthorizationEngine:
    return AuthorizationEngine(tracker)


@pytest.fixture()
def project_id(tracker: TrackerStore) -> int:
    return tracker.create_project(Project(name="Website", leader_id=LEADER.id, member_ids={MEMBER.id}))


def _failing_store(exc: Exception) -> MagicMock:
    store = MagicMock(spec=TrackerStore)
    store.get_project_relations.side_effect = exc
    store.project_exists.side_effect = exc
    store.get_comment_relations.side_effect = exc
    return store


class TestRoleTables:
    def test_tables_cover_every_role(self) -> None:
        assert set(_ADMIN_OVERRIDE) == set(Role)
        assert set(_SEES_ALL_WORK) == set(Role)

    def test_only_administrator_overrides(self) -> None:
        assert [r for r, v in _ADMIN_OVERRIDE.items() if v] == [Role.ADMINISTRATOR]

    def test_has_role_is_set_membership(self) -> None:
        roles = list(Role)
        for role in roles:
            user = User(email="u@example.com", role=role, id=1)
            for size in range(len(roles) + 1):
                for allowed in itertools.combinations(roles, size):
                    assert has_role(user, allowed) == (role in allowed)

    def test_engine_check_role(self, engine: AuthorizationEngine) -> None:
        assert engine.check_role(LEADER, [Role.LEADER, Role.ADMINISTRATOR]).allowed
        decision = engine.check_role(MEMBER, [Role.LEADER])
        assert decision == Decision.deny(DenyReason.MISSING_ROLE)
        assert engine.has_role(MEMBER, [Role.DEVELOPER])

    def test_can_manage_work(self) -> None:
        assert can_manage_work(ADMIN)
        assert can_manage_work(LEADER)
        assert not can_manage_work(MEMBER)
        assert not can_manage_work(None)


class TestProjectRelations:
    def test_leader_scenario(self, engine: AuthorizationEngine, project_id: int) -> None:
        assert engine.is_project_leader(LEADER, project_id)
        assert not engine.is_project_leader(MEMBER, project_id)
        assert not engine.is_project_leader(OUTSIDER, project_id)
        assert engine.is_project_leader(ADMIN, project_id)

    def test_member_scenario(self, engine: AuthorizationEngine, project_id: int) -> None:
        assert engine.is_project_member(MEMBER, project_id)
        assert engine.is_project_member(LEADER, project_id)
        assert not engine.is_project_member(OUTSIDER, project_id)
        assert engine.is_project_member(ADMIN, project_id)

    def test_deny_reasons(self, engine: AuthorizationEngine, project_id: int) -> None:
        assert engine.check_project_leader(MEMBER, project_id) == Decision.deny(DenyReason.NOT_LEADER)
        assert engine.check_project_member(OUTSIDER, project_id) == Decision.deny(DenyReason.NOT_MEMBER)

    def test_leadership_implies_membership(self, tracker: TrackerStore, engine: AuthorizationEngine) -> None:
        # Leader is not in the member table at all.
        pid = tracker.create_project(Project(name="Solo", leader_id=LEADER.id))
        assert engine.is_project_leader(LEADER, pid)
        assert engine.is_project_member(LEADER, pid)

    def test_null_leader_denies_former_leader(
        self, tracker: TrackerStore, engine: AuthorizationEngine, project_id: int
    ) -> None:
        tracker.set_leader(project_id, None)
        assert not engine.is_project_leader(LEADER, project_id)
        assert not engine.is_project_leader(MEMBER, project_id)
        assert engine.is_project_leader(ADMIN, project_id)

    def test_missing_project_is_not_found(self, engine: AuthorizationEngine) -> None:
        assert engine.check_project_leader(LEADER, 999) == Decision.deny(DenyReason.NOT_FOUND)
        assert engine.check_project_member(MEMBER, 999) == Decision.deny(DenyReason.NOT_FOUND)

    def test_admin_override_skips_relation_reads(self) -> None:
        store = MagicMock(spec=TrackerStore)
        store.project_exists.return_value = True
        engine = AuthorizationEngine(store)
        assert engine.is_project_leader(ADMIN, 42)
        assert engine.is_project_member(ADMIN, 42)
        assert engine.check_comment_owner(ADMIN, 42).allowed
        store.get_project_relations.assert_not_called()
        store.get_comment_relations.assert_not_called()

    def test_admin_denied_for_missing_project(self, engine: AuthorizationEngine) -> None:
        assert engine.is_project_leader(ADMIN, 999) is False
        assert engine.is_project_member(ADMIN, 999) is False
        assert engine.check_project_leader(ADMIN, 999) == Decision.deny(DenyReason.NOT_FOUND)
        assert engine.check_project_member(ADMIN, 999) == Decision.deny(DenyReason.NOT_FOUND)

    def test_admin_allowed_regardless_of_relations(
        self, tracker: TrackerStore, engine: AuthorizationEngine, project_id: int
    ) -> None:
        tracker.set_leader(project_id, None)
        tracker.remove_member(project_id, MEMBER.id)
        assert engine.is_project_leader(ADMIN, project_id)
        assert engine.is_project_member(ADMIN, project_id)


class TestComments:
    def test_comment_owner_scenario(self, tracker: TrackerStore, engine: AuthorizationEngine, project_id: int) -> None:
        task_id = tracker.create_task(Task(project_id=project_id, title="Design"))
        comment_id = tracker.create_comment(Comment(task_id=task_id, author_id=MEMBER.id, content="Done"))
        comment = tracker.get_comment(comment_id)

        assert engine.is_comment_owner_or_admin(MEMBER, comment)
        assert not engine.is_comment_owner_or_admin(LEADER, comment)
        assert engine.is_comment_owner_or_admin(ADMIN, comment)

        assert engine.check_comment_owner(MEMBER, comment_id).allowed
        assert engine.check_comment_owner(LEADER, comment_id) == Decision.deny(DenyReason.NOT_AUTHOR)

    def test_missing_comment_is_not_found(self, engine: AuthorizationEngine) -> None:
        assert engine.check_comment_owner(MEMBER, 999) == Decision.deny(DenyReason.NOT_FOUND)


class TestFailClosed:
    @pytest.mark.parametrize(
        "exc",
        [OperationalError("SELECT 1", {}, Exception("database is locked")), DatabaseNotConnected("gone")],
    )
    def test_store_error_denies(self, exc: Exception, caplog: pytest.LogCaptureFixture) -> None:
        engine = AuthorizationEngine(_failing_store(exc))
        with caplog.at_level(logging.ERROR, logger="taskboard.policy"):
            assert engine.check_project_leader(LEADER, 1) == Decision.deny(DenyReason.STORE_ERROR)
            assert engine.check_project_member(MEMBER, 1) == Decision.deny(DenyReason.STORE_ERROR)
            assert engine.check_comment_owner(MEMBER, 1) == Decision.deny(DenyReason.STORE_ERROR)
        assert len([r for r in caplog.records if r.name == "taskboard.policy"]) == 3

    def test_store_error_denies_admin_project_checks(self) -> None:
        engine = AuthorizationEngine(_failing_store(OperationalError("SELECT 1", {}, Exception("boom"))))
        assert engine.check_project_leader(ADMIN, 1) == Decision.deny(DenyReason.STORE_ERROR)
        assert engine.check_comment_owner(ADMIN, 1).allowed

    def test_unexpected_errors_propagate(self) -> None:
        engine = AuthorizationEngine(_failing_store(KeyError("bug")))
        with pytest.raises(KeyError):
            engine.check_project_member(MEMBER, 1)


class TestAuthorize:
    def test_no_context_is_unauthenticated(self, engine: AuthorizationEngine) -> None:
        decision = engine.authorize(None, lambda u: Decision.allow())
        assert decision.outcome is Outcome.UNAUTHENTICATED
        assert not decision

    def test_context_runs_check(self, engine: AuthorizationEngine, project_id: int) -> None:
        ctx = AuthContext(user=MEMBER)
        assert engine.authorize(ctx, lambda u: engine.check_project_member(u, project_id))
        assert not engine.authorize(ctx, lambda u: engine.check_project_leader(u, project_id))


class TestVisibility:
    TASKS = [
        Task(project_id=1, title="mine", assignee_ids={MEMBER.id}, id=1),
        Task(project_id=1, title="theirs", assignee_ids={OUTSIDER.id}, id=2),
        Task(project_id=1, title="unassigned", id=3),
    ]

    def test_developer_sees_only_assigned_tasks(self) -> None:
        assert [t.id for t in visible_tasks(MEMBER, self.TASKS)] == [1]

    @pytest.mark.parametrize("user", [ADMIN, LEADER])
    def test_managers_see_all_tasks(self, user: User) -> None:
        assert [t.id for t in visible_tasks(user, self.TASKS)] == [1, 2, 3]

    def test_anonymous_sees_nothing(self) -> None:
        assert visible_tasks(None, self.TASKS) == []

    def test_can_move_task(self) -> None:
        mine, theirs, _ = self.TASKS
        assert can_move_task(MEMBER, mine)
        assert not can_move_task(MEMBER, theirs)
        assert can_move_task(LEADER, theirs)
        assert can_move_task(ADMIN, theirs)
        assert not can_move_task(None, mine)

    def test_visible_projects(self) -> None:
        projects = [
            Project(name="led", leader_id=LEADER.id, id=1),
            Project(name="joined", member_ids={MEMBER.id}, id=2),
            Project(name="foreign", leader_id=99, id=3),
        ]
        assert [p.id for p in visible_projects(LEADER, projects)] == [1]
        assert [p.id for p in visible_projects(MEMBER, projects)] == [2]
        assert [p.id for p in visible_projects(ADMIN, projects)] == [1, 2, 3]
