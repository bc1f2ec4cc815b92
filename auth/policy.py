"""
auth/policy.py -- Authorization engine: who may do what to which resource.

Every access rule in Taskboard lives here. Routes never compare roles or
relation ids themselves; they ask the engine and translate the answer into
an HTTP status.

Rules:
  - A global role (administrator | leader | developer) grants or denies
    role-gated operations through has_role().
  - Resource-scoped relations (project leader, project member, comment
    author) gate operations on one resource instance.
  - administrator overrides every resource-scoped check. The override is
    decided BEFORE any relation lookup: for project checks an administrator
    costs one existence read (a missing project is still NOT_FOUND), and
    leader/member data is never consulted.
  - A project whose leader_id is NULL denies leader-only actions to every
    non-administrator, including the former leader. Nobody is promoted.

Fail-closed:
  A store error during a relation lookup is logged with its traceback and
  turned into a deny with DenyReason.STORE_ERROR. It is never a grant, and
  the reason lets callers tell "denied by policy" apart from "denied because
  the store failed".

Layer rule: may import core/ and the read side of tracker/. No api/ imports.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from auth.models import AuthContext, Role, User
from core.database import DatabaseNotConnected
from tracker.models import Comment, CommentRelations, Project, ProjectRelations, Task
from tracker.store import TrackerStore

logger = logging.getLogger("taskboard.policy")

_T = TypeVar("_T")

# ---------------------------------------------------------------------------
# Role tables
#
# One entry per Role member. tests/test_policy.py asserts both tables cover
# the whole enum, so adding a role fails the suite until every rule is
# decided for it.
# ---------------------------------------------------------------------------

_ADMIN_OVERRIDE: dict[Role, bool] = {
    Role.ADMINISTRATOR: True,
    Role.LEADER: False,
    Role.DEVELOPER: False,
}

_SEES_ALL_WORK: dict[Role, bool] = {
    Role.ADMINISTRATOR: True,
    Role.LEADER: True,
    Role.DEVELOPER: False,
}

# Roles allowed to create projects and tasks.
WORK_MANAGERS: frozenset[Role] = frozenset(r for r, allowed in _SEES_ALL_WORK.items() if allowed)


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


class Outcome(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    UNAUTHENTICATED = "unauthenticated"


class DenyReason(str, Enum):
    MISSING_ROLE = "missing_role"
    NOT_LEADER = "not_leader"
    NOT_MEMBER = "not_member"
    NOT_AUTHOR = "not_author"
    NOT_FOUND = "not_found"
    STORE_ERROR = "store_error"


@dataclass(frozen=True)
class Decision:
    """Result of one authorization check. There are no partial grants."""

    outcome: Outcome
    reason: Optional[DenyReason] = None

    @classmethod
    def allow(cls) -> Decision:
        return cls(Outcome.ALLOW)

    @classmethod
    def deny(cls, reason: DenyReason) -> Decision:
        return cls(Outcome.DENY, reason)

    @classmethod
    def unauthenticated(cls) -> Decision:
        return cls(Outcome.UNAUTHENTICATED)

    @property
    def allowed(self) -> bool:
        return self.outcome is Outcome.ALLOW

    def __bool__(self) -> bool:
        return self.allowed


# ---------------------------------------------------------------------------
# Role predicates (no store access)
# ---------------------------------------------------------------------------


def is_admin(user: User) -> bool:
    return _ADMIN_OVERRIDE[Role(user.role)]


def has_role(user: User, allowed_roles: Iterable[Role]) -> bool:
    """True iff the user's role is one of allowed_roles."""
    return Role(user.role) in {Role(r) for r in allowed_roles}


def can_manage_work(user: Optional[User]) -> bool:
    """Administrators and leaders may create and edit projects and tasks."""
    if user is None:
        return False
    return has_role(user, WORK_MANAGERS)


def can_view_all_tasks(user: Optional[User]) -> bool:
    if user is None:
        return False
    return _SEES_ALL_WORK[Role(user.role)]


def visible_tasks(user: Optional[User], tasks: Iterable[Task]) -> list[Task]:
    """Filter tasks down to what the user may see.

    Administrators and leaders see every task; developers see only tasks
    they are assigned to. Unassigned tasks are hidden from developers.
    """
    if user is None:
        return []
    tasks = list(tasks)
    if can_view_all_tasks(user):
        return tasks
    return [t for t in tasks if user.id in t.assignee_ids]


def can_move_task(user: Optional[User], task: Task) -> bool:
    """Administrators and leaders may move any task; developers only their own."""
    if user is None:
        return False
    if can_view_all_tasks(user):
        return True
    return user.id in task.assignee_ids


def is_comment_owner_or_admin(user: User, comment: Comment | CommentRelations) -> bool:
    """True iff the user wrote the comment or is an administrator."""
    if is_admin(user):
        return True
    return comment.author_id == user.id


# ---------------------------------------------------------------------------
# Engine (relation lookups)
# ---------------------------------------------------------------------------


class AuthorizationEngine:
    """Resource-scoped decisions backed by TrackerStore relation reads.

    The engine is stateless apart from the store handle, so one instance is
    shared by all requests (app.state.policy).

    check_* methods return a Decision carrying the deny reason; the is_*
    methods are the boolean view of the same rules.
    """

    def __init__(self, store: TrackerStore) -> None:
        self.store = store

    # -- boolean view -----------------------------------------------------

    def has_role(self, user: User, allowed_roles: Iterable[Role]) -> bool:
        return has_role(user, allowed_roles)

    def is_project_leader(self, user: User, project_id: int) -> bool:
        return self.check_project_leader(user, project_id).allowed

    def is_project_member(self, user: User, project_id: int) -> bool:
        return self.check_project_member(user, project_id).allowed

    def is_comment_owner_or_admin(self, user: User, comment: Comment | CommentRelations) -> bool:
        return is_comment_owner_or_admin(user, comment)

    # -- decisions --------------------------------------------------------

    def check_role(self, user: User, allowed_roles: Iterable[Role]) -> Decision:
        if has_role(user, allowed_roles):
            return Decision.allow()
        return Decision.deny(DenyReason.MISSING_ROLE)

    def check_project_leader(self, user: User, project_id: int) -> Decision:
        if is_admin(user):
            return self._admin_decision(project_id)
        relations, failure = self._lookup(self.store.get_project_relations, "project", project_id)
        if failure is not None:
            return failure
        if relations is None:
            return Decision.deny(DenyReason.NOT_FOUND)
        if leads_project(user, relations):
            return Decision.allow()
        return Decision.deny(DenyReason.NOT_LEADER)

    def check_project_member(self, user: User, project_id: int) -> Decision:
        if is_admin(user):
            return self._admin_decision(project_id)
        relations, failure = self._lookup(self.store.get_project_relations, "project", project_id)
        if failure is not None:
            return failure
        if relations is None:
            return Decision.deny(DenyReason.NOT_FOUND)
        if belongs_to_project(user, relations):
            return Decision.allow()
        return Decision.deny(DenyReason.NOT_MEMBER)

    def check_comment_owner(self, user: User, comment_id: int) -> Decision:
        if is_admin(user):
            return Decision.allow()
        relations, failure = self._lookup(self.store.get_comment_relations, "comment", comment_id)
        if failure is not None:
            return failure
        if relations is None:
            return Decision.deny(DenyReason.NOT_FOUND)
        if is_comment_owner_or_admin(user, relations):
            return Decision.allow()
        return Decision.deny(DenyReason.NOT_AUTHOR)

    def authorize(self, context: Optional[AuthContext], check: Callable[[User], Decision]) -> Decision:
        """Run `check` for an authenticated context; no context means UNAUTHENTICATED.

        Example:
            engine.authorize(ctx, lambda u: engine.check_project_member(u, project_id))
        """
        if context is None:
            return Decision.unauthenticated()
        return check(context.user)

    # -- internal ---------------------------------------------------------

    def _admin_decision(self, project_id: int) -> Decision:
        """Administrators skip the relation read; the project must still exist."""
        exists, failure = self._lookup(self.store.project_exists, "project", project_id)
        if failure is not None:
            return failure
        return Decision.allow() if exists else Decision.deny(DenyReason.NOT_FOUND)

    def _lookup(
        self, loader: Callable[[int], Optional[_T]], kind: str, resource_id: int
    ) -> tuple[Optional[_T], Optional[Decision]]:
        try:
            return loader(resource_id), None
        except (SQLAlchemyError, DatabaseNotConnected):
            logger.exception("Relation lookup for %s %s failed; denying access", kind, resource_id)
            return None, Decision.deny(DenyReason.STORE_ERROR)


def leads_project(user: User, relations: ProjectRelations) -> bool:
    """True iff the user currently holds the leader relation. A NULL leader matches nobody."""
    return relations.leader_id is not None and relations.leader_id == user.id


def belongs_to_project(user: User, relations: ProjectRelations) -> bool:
    """Membership includes leadership: a leader is always a member."""
    return leads_project(user, relations) or user.id in relations.member_ids


def relations_of(project: Project) -> ProjectRelations:
    """Project the relation fields out of an already loaded Project."""
    return ProjectRelations(
        project_id=project.id,
        leader_id=project.leader_id,
        member_ids=frozenset(project.member_ids),
    )


def visible_projects(user: User, projects: Iterable[Project]) -> list[Project]:
    """Administrators see every project; everyone else sees the ones they belong to."""
    projects = list(projects)
    if is_admin(user):
        return projects
    return [p for p in projects if belongs_to_project(user, relations_of(p))]
