"""
tracker/models.py -- Domain dataclasses for projects, tasks and comments.

These are pure data containers with zero logic. Persistence lives in
tracker/store.py; access decisions live in auth/policy.py.

id is None before a record is written to the database.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class Project:
    """A project with one (optional) leader and a set of members.

    leader_id is None after the leader account was removed. Nobody holds the
    leader relation until an administrator appoints a new one.
    """

    name: str
    description: str = ""
    leader_id: Optional[int] = None
    member_ids: set[int] = field(default_factory=set)
    id: Optional[int] = None
    created_at: str = ""


@dataclass
class Task:
    """A unit of work inside a project, assigned to zero or more users."""

    project_id: int
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    assignee_ids: set[int] = field(default_factory=set)
    id: Optional[int] = None
    created_at: str = ""


@dataclass
class Comment:
    """A comment left on a task. author_id is the only relation used for access."""

    task_id: int
    author_id: int
    content: str
    id: Optional[int] = None
    created_at: str = ""


@dataclass(frozen=True)
class ProjectRelations:
    """Read-only projection of the relations that scope project access."""

    project_id: int
    leader_id: Optional[int]
    member_ids: frozenset[int]


@dataclass(frozen=True)
class CommentRelations:
    """Read-only projection of the relations that scope comment access."""

    comment_id: int
    author_id: int
    task_id: int
