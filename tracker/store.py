"""
tracker/store.py -- SQLAlchemy-backed persistence for projects, tasks and comments.

Uses SQLAlchemy Core (not ORM) so the domain dataclasses in tracker/models.py
remain the authoritative domain representation. Swapping SQLite for
PostgreSQL is a connection string change on the shared Database handle.

Pattern: Repository + Data Mapper. TrackerStore is the repository; the
_row_to_* functions are the mappers. Route handlers never touch SQL directly.

Relation projections:
  get_project_relations() and get_comment_relations() are the only reads the
  authorization engine performs. They return frozen snapshots -- membership
  may change right after the read unless the caller wraps check and action in
  one transaction.

Atomicity:
  Multi-statement writes (create_project, update_project, remove_member, ...)
  run inside engine.begin() so they commit or roll back as a unit.

Security: all queries use bound parameters. No f-strings in SQL.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, UniqueConstraint, select

from core.database import Database
from tracker.models import (
    Comment,
    CommentRelations,
    Project,
    ProjectRelations,
    Task,
    TaskPriority,
    TaskStatus,
)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_projects = Table(
    "projects",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("description", Text, nullable=False, server_default=""),
    Column("leader_id", Integer),  # NULL while the project has no leader
    Column("created_at", String(32), nullable=False),
)

_project_members = Table(
    "project_members",
    metadata,
    Column("project_id", Integer, nullable=False, index=True),
    Column("user_id", Integer, nullable=False, index=True),
    UniqueConstraint("project_id", "user_id", name="uq_project_member"),
)

_tasks = Table(
    "tasks",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("project_id", Integer, nullable=False, index=True),
    Column("title", String(255), nullable=False),
    Column("description", Text, nullable=False, server_default=""),
    Column("status", String(30), nullable=False, server_default=TaskStatus.PENDING.value),
    Column("priority", String(30), nullable=False, server_default=TaskPriority.MEDIUM.value),
    Column("created_at", String(32), nullable=False),
)

_task_assignees = Table(
    "task_assignees",
    metadata,
    Column("task_id", Integer, nullable=False, index=True),
    Column("user_id", Integer, nullable=False, index=True),
    UniqueConstraint("task_id", "user_id", name="uq_task_assignee"),
)

_comments = Table(
    "comments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("task_id", Integer, nullable=False, index=True),
    Column("author_id", Integer, nullable=False),
    Column("content", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)


# Marks "leave unchanged" where None is a meaningful value (a cleared leader).
_KEEP = object()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class TrackerStore:
    """Repository for Project, Task and Comment entities.

    Usage:
        store = TrackerStore(db)
        project_id = store.create_project(Project(name="Website", leader_id=1, member_ids={2}))
        store.add_member(project_id, 3)
        relations = store.get_project_relations(project_id)
    """

    def __init__(self, db: Database) -> None:
        self.db = db
        metadata.create_all(db.engine)

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(self, project: Project) -> int:
        """Insert a project with its initial members and return its ID."""
        with self.db.engine.begin() as conn:
            result = conn.execute(
                _projects.insert().values(
                    name=project.name.strip(),
                    description=project.description.strip(),
                    leader_id=project.leader_id,
                    created_at=_now_iso(),
                )
            )
            project_id = result.inserted_primary_key[0]
            for user_id in sorted(project.member_ids):
                conn.execute(_project_members.insert().values(project_id=project_id, user_id=user_id))
        return project_id

    def get_project(self, project_id: int) -> Optional[Project]:
        """Return the project with its member set, or None if it does not exist."""
        with self.db.engine.connect() as conn:
            row = conn.execute(_projects.select().where(_projects.c.id == project_id)).fetchone()
            if row is None:
                return None
            member_ids = self._member_ids(conn, project_id)
        return _row_to_project(row, member_ids)

    def project_exists(self, project_id: int) -> bool:
        with self.db.engine.connect() as conn:
            row = conn.execute(select(_projects.c.id).where(_projects.c.id == project_id)).fetchone()
        return row is not None

    def get_project_relations(self, project_id: int) -> Optional[ProjectRelations]:
        """Return the leader/member projection for a project, or None if absent."""
        with self.db.engine.connect() as conn:
            leader_row = conn.execute(
                select(_projects.c.leader_id).where(_projects.c.id == project_id)
            ).fetchone()
            if leader_row is None:
                return None
            member_ids = self._member_ids(conn, project_id)
        return ProjectRelations(
            project_id=project_id,
            leader_id=leader_row.leader_id,
            member_ids=frozenset(member_ids),
        )

    def list_projects(self) -> list[Project]:
        """Return every project, newest first."""
        with self.db.engine.connect() as conn:
            rows = conn.execute(_projects.select().order_by(_projects.c.id.desc())).fetchall()
            return [_row_to_project(r, self._member_ids(conn, r.id)) for r in rows]

    def update_project(
        self,
        project_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        member_ids: Optional[set[int]] = None,
        leader_id: object = _KEEP,
    ) -> bool:
        """Apply a partial update. Returns False if the project does not exist.

        member_ids replaces the member set; members dropped by it have their
        tasks in this project reassigned to the leader in effect after the
        update. Pass leader_id=None to clear the leader.
        """
        with self.db.engine.begin() as conn:
            if conn.execute(select(_projects.c.id).where(_projects.c.id == project_id)).fetchone() is None:
                return False

            values: dict = {}
            if name is not None:
                values["name"] = name.strip()
            if description is not None:
                values["description"] = description.strip()
            if leader_id is not _KEEP:
                values["leader_id"] = leader_id
            if values:
                conn.execute(_projects.update().where(_projects.c.id == project_id).values(**values))

            if member_ids is not None:
                current = self._member_ids(conn, project_id)
                wanted = set(member_ids)
                for user_id in sorted(wanted - current):
                    conn.execute(_project_members.insert().values(project_id=project_id, user_id=user_id))
                removed = sorted(current - wanted)
                if removed:
                    conn.execute(
                        _project_members.delete().where(
                            (_project_members.c.project_id == project_id) & _project_members.c.user_id.in_(removed)
                        )
                    )
                    self._reassign_tasks(conn, project_id, removed)
        return True

    def add_member(self, project_id: int, user_id: int) -> bool:
        """Add user_id to the project's members. Returns False if already a member."""
        with self.db.engine.begin() as conn:
            exists = conn.execute(
                select(_project_members.c.user_id).where(
                    (_project_members.c.project_id == project_id) & (_project_members.c.user_id == user_id)
                )
            ).fetchone()
            if exists is not None:
                return False
            conn.execute(_project_members.insert().values(project_id=project_id, user_id=user_id))
        return True

    def remove_member(self, project_id: int, user_id: int) -> bool:
        """Remove user_id from the project's members and hand their tasks to the leader.

        Membership and task assignments change in one transaction. Returns
        False if user_id was not a member.
        """
        with self.db.engine.begin() as conn:
            result = conn.execute(
                _project_members.delete().where(
                    (_project_members.c.project_id == project_id) & (_project_members.c.user_id == user_id)
                )
            )
            if result.rowcount == 0:
                return False
            self._reassign_tasks(conn, project_id, [user_id])
        return True

    def set_leader(self, project_id: int, user_id: Optional[int]) -> bool:
        """Appoint (or clear, with None) the project leader. Returns True if the project exists."""
        with self.db.engine.begin() as conn:
            result = conn.execute(_projects.update().where(_projects.c.id == project_id).values(leader_id=user_id))
        return result.rowcount > 0

    def delete_project(self, project_id: int) -> bool:
        """Delete a project together with its members, tasks, assignees and comments."""
        with self.db.engine.begin() as conn:
            task_ids = [r.id for r in conn.execute(select(_tasks.c.id).where(_tasks.c.project_id == project_id))]
            if task_ids:
                conn.execute(_comments.delete().where(_comments.c.task_id.in_(task_ids)))
                conn.execute(_task_assignees.delete().where(_task_assignees.c.task_id.in_(task_ids)))
                conn.execute(_tasks.delete().where(_tasks.c.id.in_(task_ids)))
            conn.execute(_project_members.delete().where(_project_members.c.project_id == project_id))
            result = conn.execute(_projects.delete().where(_projects.c.id == project_id))
        return result.rowcount > 0

    def detach_user(self, user_id: int) -> None:
        """Drop every relation a deleted user holds.

        Projects led by the user keep existing with leader_id = NULL; nobody is
        promoted in their place.
        """
        with self.db.engine.begin() as conn:
            conn.execute(_projects.update().where(_projects.c.leader_id == user_id).values(leader_id=None))
            conn.execute(_project_members.delete().where(_project_members.c.user_id == user_id))
            conn.execute(_task_assignees.delete().where(_task_assignees.c.user_id == user_id))

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(self, task: Task) -> int:
        """Insert a task with its assignees and return its ID."""
        with self.db.engine.begin() as conn:
            result = conn.execute(
                _tasks.insert().values(
                    project_id=task.project_id,
                    title=task.title.strip(),
                    description=task.description.strip(),
                    status=TaskStatus(task.status).value,
                    priority=TaskPriority(task.priority).value,
                    created_at=_now_iso(),
                )
            )
            task_id = result.inserted_primary_key[0]
            for user_id in sorted(task.assignee_ids):
                conn.execute(_task_assignees.insert().values(task_id=task_id, user_id=user_id))
        return task_id

    def get_task(self, task_id: int) -> Optional[Task]:
        with self.db.engine.connect() as conn:
            row = conn.execute(_tasks.select().where(_tasks.c.id == task_id)).fetchone()
            if row is None:
                return None
            return _row_to_task(row, self._assignee_ids(conn, task_id))

    def list_tasks(self, project_id: int) -> list[Task]:
        """Return the tasks of one project in creation order."""
        with self.db.engine.connect() as conn:
            rows = conn.execute(
                _tasks.select().where(_tasks.c.project_id == project_id).order_by(_tasks.c.id)
            ).fetchall()
            return [_row_to_task(r, self._assignee_ids(conn, r.id)) for r in rows]

    def update_task(
        self,
        task_id: int,
        title: Optional[str] = None,
        description: Optional[str] = None,
        status: Optional[TaskStatus] = None,
        priority: Optional[TaskPriority] = None,
        assignee_ids: Optional[set[int]] = None,
    ) -> bool:
        """Apply a partial update; assignee_ids replaces the whole set."""
        values: dict = {}
        if title is not None:
            values["title"] = title.strip()
        if description is not None:
            values["description"] = description.strip()
        if status is not None:
            values["status"] = TaskStatus(status).value
        if priority is not None:
            values["priority"] = TaskPriority(priority).value

        with self.db.engine.begin() as conn:
            if conn.execute(select(_tasks.c.id).where(_tasks.c.id == task_id)).fetchone() is None:
                return False
            if values:
                conn.execute(_tasks.update().where(_tasks.c.id == task_id).values(**values))
            if assignee_ids is not None:
                conn.execute(_task_assignees.delete().where(_task_assignees.c.task_id == task_id))
                for user_id in sorted(assignee_ids):
                    conn.execute(_task_assignees.insert().values(task_id=task_id, user_id=user_id))
        return True

    def delete_task(self, task_id: int) -> bool:
        """Delete a task with its assignees and comments."""
        with self.db.engine.begin() as conn:
            conn.execute(_comments.delete().where(_comments.c.task_id == task_id))
            conn.execute(_task_assignees.delete().where(_task_assignees.c.task_id == task_id))
            result = conn.execute(_tasks.delete().where(_tasks.c.id == task_id))
        return result.rowcount > 0

    def update_task_status(self, task_id: int, status: TaskStatus) -> bool:
        with self.db.engine.begin() as conn:
            result = conn.execute(
                _tasks.update().where(_tasks.c.id == task_id).values(status=TaskStatus(status).value)
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def create_comment(self, comment: Comment) -> int:
        with self.db.engine.begin() as conn:
            result = conn.execute(
                _comments.insert().values(
                    task_id=comment.task_id,
                    author_id=comment.author_id,
                    content=comment.content.strip(),
                    created_at=_now_iso(),
                )
            )
        return result.inserted_primary_key[0]

    def get_comment(self, comment_id: int) -> Optional[Comment]:
        with self.db.engine.connect() as conn:
            row = conn.execute(_comments.select().where(_comments.c.id == comment_id)).fetchone()
        return _row_to_comment(row) if row is not None else None

    def get_comment_relations(self, comment_id: int) -> Optional[CommentRelations]:
        """Return the author/task projection for a comment, or None if absent."""
        with self.db.engine.connect() as conn:
            row = conn.execute(
                select(_comments.c.id, _comments.c.author_id, _comments.c.task_id).where(
                    _comments.c.id == comment_id
                )
            ).fetchone()
        if row is None:
            return None
        return CommentRelations(comment_id=row.id, author_id=row.author_id, task_id=row.task_id)

    def list_comments(self, task_id: int) -> list[Comment]:
        """Return a task's comments, newest first."""
        with self.db.engine.connect() as conn:
            rows = conn.execute(
                _comments.select().where(_comments.c.task_id == task_id).order_by(_comments.c.id.desc())
            ).fetchall()
        return [_row_to_comment(r) for r in rows]

    def delete_comment(self, comment_id: int) -> bool:
        with self.db.engine.begin() as conn:
            result = conn.execute(_comments.delete().where(_comments.c.id == comment_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _member_ids(conn, project_id: int) -> set[int]:
        rows = conn.execute(
            select(_project_members.c.user_id).where(_project_members.c.project_id == project_id)
        ).fetchall()
        return {r.user_id for r in rows}

    @staticmethod
    def _reassign_tasks(conn, project_id: int, user_ids: list[int]) -> None:
        """Swap user_ids for the project leader on every task of the project.

        With no leader the users are only dropped from the assignees.
        """
        project_tasks = select(_tasks.c.id).where(_tasks.c.project_id == project_id)
        affected = sorted(
            {
                r.task_id
                for r in conn.execute(
                    select(_task_assignees.c.task_id).where(
                        _task_assignees.c.task_id.in_(project_tasks) & _task_assignees.c.user_id.in_(user_ids)
                    )
                )
            }
        )
        if not affected:
            return
        conn.execute(
            _task_assignees.delete().where(
                _task_assignees.c.task_id.in_(affected) & _task_assignees.c.user_id.in_(user_ids)
            )
        )
        leader_id = conn.execute(select(_projects.c.leader_id).where(_projects.c.id == project_id)).scalar()
        if leader_id is None:
            return
        assigned = {
            r.task_id
            for r in conn.execute(
                select(_task_assignees.c.task_id).where(
                    _task_assignees.c.task_id.in_(affected) & (_task_assignees.c.user_id == leader_id)
                )
            )
        }
        for task_id in affected:
            if task_id not in assigned:
                conn.execute(_task_assignees.insert().values(task_id=task_id, user_id=leader_id))

    @staticmethod
    def _assignee_ids(conn, task_id: int) -> set[int]:
        rows = conn.execute(select(_task_assignees.c.user_id).where(_task_assignees.c.task_id == task_id)).fetchall()
        return {r.user_id for r in rows}


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_project(row, member_ids: set[int]) -> Project:
    return Project(
        id=row.id,
        name=row.name,
        description=row.description,
        leader_id=row.leader_id,
        member_ids=member_ids,
        created_at=row.created_at,
    )


def _row_to_task(row, assignee_ids: set[int]) -> Task:
    return Task(
        id=row.id,
        project_id=row.project_id,
        title=row.title,
        description=row.description,
        status=TaskStatus(row.status),
        priority=TaskPriority(row.priority),
        assignee_ids=assignee_ids,
        created_at=row.created_at,
    )


def _row_to_comment(row) -> Comment:
    return Comment(
        id=row.id,
        task_id=row.task_id,
        author_id=row.author_id,
        content=row.content,
        created_at=row.created_at,
    )
