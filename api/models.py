"""
API request and response models for the Taskboard REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
tracker/models.py, which own the internal domain representation. Route
handlers map between the two.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Role, User
from tracker.models import Comment, Project, Task, TaskPriority, TaskStatus

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^\S+@\S+\.\S+$"

# bcrypt only looks at the first 72 bytes of a password.
_PASSWORD_MAX = 72
_PASSWORD_MIN = 6


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)
    role: Role = Role.DEVELOPER

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.lower()


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    No pattern check on email: a malformed email must produce the same
    generic bad_credentials answer as an unknown one, not a 422.
    """

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class ProfilePatch(BaseModel):
    """Request body for PATCH /api/v1/auth/me."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    avatar: Optional[str] = Field(default=None, max_length=2048)


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/auth/users/{id} (admin only)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    role: Optional[Role] = None
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. Never carries the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    name: str
    role: Role
    avatar: str
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            avatar=user.avatar,
            created_at=user.created_at or "",
        )


class LoginResponse(BaseModel):
    """Response for POST /auth/login and POST /auth/register."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str
    expires_in: int
    user: UserResponse


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


class ProjectCreate(BaseModel):
    """Request body for POST /api/v1/projects.

    leader_id defaults to the caller when the caller is a leader.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    description: str = Field(default="", max_length=5000)
    leader_id: Optional[int] = None
    member_ids: list[int] = Field(default_factory=list, max_length=500)


class ProjectUpdate(BaseModel):
    """Request body for PATCH /api/v1/projects/{id}.

    member_ids replaces the whole member set. leader_id is honoured only for
    administrators; a leader may send it unchanged but not move it. Sending
    leader_id=null (admin) clears the leader.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    member_ids: Optional[list[int]] = Field(default=None, max_length=500)
    leader_id: Optional[int] = None


class MemberChange(BaseModel):
    """Request body for PUT /api/v1/projects/{id}/members."""

    action: Literal["add", "remove"]
    user_id: int


class LeaderChange(BaseModel):
    """Request body for PUT /api/v1/projects/{id}/leader. null clears the leader."""

    user_id: Optional[int] = None


class ProjectResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: str
    leader_id: Optional[int]
    member_ids: list[int]
    created_at: str

    @classmethod
    def from_project(cls, project: Project) -> "ProjectResponse":
        return cls(
            id=project.id,
            name=project.name,
            description=project.description,
            leader_id=project.leader_id,
            member_ids=sorted(project.member_ids),
            created_at=project.created_at,
        )


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskCreate(BaseModel):
    """Request body for POST /api/v1/projects/{id}/tasks."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=255)
    description: str = Field(default="", max_length=5000)
    priority: TaskPriority = TaskPriority.MEDIUM
    assignee_ids: list[int] = Field(default_factory=list, max_length=100)


class TaskUpdate(BaseModel):
    """Request body for PATCH /api/v1/tasks/{id}. assignee_ids replaces the whole set."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assignee_ids: Optional[list[int]] = Field(default=None, max_length=100)


class TaskStatusUpdate(BaseModel):
    """Request body for PATCH /api/v1/tasks/{id}/status."""

    status: TaskStatus


class TaskResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    project_id: int
    title: str
    description: str
    status: TaskStatus
    priority: TaskPriority
    assignee_ids: list[int]
    created_at: str

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls(
            id=task.id,
            project_id=task.project_id,
            title=task.title,
            description=task.description,
            status=task.status,
            priority=task.priority,
            assignee_ids=sorted(task.assignee_ids),
            created_at=task.created_at,
        )


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


class CommentCreate(BaseModel):
    """Request body for POST /api/v1/tasks/{id}/comments."""

    model_config = ConfigDict(str_strip_whitespace=True)

    content: str = Field(min_length=1, max_length=5000)


class CommentResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    task_id: int
    author_id: int
    content: str
    created_at: str

    @classmethod
    def from_comment(cls, comment: Comment) -> "CommentResponse":
        return cls(
            id=comment.id,
            task_id=comment.task_id,
            author_id=comment.author_id,
            content=comment.content,
            created_at=comment.created_at,
        )
