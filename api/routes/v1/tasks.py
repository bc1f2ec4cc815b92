"""
api/routes/v1/tasks.py -- Task routes for the Taskboard REST API.

Routes:
  POST   /projects/{project_id}/tasks  -- create task (project leader)
  GET    /projects/{project_id}/tasks  -- tasks visible to the caller (members)
  GET    /tasks/{task_id}              -- task detail (members; developers only their own)
  PATCH  /tasks/{task_id}              -- edit or reassign a task (project leader)
  DELETE /tasks/{task_id}              -- delete a task and its comments (project leader)
  PATCH  /tasks/{task_id}/status       -- move a task (members; developers only their own)

Developers see only the tasks they are assigned to. Assignees must belong to
the project (leader or member).
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.decisions import enforce, raise_not_found
from api.limiter import limiter
from api.models import TaskCreate, TaskResponse, TaskStatusUpdate, TaskUpdate
from auth.dependencies import get_current_user
from auth.models import User
from auth.policy import AuthorizationEngine, can_move_task, relations_of, visible_tasks
from tracker.models import Project, Task
from tracker.store import TrackerStore

logger = logging.getLogger("taskboard.api")

router = APIRouter(dependencies=[Depends(get_current_user)])


@router.post("/projects/{project_id}/tasks", response_model=TaskResponse, status_code=201)
@limiter.limit("60/minute")
def create_task(
    request: Request,
    project_id: int,
    body: TaskCreate,
    current_user: User = Depends(get_current_user),
) -> TaskResponse:
    tracker: TrackerStore = request.app.state.tracker
    policy: AuthorizationEngine = request.app.state.policy

    project = _load_project(tracker, project_id)
    enforce(policy.check_project_leader(current_user, project_id), "Project")
    _require_assignees_in_project(project, body.assignee_ids)

    task_id = tracker.create_task(
        Task(
            project_id=project_id,
            title=body.title,
            description=body.description,
            priority=body.priority,
            assignee_ids=set(body.assignee_ids),
        )
    )
    logger.info("user_id=%s created task_id=%s in project_id=%s", current_user.id, task_id, project_id)
    return TaskResponse.from_task(_load_task(tracker, task_id))


@router.get("/projects/{project_id}/tasks", response_model=list[TaskResponse])
def list_tasks(
    request: Request,
    project_id: int,
    current_user: User = Depends(get_current_user),
) -> list[TaskResponse]:
    tracker: TrackerStore = request.app.state.tracker
    policy: AuthorizationEngine = request.app.state.policy

    _load_project(tracker, project_id)
    enforce(policy.check_project_member(current_user, project_id), "Project")
    return [TaskResponse.from_task(t) for t in visible_tasks(current_user, tracker.list_tasks(project_id))]


@router.get("/tasks/{task_id}", response_model=TaskResponse)
def get_task(
    request: Request,
    task_id: int,
    current_user: User = Depends(get_current_user),
) -> TaskResponse:
    """Task detail. Same visibility as the project task list."""
    tracker: TrackerStore = request.app.state.tracker
    policy: AuthorizationEngine = request.app.state.policy

    task = _load_task(tracker, task_id)
    enforce(policy.check_project_member(current_user, task.project_id), "Task")
    if not visible_tasks(current_user, [task]):
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "This task is not assigned to you."},
        )
    return TaskResponse.from_task(task)


@router.patch("/tasks/{task_id}", response_model=TaskResponse)
def update_task(
    request: Request,
    task_id: int,
    body: TaskUpdate,
    current_user: User = Depends(get_current_user),
) -> TaskResponse:
    """Edit or reassign a task. Project leader or administrator only."""
    tracker: TrackerStore = request.app.state.tracker
    policy: AuthorizationEngine = request.app.state.policy

    task = _load_task(tracker, task_id)
    enforce(policy.check_project_leader(current_user, task.project_id), "Task")

    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "Nothing to update."},
        )
    if body.assignee_ids is not None:
        _require_assignees_in_project(_load_project(tracker, task.project_id), body.assignee_ids)

    tracker.update_task(
        task_id,
        title=body.title,
        description=body.description,
        status=body.status,
        priority=body.priority,
        assignee_ids=set(body.assignee_ids) if body.assignee_ids is not None else None,
    )
    logger.info("user_id=%s updated task_id=%s fields=%s", current_user.id, task_id, sorted(changes))
    return TaskResponse.from_task(_load_task(tracker, task_id))


@router.delete("/tasks/{task_id}", status_code=204)
def delete_task(
    request: Request,
    task_id: int,
    current_user: User = Depends(get_current_user),
) -> Response:
    tracker: TrackerStore = request.app.state.tracker
    policy: AuthorizationEngine = request.app.state.policy

    task = _load_task(tracker, task_id)
    enforce(policy.check_project_leader(current_user, task.project_id), "Task")
    tracker.delete_task(task_id)
    logger.info("user_id=%s deleted task_id=%s from project_id=%s", current_user.id, task_id, task.project_id)
    return Response(status_code=204)


@router.patch("/tasks/{task_id}/status", response_model=TaskResponse)
def update_task_status(
    request: Request,
    task_id: int,
    body: TaskStatusUpdate,
    current_user: User = Depends(get_current_user),
) -> TaskResponse:
    """Move a task to a new status.

    The caller must belong to the task's project; a developer must also be
    one of the task's assignees.
    """
    tracker: TrackerStore = request.app.state.tracker
    policy: AuthorizationEngine = request.app.state.policy

    task = _load_task(tracker, task_id)
    enforce(policy.check_project_member(current_user, task.project_id), "Task")
    if not can_move_task(current_user, task):
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Only assignees can move this task."},
        )

    if task.status is not body.status:
        tracker.update_task_status(task_id, body.status)
        logger.info(
            "user_id=%s moved task_id=%s: %s -> %s",
            current_user.id,
            task_id,
            task.status.value,
            body.status.value,
        )
    return TaskResponse.from_task(_load_task(tracker, task_id))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_project(tracker: TrackerStore, project_id: int) -> Project:
    project = tracker.get_project(project_id)
    if project is None:
        raise_not_found("Project")
    return project


def _load_task(tracker: TrackerStore, task_id: int) -> Task:
    task = tracker.get_task(task_id)
    if task is None:
        raise_not_found("Task")
    return task


def _require_assignees_in_project(project: Project, assignee_ids: list[int]) -> None:
    relations = relations_of(project)
    outsiders = sorted(
        uid for uid in set(assignee_ids) if uid != relations.leader_id and uid not in relations.member_ids
    )
    if outsiders:
        raise HTTPException(
            status_code=400,
            detail={
                "code": "not_member",
                "message": f"Assignees must belong to the project: {', '.join(map(str, outsiders))}.",
            },
        )
