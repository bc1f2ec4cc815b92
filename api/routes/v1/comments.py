"""
api/routes/v1/comments.py -- Task comment routes for the Taskboard REST API.

Routes:
  GET    /tasks/{task_id}/comments  -- list comments, newest first (project members)
  POST   /tasks/{task_id}/comments  -- add a comment (project members)
  DELETE /comments/{comment_id}     -- delete a comment (author or administrator)
"""

import logging

from fastapi import APIRouter, Depends, Request, Response

from api.decisions import enforce, raise_not_found
from api.limiter import limiter
from api.models import CommentCreate, CommentResponse
from auth.dependencies import get_current_user
from auth.models import User
from auth.policy import AuthorizationEngine
from tracker.models import Comment, Task
from tracker.store import TrackerStore

logger = logging.getLogger("taskboard.api")

router = APIRouter(dependencies=[Depends(get_current_user)])


@router.get("/tasks/{task_id}/comments", response_model=list[CommentResponse])
def list_comments(
    request: Request,
    task_id: int,
    current_user: User = Depends(get_current_user),
) -> list[CommentResponse]:
    tracker: TrackerStore = request.app.state.tracker
    policy: AuthorizationEngine = request.app.state.policy

    task = _load_task(tracker, task_id)
    enforce(policy.check_project_member(current_user, task.project_id), "Task")
    return [CommentResponse.from_comment(c) for c in tracker.list_comments(task_id)]


@router.post("/tasks/{task_id}/comments", response_model=CommentResponse, status_code=201)
@limiter.limit("60/minute")
def create_comment(
    request: Request,
    task_id: int,
    body: CommentCreate,
    current_user: User = Depends(get_current_user),
) -> CommentResponse:
    tracker: TrackerStore = request.app.state.tracker
    policy: AuthorizationEngine = request.app.state.policy

    task = _load_task(tracker, task_id)
    enforce(policy.check_project_member(current_user, task.project_id), "Task")

    comment_id = tracker.create_comment(Comment(task_id=task_id, author_id=current_user.id, content=body.content))
    comment = tracker.get_comment(comment_id)
    if comment is None:
        raise_not_found("Comment")
    return CommentResponse.from_comment(comment)


@router.delete("/comments/{comment_id}", status_code=204)
def delete_comment(
    request: Request,
    comment_id: int,
    current_user: User = Depends(get_current_user),
) -> Response:
    """Delete a comment. Only its author or an administrator may do this."""
    tracker: TrackerStore = request.app.state.tracker
    policy: AuthorizationEngine = request.app.state.policy

    if tracker.get_comment(comment_id) is None:
        raise_not_found("Comment")
    enforce(policy.check_comment_owner(current_user, comment_id), "Comment")

    tracker.delete_comment(comment_id)
    logger.info("user_id=%s deleted comment_id=%s", current_user.id, comment_id)
    return Response(status_code=204)


def _load_task(tracker: TrackerStore, task_id: int) -> Task:
    task = tracker.get_task(task_id)
    if task is None:
        raise_not_found("Task")
    return task
