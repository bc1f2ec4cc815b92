"""
api/routes/v1/projects.py -- Project routes for the Taskboard REST API.

Routes:
  POST   /projects                  -- create project (administrator or leader)
  GET    /projects                  -- projects visible to the caller
  GET    /projects/{id}             -- project detail (members only)
  PATCH  /projects/{id}             -- edit name/description/members (project leader)
  PUT    /projects/{id}/members     -- add/remove a member (project leader)
  PUT    /projects/{id}/leader      -- appoint or clear the leader (admin only)
  DELETE /projects/{id}             -- delete project and its tasks (admin only)

Every route loads the project before asking the policy engine, so a missing
project is a 404 before any permission question is asked. Removing a member
reassigns their tasks in the project to the leader.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.decisions import enforce, raise_not_found
from api.limiter import limiter
from api.models import LeaderChange, MemberChange, ProjectCreate, ProjectResponse, ProjectUpdate
from auth.dependencies import get_current_user, require_admin
from auth.models import Role, User
from auth.policy import AuthorizationEngine, can_manage_work, is_admin, visible_projects
from auth.store import UserStore
from tracker.models import Project
from tracker.store import TrackerStore

logger = logging.getLogger("taskboard.api")

# All project routes require authentication.
router = APIRouter(dependencies=[Depends(get_current_user)])


@router.post("/projects", response_model=ProjectResponse, status_code=201)
@limiter.limit("30/minute")
def create_project(
    request: Request,
    body: ProjectCreate,
    current_user: User = Depends(get_current_user),
) -> ProjectResponse:
    """Create a project.

    A leader creating a project becomes its leader unless leader_id names
    someone else. Administrators may leave the project without a leader.
    """
    if not can_manage_work(current_user):
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Only administrators and leaders can create projects."},
        )
    user_store: UserStore = request.app.state.user_store
    tracker: TrackerStore = request.app.state.tracker

    leader_id = body.leader_id
    if leader_id is None and current_user.role is Role.LEADER:
        leader_id = current_user.id
    _require_users(user_store, ([leader_id] if leader_id is not None else []) + body.member_ids)

    project_id = tracker.create_project(
        Project(
            name=body.name,
            description=body.description,
            leader_id=leader_id,
            member_ids=set(body.member_ids),
        )
    )
    logger.info("user_id=%s created project_id=%s leader_id=%s", current_user.id, project_id, leader_id)
    return ProjectResponse.from_project(_load_project(tracker, project_id))


@router.get("/projects", response_model=list[ProjectResponse])
def list_projects(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> list[ProjectResponse]:
    """Administrators see every project; others see the ones they lead or belong to."""
    tracker: TrackerStore = request.app.state.tracker
    return [ProjectResponse.from_project(p) for p in visible_projects(current_user, tracker.list_projects())]


@router.get("/projects/{project_id}", response_model=ProjectResponse)
def get_project(
    request: Request,
    project_id: int,
    current_user: User = Depends(get_current_user),
) -> ProjectResponse:
    tracker: TrackerStore = request.app.state.tracker
    policy: AuthorizationEngine = request.app.state.policy

    project = _load_project(tracker, project_id)
    enforce(policy.check_project_member(current_user, project_id), "Project")
    return ProjectResponse.from_project(project)


@router.patch("/projects/{project_id}", response_model=ProjectResponse)
def update_project(
    request: Request,
    project_id: int,
    body: ProjectUpdate,
    current_user: User = Depends(get_current_user),
) -> ProjectResponse:
    """Edit a project's name, description or member set.

    Allowed for the project leader and administrators. Only an administrator
    may move or clear the leadership; a leader may echo the current
    leader_id back unchanged. Members dropped from the set hand their tasks
    in this project to the leader.
    """
    user_store: UserStore = request.app.state.user_store
    tracker: TrackerStore = request.app.state.tracker
    policy: AuthorizationEngine = request.app.state.policy

    project = _load_project(tracker, project_id)
    enforce(policy.check_project_leader(current_user, project_id), "Project")

    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "Nothing to update."},
        )

    leader_change: dict = {}
    if "leader_id" in changes and changes["leader_id"] != project.leader_id:
        if not is_admin(current_user):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Only administrators can change the project leader."},
            )
        if body.leader_id is not None:
            _require_users(user_store, [body.leader_id])
        leader_change["leader_id"] = body.leader_id
    if body.member_ids is not None:
        _require_users(user_store, body.member_ids)

    tracker.update_project(
        project_id,
        name=body.name,
        description=body.description,
        member_ids=set(body.member_ids) if body.member_ids is not None else None,
        **leader_change,
    )
    logger.info("user_id=%s updated project_id=%s fields=%s", current_user.id, project_id, sorted(changes))
    return ProjectResponse.from_project(_load_project(tracker, project_id))


@router.put("/projects/{project_id}/members", response_model=ProjectResponse)
def change_members(
    request: Request,
    project_id: int,
    body: MemberChange,
    current_user: User = Depends(get_current_user),
) -> ProjectResponse:
    """Add or remove one member. Only the project leader (or an administrator) may do this.

    A removed member's tasks in this project are reassigned to the leader.

    The leader cannot be removed through this route; appoint a new leader
    first via PUT /projects/{id}/leader.
    """
    user_store: UserStore = request.app.state.user_store
    tracker: TrackerStore = request.app.state.tracker
    policy: AuthorizationEngine = request.app.state.policy

    project = _load_project(tracker, project_id)
    enforce(policy.check_project_leader(current_user, project_id), "Project")

    if body.action == "add":
        _require_users(user_store, [body.user_id])
        if tracker.add_member(project_id, body.user_id):
            logger.info("user_id=%s added user_id=%s to project_id=%s", current_user.id, body.user_id, project_id)
    else:
        if project.leader_id == body.user_id:
            raise HTTPException(
                status_code=400,
                detail={"code": "leader_removal", "message": "The project leader cannot be removed as a member."},
            )
        if not tracker.remove_member(project_id, body.user_id):
            raise HTTPException(
                status_code=404,
                detail={"code": "not_found", "message": "User is not a member of this project."},
            )
        logger.info(
            "user_id=%s removed user_id=%s from project_id=%s; their tasks moved to the leader",
            current_user.id,
            body.user_id,
            project_id,
        )

    return ProjectResponse.from_project(_load_project(tracker, project_id))


@router.put("/projects/{project_id}/leader", response_model=ProjectResponse)
def change_leader(
    request: Request,
    project_id: int,
    body: LeaderChange,
    current_user: User = Depends(require_admin),
) -> ProjectResponse:
    """Appoint a new leader, or clear the leader with user_id=null. Admin only."""
    user_store: UserStore = request.app.state.user_store
    tracker: TrackerStore = request.app.state.tracker

    project = _load_project(tracker, project_id)
    if body.user_id is not None:
        _require_users(user_store, [body.user_id])
    tracker.set_leader(project_id, body.user_id)
    logger.info(
        "user_id=%s changed leader of project_id=%s: %s -> %s",
        current_user.id,
        project_id,
        project.leader_id,
        body.user_id,
    )
    return ProjectResponse.from_project(_load_project(tracker, project_id))


@router.delete("/projects/{project_id}", status_code=204)
def delete_project(
    request: Request,
    project_id: int,
    current_user: User = Depends(require_admin),
) -> Response:
    tracker: TrackerStore = request.app.state.tracker
    if not tracker.delete_project(project_id):
        raise_not_found("Project")
    logger.info("user_id=%s deleted project_id=%s", current_user.id, project_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_project(tracker: TrackerStore, project_id: int) -> Project:
    project = tracker.get_project(project_id)
    if project is None:
        raise_not_found("Project")
    return project


def _require_users(user_store: UserStore, user_ids: list[int]) -> None:
    """Reject the request with 400 if any referenced user does not exist."""
    missing = sorted({uid for uid in user_ids if user_store.get_by_id(uid) is None})
    if missing:
        raise HTTPException(
            status_code=400,
            detail={"code": "unknown_user", "message": f"Unknown user id(s): {', '.join(map(str, missing))}."},
        )
