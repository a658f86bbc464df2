"""
Jira integration endpoints.

Endpoints:
- GET  /api/jira/connect                   - Atlassian consent URL for the caller
- GET  /api/jira/oauth/callback            - OAuth redirect target (unauthenticated)
- POST /api/jira/proxy                     - Run one fixed Jira action {action, ...params}
- GET  /api/jira/connection                - Current connection (tokens omitted)
- DELETE /api/jira/connection              - Disconnect and drop all Jira state
- GET  /api/jira/projects                  - Tracked projects
- GET  /api/jira/projects/available        - Remote projects not tracked yet
- POST /api/jira/projects                  - Track a project
- DELETE /api/jira/projects/{project_id}   - Stop tracking a project
- GET  /api/jira/projects/{project_id}/issues - Assigned issues not imported yet
- POST /api/jira/import                    - Import selected issues as tasks
- POST /api/jira/sync                      - Pull status changes from Jira
- POST /api/jira/tasks/{task_id}/status    - Push a task status change to Jira
- GET  /api/jira/tasks/{task_id}/mapping   - Mapping of one task
- GET  /api/jira/mappings                  - All mappings of the caller
"""
from __future__ import annotations

import logging
from typing import Any, Optional
from uuid import UUID

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, Field

from api.auth_middleware import AuthContext, get_current_auth
from models.task import TaskStatus
from services.atlassian_oauth import AtlassianOAuthClient
from services.jira_connections import ConnectionStore
from services.jira_errors import (
    AuthError,
    DuplicateMappingError,
    InvalidParameterError,
    JiraSyncError,
    NoTransitionError,
    NotFoundError,
    RemoteApiError,
    TaskNotFoundError,
    UnsupportedActionError,
)
from services.jira_service import JiraService, complete_oauth

router = APIRouter()
logger = logging.getLogger(__name__)


class AddProjectRequest(BaseModel):
    """Remote project to start tracking."""

    project_id: str
    project_key: str
    project_name: str = ""


class ImportRequest(BaseModel):
    """Issues to import from a tracked project."""

    project_id: UUID
    issue_ids: list[str]
    # Remote issue id -> YYYY-MM-DD; issues without an entry are dated today
    target_dates: dict[str, str] = Field(default_factory=dict)


class TaskStatusRequest(BaseModel):
    status: TaskStatus


class ConnectUrlResponse(BaseModel):
    url: str


# =============================================================================
# Dependencies
# =============================================================================


def get_oauth_client() -> AtlassianOAuthClient:
    return AtlassianOAuthClient()


def get_connection_store() -> ConnectionStore:
    return ConnectionStore()


def get_jira_service(auth: AuthContext = Depends(get_current_auth)) -> JiraService:
    return JiraService(auth.user_id)


def _http_error(exc: JiraSyncError) -> HTTPException:
    """Translate a sync-core error into the HTTP error the frontend expects."""
    if isinstance(exc, AuthError):
        return HTTPException(status_code=401, detail=str(exc))
    if isinstance(exc, (NotFoundError, TaskNotFoundError)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (NoTransitionError, DuplicateMappingError)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, (UnsupportedActionError, InvalidParameterError)):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, RemoteApiError):
        if exc.status_code == 401:
            return HTTPException(status_code=401, detail="Jira rejected our credentials. Please reconnect.")
        return HTTPException(status_code=502, detail=exc.raw_body or str(exc))
    return HTTPException(status_code=500, detail=str(exc))


# =============================================================================
# OAuth
# =============================================================================


@router.get("/connect", response_model=ConnectUrlResponse)
async def connect(service: JiraService = Depends(get_jira_service)) -> ConnectUrlResponse:
    """Return the Atlassian authorize URL; the frontend navigates the browser to it."""
    try:
        return ConnectUrlResponse(url=service.connect_url())
    except ValueError as exc:
        logger.error("[jira] Cannot build connect URL: %s", exc)
        raise HTTPException(status_code=500, detail="Jira integration is not configured")


@router.get("/oauth/callback")
async def oauth_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    oauth_client: AtlassianOAuthClient = Depends(get_oauth_client),
    store: ConnectionStore = Depends(get_connection_store),
) -> RedirectResponse:
    outcome = await complete_oauth(code, state, oauth_client=oauth_client, store=store)
    logger.info(
        "[jira] OAuth callback finished (connected=%s, error=%s)",
        outcome.connected,
        outcome.error,
    )
    return RedirectResponse(outcome.redirect_url(), status_code=302)


# =============================================================================
# Proxy
# =============================================================================


@router.post("/proxy", response_model=None)
async def proxy(
    request: Request,
    service: JiraService = Depends(get_jira_service),
) -> Any:
    """Run one of the fixed Jira actions with the caller's stored connection."""
    try:
        body: Any = await request.json()
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Invalid JSON body"})
    if not isinstance(body, dict):
        return JSONResponse(status_code=400, content={"error": "Invalid JSON body"})

    params: dict[str, Any] = dict(body)
    action = str(params.pop("action", "") or "")

    try:
        return await service.gateway.call(action, params)
    except (UnsupportedActionError, InvalidParameterError) as exc:
        return JSONResponse(status_code=400, content={"error": str(exc)})
    except NotFoundError as exc:
        return JSONResponse(status_code=404, content={"error": str(exc)})
    except AuthError as exc:
        return JSONResponse(status_code=401, content={"error": str(exc)})
    except RemoteApiError as exc:
        return JSONResponse(status_code=500, content={"error": exc.raw_body or str(exc)})
    except JiraSyncError as exc:
        logger.error("[jira] Proxy action %s failed: %s", action, exc)
        return JSONResponse(status_code=500, content={"error": str(exc)})
    except (httpx.HTTPError, ValueError) as exc:
        # Transport failures and undecodable 2xx bodies
        logger.error("[jira] Proxy action %s failed: %s", action, exc)
        return JSONResponse(status_code=500, content={"error": str(exc)})


# =============================================================================
# Connection
# =============================================================================


@router.get("/connection")
async def get_connection(service: JiraService = Depends(get_jira_service)) -> dict[str, Any]:
    connection = await service.get_connection()
    return {"connected": connection is not None, "connection": connection.to_dict() if connection else None}


@router.delete("/connection")
async def disconnect(service: JiraService = Depends(get_jira_service)) -> dict[str, Any]:
    removed = await service.disconnect()
    if not removed:
        raise HTTPException(status_code=404, detail="No Jira connection found")
    return {"status": "disconnected"}


# =============================================================================
# Projects
# =============================================================================


@router.get("/projects")
async def list_projects(service: JiraService = Depends(get_jira_service)) -> dict[str, Any]:
    projects = await service.list_projects()
    return {"projects": [project.to_dict() for project in projects]}


@router.get("/projects/available")
async def list_available_projects(service: JiraService = Depends(get_jira_service)) -> dict[str, Any]:
    try:
        projects = await service.available_projects()
    except JiraSyncError as exc:
        raise _http_error(exc)
    return {"projects": projects}


@router.post("/projects")
async def add_project(
    payload: AddProjectRequest,
    service: JiraService = Depends(get_jira_service),
) -> dict[str, Any]:
    try:
        project = await service.add_project(payload.project_id, payload.project_key, payload.project_name)
    except JiraSyncError as exc:
        raise _http_error(exc)
    return project.to_dict()


@router.delete("/projects/{project_id}")
async def remove_project(
    project_id: UUID,
    service: JiraService = Depends(get_jira_service),
) -> dict[str, str]:
    if not await service.remove_project(project_id):
        raise HTTPException(status_code=404, detail="Project not found")
    return {"status": "removed"}


@router.get("/projects/{project_id}/issues")
async def list_new_issues(
    project_id: UUID,
    service: JiraService = Depends(get_jira_service),
) -> dict[str, Any]:
    try:
        issues = await service.fetch_new_issues(project_id)
    except JiraSyncError as exc:
        raise _http_error(exc)
    return {"issues": [issue.to_dict() for issue in issues]}


# =============================================================================
# Import and status sync
# =============================================================================


@router.post("/import")
async def import_issues(
    payload: ImportRequest,
    service: JiraService = Depends(get_jira_service),
) -> dict[str, Any]:
    try:
        result = await service.import_issues(payload.project_id, payload.issue_ids, payload.target_dates)
    except JiraSyncError as exc:
        raise _http_error(exc)
    return result.to_dict()


@router.post("/sync")
async def sync_all(service: JiraService = Depends(get_jira_service)) -> dict[str, Any]:
    try:
        result = await service.sync_all()
    except JiraSyncError as exc:
        raise _http_error(exc)
    return result.to_dict()


@router.post("/tasks/{task_id}/status")
async def push_task_status(
    task_id: UUID,
    payload: TaskStatusRequest,
    service: JiraService = Depends(get_jira_service),
) -> dict[str, Any]:
    try:
        pushed = await service.on_task_status_change(task_id, payload.status)
    except JiraSyncError as exc:
        raise _http_error(exc)

    if pushed is None:
        return {"pushed": False}
    return {
        "pushed": True,
        "issue_key": pushed.issue_key,
        "status_category": pushed.target_category,
        "transition_id": pushed.transition_id,
    }


@router.get("/tasks/{task_id}/mapping")
async def get_task_mapping(
    task_id: UUID,
    service: JiraService = Depends(get_jira_service),
) -> dict[str, Any]:
    mapping = await service.get_mapping(task_id)
    if mapping is None:
        raise HTTPException(status_code=404, detail="Task is not linked to a Jira issue")
    return mapping.to_dict()


@router.get("/mappings")
async def list_mappings(
    project_id: Optional[UUID] = None,
    service: JiraService = Depends(get_jira_service),
) -> dict[str, Any]:
    mappings = await service.list_mappings(project_id)
    return {"mappings": [mapping.to_dict() for mapping in mappings]}
