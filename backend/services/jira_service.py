"""
Per-user Jira integration service.

Wires the connection store, ledger, gateway, import reconciler and status sync
engine together for one authenticated user. Routes build one of these per
request; nothing is cached on the instance between requests.

The OAuth callback is not user-authenticated (the browser arrives from
Atlassian), so it lives in complete_oauth() and trusts only the signed state.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional
from uuid import UUID

import httpx
from sqlalchemy.exc import SQLAlchemyError

from config import settings, utcnow
from connectors.jira import JiraApiGateway
from connectors.jira_issues import RemoteIssue
from models.jira_connection import JiraConnection
from models.jira_project import JiraProject
from models.jira_task_mapping import JiraTaskMapping
from models.task import TaskStatus
from services.atlassian_oauth import AtlassianOAuthClient, create_oauth_state, verify_oauth_state
from services.jira_connections import ConnectionStore
from services.jira_errors import JiraSyncError, NotFoundError, RemoteApiError
from services.jira_import import ImportFailure, ImportReconciler, ImportResult
from services.jira_ledger import TaskMappingLedger
from services.jira_sync import PushResult, StatusSyncEngine, SyncResult
from services.jira_tokens import TokenRefreshGuard
from services.tasks import SqlTaskWriter, TaskWriter

logger = logging.getLogger(__name__)


class JiraService:
    """Jira operations available to one user."""

    def __init__(
        self,
        user_id: UUID,
        store: Optional[ConnectionStore] = None,
        ledger: Optional[TaskMappingLedger] = None,
        task_writer: Optional[TaskWriter] = None,
        oauth_client: Optional[AtlassianOAuthClient] = None,
        gateway: Optional[JiraApiGateway] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.user_id = user_id
        self.store = store or ConnectionStore()
        self.ledger = ledger or TaskMappingLedger(user_id)
        self.task_writer = task_writer or SqlTaskWriter()
        self.oauth_client = oauth_client or AtlassianOAuthClient(transport=transport)
        self.gateway = gateway or JiraApiGateway(
            user_id,
            store=self.store,
            token_guard=TokenRefreshGuard(store=self.store, oauth_client=self.oauth_client),
            transport=transport,
        )
        self.reconciler = ImportReconciler(user_id, self.ledger, self.task_writer)
        self.sync_engine = StatusSyncEngine(self.gateway, self.ledger, self.task_writer)

    # ── Connection ───────────────────────────────────────────────────────

    async def get_connection(self) -> Optional[JiraConnection]:
        return await self.store.get_for_user(self.user_id)

    def connect_url(self) -> str:
        """Atlassian consent URL carrying a signed state for this user."""
        return self.oauth_client.build_authorize_url(create_oauth_state(self.user_id))

    async def disconnect(self) -> bool:
        """Remove mappings, projects and the connection, in that order."""
        removed_mappings = await self.ledger.delete_all_for_user()
        removed = await self.store.delete_for_user(self.user_id)
        logger.info(
            "[jira_service] User %s disconnected Jira (%d mapping(s) removed)",
            self.user_id,
            removed_mappings,
        )
        return removed

    # ── Projects ─────────────────────────────────────────────────────────

    async def list_projects(self) -> list[JiraProject]:
        return await self.store.list_projects(self.user_id)

    async def available_projects(self) -> list[dict[str, Any]]:
        """Remote projects the user can see, minus the ones already tracked."""
        result = await self.gateway.call("get-projects")
        values = result.get("values") if isinstance(result, dict) else None
        tracked = {project.project_id for project in await self.list_projects()}
        return [
            {"id": str(value.get("id")), "key": value.get("key", ""), "name": value.get("name", "")}
            for value in values or []
            if str(value.get("id")) not in tracked
        ]

    async def add_project(self, remote_project_id: str, project_key: str, project_name: str) -> JiraProject:
        return await self.store.add_project(
            self.user_id,
            remote_project_id=remote_project_id,
            project_key=project_key,
            project_name=project_name,
        )

    async def remove_project(self, project_id: UUID) -> bool:
        return await self.store.remove_project(self.user_id, project_id)

    async def _require_project(self, project_id: UUID) -> JiraProject:
        project = await self.store.get_project(self.user_id, project_id)
        if project is None:
            raise NotFoundError(f"Jira project {project_id} is not tracked")
        return project

    # ── Import ───────────────────────────────────────────────────────────

    async def fetch_new_issues(self, project_id: UUID) -> list[RemoteIssue]:
        """Assigned open issues in a tracked project that have not been imported yet."""
        project = await self._require_project(project_id)
        issues = await self.gateway.fetch_issues(project.project_key)
        imported = await self.ledger.imported_issue_ids()
        return [issue for issue in issues if issue.id not in imported]

    async def import_issues(
        self,
        project_id: UUID,
        issue_ids: list[str],
        target_dates: Optional[dict[str, str]] = None,
    ) -> ImportResult:
        """
        Import the chosen issues of a tracked project, in the order given.

        Ids that are not among the project's assigned open issues are reported
        as failures without touching anything.
        """
        project = await self._require_project(project_id)
        by_id = {issue.id: issue for issue in await self.gateway.fetch_issues(project.project_key)}

        selected: list[RemoteIssue] = []
        missing: list[ImportFailure] = []
        for issue_id in issue_ids:
            issue = by_id.get(issue_id)
            if issue is None:
                missing.append(ImportFailure(issue_id, "", "issue not found in project"))
            else:
                selected.append(issue)

        result = await self.reconciler.import_issues(selected, target_dates, project.id)
        result.failures = missing + result.failures
        await self.store.mark_project_synced(project.id, utcnow())
        return result

    # ── Status sync ──────────────────────────────────────────────────────

    async def sync_all(self) -> SyncResult:
        result = await self.sync_engine.pull_remote_changes()
        now = utcnow()
        for project in await self.list_projects():
            await self.store.mark_project_synced(project.id, now)
        return result

    async def on_task_status_change(self, task_id: UUID, status: TaskStatus) -> Optional[PushResult]:
        return await self.sync_engine.push_status(task_id, status)

    async def get_mapping(self, task_id: UUID) -> Optional[JiraTaskMapping]:
        return await self.ledger.find_by_task_id(task_id)

    async def list_mappings(self, project_id: Optional[UUID] = None) -> list[JiraTaskMapping]:
        if project_id is not None:
            return await self.ledger.list_by_project(project_id)
        return await self.ledger.list_all()


# =============================================================================
# OAuth callback
# =============================================================================


@dataclass(frozen=True)
class OAuthOutcome:
    """Where the browser goes after the callback."""

    connected: bool
    error: Optional[str] = None

    def redirect_url(self, frontend_url: Optional[str] = None) -> str:
        base = (frontend_url or settings.FRONTEND_URL).rstrip("/")
        if self.connected:
            return f"{base}/#integrations?connected=true"
        return f"{base}/#integrations?error={self.error or 'unexpected'}"


async def complete_oauth(
    code: Optional[str],
    state: Optional[str],
    oauth_client: Optional[AtlassianOAuthClient] = None,
    store: Optional[ConnectionStore] = None,
) -> OAuthOutcome:
    """
    Finish the Atlassian consent flow: exchange the code, pick the first
    accessible site and store the connection for the user named in `state`.
    """
    if not code or not state:
        return OAuthOutcome(False, "missing_params")

    user_id = verify_oauth_state(state)
    if user_id is None:
        return OAuthOutcome(False, "missing_params")

    oauth_client = oauth_client or AtlassianOAuthClient()
    store = store or ConnectionStore()

    try:
        try:
            tokens = await oauth_client.exchange_code(code)
        except (RemoteApiError, ValueError) as exc:
            logger.error("[jira_service] Token exchange failed for user %s: %s", user_id, exc)
            return OAuthOutcome(False, "token_exchange_failed")

        sites = await oauth_client.get_accessible_resources(tokens.access_token)
        if not sites:
            logger.warning("[jira_service] No accessible Jira sites for user %s", user_id)
            return OAuthOutcome(False, "no_sites")
        site = sites[0]

        profile = await oauth_client.get_profile(tokens.access_token)

        try:
            await store.upsert(
                user_id=user_id,
                cloud_id=str(site["id"]),
                site_name=site.get("name", ""),
                atlassian_email=profile.get("email") or "",
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token or "",
                token_expires_at=utcnow() + timedelta(seconds=tokens.expires_in),
            )
        except SQLAlchemyError:
            logger.exception("[jira_service] Failed to store Jira connection for user %s", user_id)
            return OAuthOutcome(False, "db_error")
    except (JiraSyncError, httpx.HTTPError, KeyError) as exc:
        logger.error("[jira_service] Unexpected OAuth callback failure for user %s: %s", user_id, exc)
        return OAuthOutcome(False, "unexpected")
    except Exception:
        # Every callback outcome is a redirect
        logger.exception("[jira_service] OAuth callback crashed for user %s", user_id)
        return OAuthOutcome(False, "unexpected")

    return OAuthOutcome(True)
