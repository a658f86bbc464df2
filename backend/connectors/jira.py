"""
Jira API gateway – authenticated access to the Jira Cloud REST API for one user.

Every call resolves the user's stored connection, asks the token guard for a
valid access token, then issues the request against the connection's cloud
site. The action set is fixed; it is the same surface the HTTP proxy exposes.

Jira Cloud REST API docs: https://developer.atlassian.com/cloud/jira/platform/rest/v3/
"""
from __future__ import annotations

import logging
from typing import Any, Optional
from uuid import UUID

import httpx

from config import settings
from connectors.jira_issues import RemoteIssue, normalize_many
from models.jira_connection import JiraConnection
from services.atlassian_oauth import ATLASSIAN_RESOURCES_URL
from services.jira_connections import ConnectionStore
from services.jira_errors import InvalidParameterError, RemoteApiError, UnsupportedActionError
from services.jira_tokens import TokenRefreshGuard

logger = logging.getLogger(__name__)

JIRA_API_BASE = "https://api.atlassian.com/ex/jira"

# Fields the sync reads from an issue
ISSUE_FIELDS: str = "summary,description,status,priority,parent,issuetype"

ACTIONS: tuple[str, ...] = (
    "get-sites",
    "get-projects",
    "get-issues",
    "get-issue",
    "get-transitions",
    "transition-issue",
)

SUCCESS: dict[str, bool] = {"success": True}


def build_assigned_issues_jql(project_key: str) -> str:
    """Open issues in a project assigned to the caller, most recently updated first."""
    escaped_key = project_key.replace("\\", "\\\\").replace('"', '\\"')
    return (
        f'project = "{escaped_key}" AND assignee = currentUser() '
        "AND statusCategory != Done ORDER BY updated DESC"
    )


def _require(params: dict[str, Any], name: str) -> Any:
    value = params.get(name)
    if value is None or value == "":
        raise InvalidParameterError(f"Missing required parameter: {name}")
    return value


def _int_param(params: dict[str, Any], name: str, default: int) -> int:
    value = params.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidParameterError(f"Invalid integer parameter: {name}") from exc


class JiraApiGateway:
    """Jira REST client bound to one user's connection."""

    def __init__(
        self,
        user_id: UUID,
        store: Optional[ConnectionStore] = None,
        token_guard: Optional[TokenRefreshGuard] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.user_id = user_id
        self.store = store or ConnectionStore()
        self.token_guard = token_guard or TokenRefreshGuard(store=self.store)
        self._transport = transport

    # ── REST helpers ─────────────────────────────────────────────────────

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=settings.JIRA_HTTP_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    @staticmethod
    def _base_url(connection: JiraConnection) -> str:
        return f"{JIRA_API_BASE}/{connection.cloud_id}/rest/api/3"

    async def _request(
        self,
        method: str,
        url: str,
        access_token: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        """Execute a request; 204 becomes the success sentinel, non-2xx raises RemoteApiError."""
        headers: dict[str, str] = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        logger.info("[jira] %s %s", method, url)

        async with self._client() as client:
            resp: httpx.Response = await client.request(
                method,
                url,
                headers=headers,
                params=params,
                json=json_body,
            )

        if not resp.is_success:
            logger.error("[jira] API error (%d): %s", resp.status_code, resp.text)
            raise RemoteApiError(resp.status_code, resp.text)
        if resp.status_code == 204 or not resp.content:
            return dict(SUCCESS)
        return resp.json()

    # ── Action dispatch ──────────────────────────────────────────────────

    async def call(self, action: str, params: dict[str, Any] | None = None) -> Any:
        """
        Run one of the fixed Jira actions for this user.

        Raises:
            UnsupportedActionError: action is not in ACTIONS.
            NotFoundError: the user has no Jira connection.
            InvalidParameterError: a required parameter is missing or malformed.
            AuthError: the token could not be refreshed.
            RemoteApiError: Jira answered with a non-2xx status.
        """
        params = params or {}

        connection = await self.store.require_for_user(self.user_id)
        if action not in ACTIONS:
            raise UnsupportedActionError(action)
        access_token = await self.token_guard.ensure_valid_token(connection)
        base_url = self._base_url(connection)

        if action == "get-sites":
            return await self._request("GET", ATLASSIAN_RESOURCES_URL, access_token)

        if action == "get-projects":
            return await self._request(
                "GET", f"{base_url}/project/search", access_token,
                params={"maxResults": 50},
            )

        if action == "get-issues":
            project_key: str = _require(params, "projectKey")
            return await self._request(
                "GET", f"{base_url}/search/jql", access_token,
                params={
                    "jql": build_assigned_issues_jql(project_key),
                    "startAt": _int_param(params, "startAt", 0),
                    "maxResults": _int_param(params, "maxResults", 50),
                    "fields": ISSUE_FIELDS,
                },
            )

        issue_key: str = _require(params, "issueKey")

        if action == "get-issue":
            return await self._request(
                "GET", f"{base_url}/issue/{issue_key}", access_token,
                params={"fields": ISSUE_FIELDS},
            )

        if action == "get-transitions":
            return await self._request(
                "GET", f"{base_url}/issue/{issue_key}/transitions", access_token,
            )

        # transition-issue
        transition_id = _require(params, "transitionId")
        return await self._request(
            "POST", f"{base_url}/issue/{issue_key}/transitions", access_token,
            json_body={"transition": {"id": str(transition_id)}},
        )

    # ── Typed helpers ────────────────────────────────────────────────────

    async def fetch_issues(
        self, project_key: str, start_at: int = 0, max_results: int = 50
    ) -> list[RemoteIssue]:
        """Open issues assigned to the user in a project, normalized."""
        result = await self.call(
            "get-issues",
            {"projectKey": project_key, "startAt": start_at, "maxResults": max_results},
        )
        return normalize_many(result.get("issues") if isinstance(result, dict) else None)

    async def fetch_transitions(self, issue_key: str) -> list[dict[str, Any]]:
        result = await self.call("get-transitions", {"issueKey": issue_key})
        transitions = result.get("transitions") if isinstance(result, dict) else None
        return transitions if isinstance(transitions, list) else []
