import asyncio
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import httpx
import pytest

from config import utcnow
from connectors.jira import JiraApiGateway, build_assigned_issues_jql
from services.atlassian_oauth import AtlassianOAuthClient
from services.jira_errors import InvalidParameterError, NotFoundError, RemoteApiError, UnsupportedActionError
from services.jira_tokens import RefreshLockManager, TokenRefreshGuard

USER_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")
CLOUD_ID = "cloud-abc"


@dataclass
class FakeConnection:
    id: uuid.UUID
    user_id: uuid.UUID
    cloud_id: str
    access_token: str
    refresh_token: str
    token_expires_at: datetime


class FakeStore:
    def __init__(self, connection: Optional[FakeConnection]) -> None:
        self.connection = connection

    async def require_for_user(self, user_id: uuid.UUID) -> FakeConnection:
        if self.connection is None or self.connection.user_id != user_id:
            raise NotFoundError("No Jira connection found. Please reconnect.")
        return self.connection

    async def get_by_id(self, connection_id: uuid.UUID) -> Optional[FakeConnection]:
        return self.connection

    async def update_tokens(self, connection_id, *, access_token, refresh_token, token_expires_at) -> None:
        self.connection.access_token = access_token
        self.connection.refresh_token = refresh_token
        self.connection.token_expires_at = token_expires_at


def _connection(expires_in: timedelta) -> FakeConnection:
    return FakeConnection(
        id=uuid.uuid4(),
        user_id=USER_ID,
        cloud_id=CLOUD_ID,
        access_token="access-1",
        refresh_token="refresh-1",
        token_expires_at=utcnow() + expires_in,
    )


def _gateway(store: FakeStore, handler) -> JiraApiGateway:
    transport = httpx.MockTransport(handler)
    oauth = AtlassianOAuthClient(
        client_id="client-id",
        client_secret="client-secret",
        redirect_uri="http://localhost/callback",
        transport=transport,
    )
    guard = TokenRefreshGuard(store=store, oauth_client=oauth, lock_manager=RefreshLockManager())
    return JiraApiGateway(USER_ID, store=store, token_guard=guard, transport=transport)


def test_expiring_token_refreshes_once_then_searches() -> None:
    requests: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.host == "auth.atlassian.com":
            return httpx.Response(200, json={"access_token": "access-2", "refresh_token": "refresh-2", "expires_in": 3600})
        return httpx.Response(200, json={"issues": [{"id": "1", "key": "ZEN-1", "fields": {"summary": "One"}}]})

    store = FakeStore(_connection(timedelta(minutes=2)))
    gateway = _gateway(store, _handler)

    issues = asyncio.run(gateway.fetch_issues("ZEN"))

    assert [r.url.host for r in requests] == ["auth.atlassian.com", "api.atlassian.com"]
    refresh_body = json.loads(requests[0].content)
    assert refresh_body["grant_type"] == "refresh_token"
    assert refresh_body["refresh_token"] == "refresh-1"

    search = requests[1]
    assert search.url.path == f"/ex/jira/{CLOUD_ID}/rest/api/3/search/jql"
    assert search.headers["Authorization"] == "Bearer access-2"
    assert search.url.params["jql"] == build_assigned_issues_jql("ZEN")
    assert search.url.params["fields"] == "summary,description,status,priority,parent,issuetype"
    assert [issue.key for issue in issues] == ["ZEN-1"]
    assert store.connection.refresh_token == "refresh-2"


def test_fresh_token_goes_straight_to_jira() -> None:
    hosts: list[str] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        hosts.append(request.url.host)
        return httpx.Response(200, json={"values": []})

    gateway = _gateway(FakeStore(_connection(timedelta(hours=1))), _handler)

    asyncio.run(gateway.call("get-projects"))

    assert hosts == ["api.atlassian.com"]


def test_transition_issue_returns_success_sentinel_on_204() -> None:
    captured: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(204)

    gateway = _gateway(FakeStore(_connection(timedelta(hours=1))), _handler)

    result = asyncio.run(gateway.call("transition-issue", {"issueKey": "ZEN-3", "transitionId": 31}))

    assert result == {"success": True}
    assert captured[0].method == "POST"
    assert captured[0].url.path.endswith("/issue/ZEN-3/transitions")
    assert json.loads(captured[0].content) == {"transition": {"id": "31"}}


def test_non_2xx_raises_remote_api_error_with_body() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="upstream exploded")

    gateway = _gateway(FakeStore(_connection(timedelta(hours=1))), _handler)

    with pytest.raises(RemoteApiError) as exc_info:
        asyncio.run(gateway.call("get-issue", {"issueKey": "ZEN-9"}))

    assert exc_info.value.status_code == 500
    assert exc_info.value.raw_body == "upstream exploded"


def test_unknown_action_is_rejected_before_token_refresh() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    store = FakeStore(_connection(timedelta(minutes=1)))
    gateway = _gateway(store, _handler)

    with pytest.raises(UnsupportedActionError):
        asyncio.run(gateway.call("delete-everything", {}))

    assert store.connection.access_token == "access-1"


def test_unknown_action_without_connection_raises_not_found() -> None:
    gateway = _gateway(FakeStore(None), lambda request: httpx.Response(200, json={}))

    with pytest.raises(NotFoundError):
        asyncio.run(gateway.call("delete-everything", {}))


def test_missing_connection_raises_not_found() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    gateway = _gateway(FakeStore(None), _handler)

    with pytest.raises(NotFoundError):
        asyncio.run(gateway.call("get-sites"))


def test_missing_issue_key_is_an_invalid_parameter() -> None:
    gateway = _gateway(FakeStore(_connection(timedelta(hours=1))), lambda request: httpx.Response(200, json={}))

    with pytest.raises(InvalidParameterError) as exc_info:
        asyncio.run(gateway.call("get-transitions", {}))

    assert isinstance(exc_info.value, ValueError)
    assert str(exc_info.value) == "Missing required parameter: issueKey"


def test_non_numeric_page_size_is_an_invalid_parameter() -> None:
    gateway = _gateway(FakeStore(_connection(timedelta(hours=1))), lambda request: httpx.Response(200, json={}))

    with pytest.raises(InvalidParameterError):
        asyncio.run(gateway.call("get-issues", {"projectKey": "ZEN", "maxResults": "lots"}))


def test_assigned_issues_jql_quotes_project_key() -> None:
    jql = build_assigned_issues_jql('ZEN"X')

    assert jql.startswith('project = "ZEN\\"X"')
    assert "assignee = currentUser()" in jql
    assert "statusCategory != Done" in jql
