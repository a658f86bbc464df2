import uuid
from datetime import datetime
from typing import Any

import pytest

from connectors.jira_issues import RemoteIssue
from services.jira_connections import ConnectionStore
from services.jira_errors import NotFoundError
from services.jira_service import JiraService, OAuthOutcome

USER_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")


class FakeGateway:
    def __init__(self, issues: list[RemoteIssue], projects: list[dict[str, Any]] | None = None) -> None:
        self.issues = issues
        self.projects = projects or []

    async def fetch_issues(self, project_key: str, start_at: int = 0, max_results: int = 50) -> list[RemoteIssue]:
        return self.issues

    async def call(self, action: str, params: dict[str, Any] | None = None) -> Any:
        assert action == "get-projects"
        return {"values": self.projects}


async def _service(gateway: FakeGateway) -> tuple[JiraService, uuid.UUID]:
    store = ConnectionStore()
    await store.upsert(
        user_id=USER_ID,
        cloud_id="cloud",
        site_name="site",
        atlassian_email="me@example.com",
        access_token="a",
        refresh_token="r",
        token_expires_at=datetime(2030, 1, 1),
    )
    project = await store.add_project(USER_ID, remote_project_id="100", project_key="ZEN", project_name="Zen")
    return JiraService(USER_ID, store=store, gateway=gateway), project.id


ISSUES = [
    RemoteIssue(id="1", key="ZEN-1", summary="one", status_category="new"),
    RemoteIssue(id="2", key="ZEN-2", summary="two", status_category="done"),
]


def test_fetch_new_issues_hides_imported_ones(run_db) -> None:
    async def _body():
        service, project_id = await _service(FakeGateway(ISSUES))
        before = await service.fetch_new_issues(project_id)
        result = await service.import_issues(project_id, ["2"], {})
        after = await service.fetch_new_issues(project_id)
        projects = await service.list_projects()
        return before, result, after, projects

    before, result, after, projects = run_db(_body)

    assert [i.key for i in before] == ["ZEN-1", "ZEN-2"]
    assert result.imported == 1
    assert result.mappings[0].jira_project_id == projects[0].id
    assert [i.key for i in after] == ["ZEN-1"]
    assert projects[0].last_synced_at is not None


def test_import_reports_ids_missing_from_project(run_db) -> None:
    async def _body():
        service, project_id = await _service(FakeGateway(ISSUES))
        return await service.import_issues(project_id, ["404", "1"], None)

    result = run_db(_body)

    assert result.imported == 1
    assert [(f.issue_id, f.reason) for f in result.failures] == [("404", "issue not found in project")]


def test_untracked_project_raises_not_found(run_db) -> None:
    async def _body():
        service, _ = await _service(FakeGateway(ISSUES))
        with pytest.raises(NotFoundError):
            await service.fetch_new_issues(uuid.uuid4())

    run_db(_body)


def test_available_projects_excludes_tracked(run_db) -> None:
    remote = [
        {"id": "100", "key": "ZEN", "name": "Zen"},
        {"id": "200", "key": "OPS", "name": "Ops"},
    ]

    async def _body():
        service, _ = await _service(FakeGateway([], remote))
        return await service.available_projects()

    assert run_db(_body) == [{"id": "200", "key": "OPS", "name": "Ops"}]


def test_connect_url_carries_signed_state(monkeypatch) -> None:
    from services import atlassian_oauth

    monkeypatch.setattr(atlassian_oauth.settings, "ATLASSIAN_CLIENT_ID", "client-123")
    service = JiraService(USER_ID)

    url = service.connect_url()

    assert url.startswith("https://auth.atlassian.com/authorize?")
    assert "client_id=client-123" in url
    assert "offline_access" in url
    state = url.split("state=", 1)[1].split("&", 1)[0]
    assert atlassian_oauth.verify_oauth_state(state) == USER_ID


def test_oauth_outcome_redirect_urls() -> None:
    assert OAuthOutcome(True).redirect_url("https://app.example/") == "https://app.example/#integrations?connected=true"
    assert OAuthOutcome(False, "no_sites").redirect_url("https://app.example") == (
        "https://app.example/#integrations?error=no_sites"
    )
