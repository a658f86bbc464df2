import uuid
from datetime import datetime

import pytest

from connectors.jira_issues import RemoteIssue
from services.jira_connections import ConnectionStore
from services.jira_errors import NotFoundError
from services.jira_ledger import TaskMappingLedger
from services.jira_service import JiraService

USER_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")


async def _connect(store: ConnectionStore, access_token: str = "a1", site_name: str = "site-one"):
    return await store.upsert(
        user_id=USER_ID,
        cloud_id=f"cloud-{site_name}",
        site_name=site_name,
        atlassian_email="me@example.com",
        access_token=access_token,
        refresh_token="r1",
        token_expires_at=datetime(2030, 1, 1),
    )


def test_upsert_replaces_existing_connection(run_db) -> None:
    async def _body():
        store = ConnectionStore()
        first = await _connect(store)
        second = await _connect(store, access_token="a2", site_name="site-two")
        return first, second, await store.require_for_user(USER_ID)

    first, second, stored = run_db(_body)

    assert first.id == second.id
    assert stored.site_name == "site-two"
    assert stored.access_token == "a2"
    assert "access_token" not in stored.to_dict()


def test_update_tokens_rotates_pair(run_db) -> None:
    expires = datetime(2031, 6, 1)

    async def _body():
        store = ConnectionStore()
        connection = await _connect(store)
        await store.update_tokens(connection.id, access_token="a9", refresh_token="r9", token_expires_at=expires)
        with pytest.raises(NotFoundError):
            await store.update_tokens(uuid.uuid4(), access_token="x", refresh_token="y", token_expires_at=expires)
        return await store.get_by_id(connection.id)

    stored = run_db(_body)

    assert (stored.access_token, stored.refresh_token, stored.token_expires_at) == ("a9", "r9", expires)


def test_add_project_is_idempotent_and_requires_connection(run_db) -> None:
    async def _body():
        store = ConnectionStore()
        with pytest.raises(NotFoundError):
            await store.add_project(USER_ID, remote_project_id="100", project_key="ZEN", project_name="Zen")
        await _connect(store)
        first = await store.add_project(USER_ID, remote_project_id="100", project_key="ZEN", project_name="Zen")
        again = await store.add_project(USER_ID, remote_project_id="100", project_key="ZEN", project_name="Zen")
        return first, again, await store.list_projects(USER_ID)

    first, again, projects = run_db(_body)

    assert first.id == again.id
    assert len(projects) == 1


def test_disconnect_removes_mappings_projects_and_connection(run_db) -> None:
    async def _body():
        store = ConnectionStore()
        await _connect(store)
        project = await store.add_project(USER_ID, remote_project_id="100", project_key="ZEN", project_name="Zen")
        ledger = TaskMappingLedger(USER_ID)
        await ledger.create(uuid.uuid4(), project.id, RemoteIssue(id="10", key="ZEN-10"))

        service = JiraService(USER_ID, store=store, ledger=ledger)
        removed = await service.disconnect()
        removed_again = await service.disconnect()
        return (
            removed,
            removed_again,
            await store.get_for_user(USER_ID),
            await store.list_projects(USER_ID),
            await ledger.list_all(),
        )

    removed, removed_again, connection, projects, mappings = run_db(_body)

    assert removed is True
    assert removed_again is False
    assert connection is None
    assert projects == []
    assert mappings == []
