import uuid
from datetime import datetime

import pytest

from connectors.jira_issues import RemoteIssue
from services.jira_connections import ConnectionStore
from services.jira_errors import DuplicateMappingError, NotFoundError
from services.jira_ledger import TaskMappingLedger

USER_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")
OTHER_USER_ID = uuid.UUID("22222222-2222-2222-2222-222222222222")


def _issue(issue_id: str, key: str, category: str = "new", parent_id: str | None = None) -> RemoteIssue:
    return RemoteIssue(id=issue_id, key=key, summary=key, status_category=category, parent_id=parent_id)


async def _tracked_project(user_id: uuid.UUID = USER_ID):
    store = ConnectionStore()
    await store.upsert(
        user_id=user_id,
        cloud_id="cloud",
        site_name="site",
        atlassian_email="me@example.com",
        access_token="a",
        refresh_token="r",
        token_expires_at=datetime(2030, 1, 1),
    )
    return await store.add_project(user_id, remote_project_id="100", project_key="ZEN", project_name="Zen")


def test_create_and_lookup_both_directions(run_db) -> None:
    async def _body():
        project = await _tracked_project()
        ledger = TaskMappingLedger(USER_ID)
        task_id = uuid.uuid4()
        created = await ledger.create(task_id, project.id, _issue("10", "ZEN-10", "indeterminate", "5"))

        by_task = await ledger.find_by_task_id(task_id)
        by_remote = await ledger.find_by_remote_id("10")
        return created, by_task, by_remote, await ledger.list_by_project(project.id)

    created, by_task, by_remote, in_project = run_db(_body)

    assert by_task.id == created.id
    assert by_remote.id == created.id
    assert created.jira_issue_key == "ZEN-10"
    assert created.jira_status == "indeterminate"
    assert created.jira_parent_id == "5"
    assert [m.id for m in in_project] == [created.id]


def test_second_mapping_for_same_issue_is_rejected(run_db) -> None:
    async def _body():
        ledger = TaskMappingLedger(USER_ID)
        await ledger.create(uuid.uuid4(), None, _issue("10", "ZEN-10"))
        with pytest.raises(DuplicateMappingError):
            await ledger.create(uuid.uuid4(), None, _issue("10", "ZEN-10"))
        return await ledger.list_all()

    assert len(run_db(_body)) == 1


def test_second_mapping_for_same_task_is_rejected(run_db) -> None:
    async def _body():
        ledger = TaskMappingLedger(USER_ID)
        task_id = uuid.uuid4()
        await ledger.create(task_id, None, _issue("10", "ZEN-10"))
        with pytest.raises(DuplicateMappingError):
            await ledger.create(task_id, None, _issue("11", "ZEN-11"))
        return await ledger.list_all()

    assert [m.jira_issue_id for m in run_db(_body)] == ["10"]


def test_mappings_are_scoped_per_user(run_db) -> None:
    async def _body():
        mine = TaskMappingLedger(USER_ID)
        theirs = TaskMappingLedger(OTHER_USER_ID)
        await mine.create(uuid.uuid4(), None, _issue("10", "ZEN-10"))
        # The same remote issue may be imported by another user
        await theirs.create(uuid.uuid4(), None, _issue("10", "ZEN-10"))
        return (
            await mine.imported_issue_ids(),
            await theirs.find_by_remote_id("10"),
            len(await theirs.list_all()),
        )

    mine_ids, theirs_mapping, theirs_count = run_db(_body)

    assert mine_ids == {"10"}
    assert theirs_mapping.user_id == OTHER_USER_ID
    assert theirs_count == 1


def test_update_status_stores_category_and_timestamp(run_db) -> None:
    synced_at = datetime(2026, 5, 4, 3, 2, 1)

    async def _body():
        ledger = TaskMappingLedger(USER_ID)
        mapping = await ledger.create(uuid.uuid4(), None, _issue("10", "ZEN-10", "new"))
        await ledger.update_status(mapping.id, "done", synced_at)
        with pytest.raises(NotFoundError):
            await ledger.update_status(uuid.uuid4(), "done", synced_at)
        return await ledger.find_by_remote_id("10")

    mapping = run_db(_body)

    assert mapping.jira_status == "done"
    assert mapping.last_synced_at == synced_at


def test_removing_project_keeps_mappings(run_db) -> None:
    async def _body():
        project = await _tracked_project()
        ledger = TaskMappingLedger(USER_ID)
        await ledger.create(uuid.uuid4(), project.id, _issue("10", "ZEN-10"))
        assert await ConnectionStore().remove_project(USER_ID, project.id) is True
        return await ledger.list_all()

    mappings = run_db(_body)

    assert len(mappings) == 1
    assert mappings[0].jira_project_id is None
