"""
Status sync between local tasks and Jira issues.

Push: a local status change is applied to Jira by executing the first
available workflow transition that lands in the matching status category.

Pull: every mapped issue is fetched and its status category compared with the
category cached on the mapping; differences are written to the local task and
then cached. Mappings are walked project by project, one request at a time.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import UUID

from config import utcnow
from connectors.jira import JiraApiGateway
from connectors.jira_issues import normalize
from models.jira_task_mapping import JiraTaskMapping
from models.task import TaskStatus
from services.jira_errors import (
    AuthError,
    NoTransitionError,
    NotFoundError,
    RemoteApiError,
    TaskNotFoundError,
)
from services.jira_ledger import TaskMappingLedger
from services.jira_status import category_for_status, completion_for_status, status_for_category
from services.tasks import TaskWriter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskStatusUpdate:
    task_id: UUID
    status: TaskStatus
    completion: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": str(self.task_id),
            "status": self.status.value,
            "completion": self.completion,
        }


@dataclass
class SyncFailure:
    issue_key: str
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {"issue_key": self.issue_key, "reason": self.reason}


@dataclass
class SyncResult:
    updates: list[TaskStatusUpdate] = field(default_factory=list)
    failures: list[SyncFailure] = field(default_factory=list)
    checked: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked": self.checked,
            "updated": len(self.updates),
            "updates": [update.to_dict() for update in self.updates],
            "failures": [failure.to_dict() for failure in self.failures],
        }


@dataclass(frozen=True)
class PushResult:
    issue_key: str
    target_category: str
    transition_id: str


def select_transition(
    transitions: list[dict[str, Any]], target_category: str
) -> Optional[dict[str, Any]]:
    """First transition whose destination status is in the target category."""
    for transition in transitions:
        to_status = transition.get("to") or {}
        category = (to_status.get("statusCategory") or {}).get("key")
        if category == target_category:
            return transition
    return None


def group_by_project(
    mappings: list[JiraTaskMapping],
) -> dict[Optional[UUID], list[JiraTaskMapping]]:
    groups: dict[Optional[UUID], list[JiraTaskMapping]] = {}
    for mapping in mappings:
        groups.setdefault(mapping.jira_project_id, []).append(mapping)
    return groups


class StatusSyncEngine:
    """Push and pull of task status for one user."""

    def __init__(
        self,
        gateway: JiraApiGateway,
        ledger: TaskMappingLedger,
        task_writer: TaskWriter,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.gateway = gateway
        self.ledger = ledger
        self.task_writer = task_writer
        self.clock = clock

    # ── Push: local → Jira ───────────────────────────────────────────────

    async def push_status(self, task_id: UUID, status: TaskStatus) -> Optional[PushResult]:
        """
        Move the task's Jira issue into the category matching `status`.

        Returns None without calling Jira when the status is CANCELLED or the
        task is not linked to an issue.

        Raises:
            NoTransitionError: the workflow offers no direct transition.
        """
        target_category = category_for_status(status)
        if target_category is None:
            logger.debug("[jira_sync] %s has no Jira equivalent; not pushing", status.value)
            return None

        mapping = await self.ledger.find_by_task_id(task_id)
        if mapping is None:
            return None

        transitions = await self.gateway.fetch_transitions(mapping.jira_issue_key)
        transition = select_transition(transitions, target_category)
        if transition is None:
            raise NoTransitionError(mapping.jira_issue_key, target_category)

        transition_id = str(transition["id"])
        await self.gateway.call(
            "transition-issue",
            {"issueKey": mapping.jira_issue_key, "transitionId": transition_id},
        )
        # Cache the new category so the next pull does not echo it back
        await self.ledger.update_status(mapping.id, target_category, self.clock())

        logger.info(
            "[jira_sync] Transitioned %s to %s via transition %s",
            mapping.jira_issue_key,
            target_category,
            transition_id,
        )
        return PushResult(mapping.jira_issue_key, target_category, transition_id)

    # ── Pull: Jira → local ───────────────────────────────────────────────

    async def _sync_mapping(self, mapping: JiraTaskMapping) -> Optional[TaskStatusUpdate]:
        raw_issue = await self.gateway.call("get-issue", {"issueKey": mapping.jira_issue_key})
        current_category = normalize(raw_issue if isinstance(raw_issue, dict) else {}).status_category

        if not current_category or current_category == mapping.jira_status:
            return None

        status = status_for_category(current_category)
        update = TaskStatusUpdate(mapping.task_id, status, completion_for_status(status))
        await self.task_writer.update_task(
            mapping.task_id,
            {"status": update.status, "completion": update.completion},
        )
        await self.ledger.update_status(mapping.id, current_category, self.clock())
        return update

    async def pull_remote_changes(self) -> SyncResult:
        """
        Bring local task status in line with Jira for every mapping.

        Raises:
            AuthError / NotFoundError: the connection is unusable; nothing
                further is attempted.
        """
        result = SyncResult()
        mappings = await self.ledger.list_all()

        for project_id, project_mappings in group_by_project(mappings).items():
            logger.debug(
                "[jira_sync] Checking %d mapping(s) for project %s",
                len(project_mappings),
                project_id,
            )
            for mapping in project_mappings:
                result.checked += 1
                try:
                    update = await self._sync_mapping(mapping)
                except (AuthError, NotFoundError):
                    raise
                except TaskNotFoundError as exc:
                    logger.warning(
                        "[jira_sync] Local task for %s is gone; skipping: %s", mapping.jira_issue_key, exc
                    )
                    result.failures.append(SyncFailure(mapping.jira_issue_key, str(exc)))
                    continue
                except RemoteApiError as exc:
                    if exc.status_code == 401:
                        raise AuthError("Jira rejected our credentials. Please reconnect.") from exc
                    logger.error("[jira_sync] Failed to sync issue %s: %s", mapping.jira_issue_key, exc)
                    result.failures.append(SyncFailure(mapping.jira_issue_key, str(exc)))
                    continue
                except Exception as exc:
                    logger.exception("[jira_sync] Failed to sync issue %s", mapping.jira_issue_key)
                    result.failures.append(SyncFailure(mapping.jira_issue_key, str(exc)))
                    continue

                if update is not None:
                    result.updates.append(update)

        logger.info(
            "[jira_sync] Pull complete: %d checked, %d updated, %d failed",
            result.checked,
            len(result.updates),
            len(result.failures),
        )
        return result
