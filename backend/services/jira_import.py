"""
Import of selected Jira issues as local tasks.

Issues are handled one at a time in the order given. A failure on one issue
is logged and recorded and the batch moves on. Parent links are resolved
against the ledger as each issue is imported, so a parent resolves only if it
was imported before (earlier batches or earlier in this batch).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Optional
from uuid import UUID

from connectors.jira_issues import RemoteIssue
from models.jira_task_mapping import JiraTaskMapping
from services.jira_errors import DuplicateMappingError
from services.jira_ledger import TaskMappingLedger
from services.jira_status import completion_for_status, priority_for_jira, status_for_category
from services.tasks import TaskDraft, TaskWriter

logger = logging.getLogger(__name__)


@dataclass
class ImportFailure:
    issue_id: str
    issue_key: str
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {"issue_id": self.issue_id, "issue_key": self.issue_key, "reason": self.reason}


@dataclass
class ImportResult:
    imported: int = 0
    failures: list[ImportFailure] = field(default_factory=list)
    mappings: list[JiraTaskMapping] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "imported": self.imported,
            "failed": len(self.failures),
            "failures": [failure.to_dict() for failure in self.failures],
            "mappings": [mapping.to_dict() for mapping in self.mappings],
        }


class ImportReconciler:
    """Turns remote issues into tasks plus ledger mappings."""

    def __init__(
        self,
        user_id: UUID,
        ledger: TaskMappingLedger,
        task_writer: TaskWriter,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.user_id = user_id
        self.ledger = ledger
        self.task_writer = task_writer
        self.today = today

    async def _resolve_parent(self, issue: RemoteIssue) -> Optional[UUID]:
        if not issue.parent_id:
            return None
        parent_mapping = await self.ledger.find_by_remote_id(issue.parent_id)
        if parent_mapping is None:
            logger.debug(
                "[jira_import] Parent %s of %s not imported; creating without parent",
                issue.parent_key or issue.parent_id,
                issue.key,
            )
            return None
        return parent_mapping.task_id

    def build_draft(
        self,
        issue: RemoteIssue,
        target_date: Optional[str],
        parent_id: Optional[UUID],
    ) -> TaskDraft:
        status = status_for_category(issue.status_category)
        return TaskDraft(
            title=issue.summary,
            description=issue.description or "",
            status=status,
            priority=priority_for_jira(issue.priority),
            completion=completion_for_status(status),
            date=target_date or self.today().isoformat(),
            parent_id=parent_id,
        )

    async def import_issues(
        self,
        selected: list[RemoteIssue],
        target_dates: dict[str, str] | None,
        project_id: Optional[UUID],
    ) -> ImportResult:
        result = ImportResult()
        target_dates = target_dates or {}

        for issue in selected:
            if await self.ledger.find_by_remote_id(issue.id) is not None:
                logger.info("[jira_import] %s already imported; skipping", issue.key)
                result.failures.append(ImportFailure(issue.id, issue.key, "already imported"))
                continue

            parent_id = await self._resolve_parent(issue)
            draft = self.build_draft(issue, target_dates.get(issue.id), parent_id)

            try:
                task_id = await self.task_writer.create_task(self.user_id, draft)
            except Exception as exc:
                logger.exception("[jira_import] Failed to create task for %s", issue.key)
                result.failures.append(ImportFailure(issue.id, issue.key, f"task creation failed: {exc}"))
                continue

            try:
                await self.ledger.create(task_id, project_id, issue)
            except DuplicateMappingError as exc:
                logger.warning("[jira_import] Mapping for %s rejected: %s", issue.key, exc)
                result.failures.append(ImportFailure(issue.id, issue.key, str(exc)))
                # The issue is already linked to another task; drop the one just created
                try:
                    await self.task_writer.delete_task(task_id)
                except Exception:
                    logger.exception("[jira_import] Failed to remove unlinked task %s for %s", task_id, issue.key)
                continue

            result.imported += 1

        result.mappings = await self.ledger.list_all()
        logger.info(
            "[jira_import] Imported %d of %d issue(s) for user %s",
            result.imported,
            len(selected),
            self.user_id,
        )
        return result
