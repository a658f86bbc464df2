"""
Task mapping ledger: the durable link between local tasks and Jira issues.

All lookups are scoped to one user. The uniqueness rules (one issue per task,
one task per issue) are checked before insert for a clear error and enforced
again by the table's unique indexes for concurrent writers.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError

from config import utcnow
from connectors.jira_issues import RemoteIssue
from models.database import get_session
from models.jira_task_mapping import JiraTaskMapping
from services.jira_errors import DuplicateMappingError, NotFoundError

logger = logging.getLogger(__name__)


class TaskMappingLedger:
    """Mappings for a single user."""

    def __init__(self, user_id: UUID) -> None:
        self.user_id = user_id

    async def create(
        self,
        task_id: UUID,
        project_id: Optional[UUID],
        issue: RemoteIssue,
    ) -> JiraTaskMapping:
        """
        Link a task to a remote issue.

        Raises:
            DuplicateMappingError: the task or the issue is already mapped.
        """
        async with get_session() as session:
            result = await session.execute(
                select(JiraTaskMapping).where(
                    JiraTaskMapping.user_id == self.user_id,
                    or_(
                        JiraTaskMapping.task_id == task_id,
                        JiraTaskMapping.jira_issue_id == issue.id,
                    ),
                )
            )
            existing = result.scalars().first()
            if existing is not None:
                raise DuplicateMappingError(
                    f"Mapping already exists for task {task_id} or issue {issue.key}"
                )

            mapping = JiraTaskMapping(
                user_id=self.user_id,
                task_id=task_id,
                jira_project_id=project_id,
                jira_issue_id=issue.id,
                jira_issue_key=issue.key,
                jira_parent_id=issue.parent_id,
                jira_status=issue.status_category,
                last_synced_at=utcnow(),
            )
            session.add(mapping)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateMappingError(
                    f"Mapping already exists for task {task_id} or issue {issue.key}"
                ) from exc

        logger.debug(
            "[jira_ledger] Mapped task %s to %s for user %s",
            task_id,
            issue.key,
            self.user_id,
        )
        return mapping

    async def find_by_task_id(self, task_id: UUID) -> Optional[JiraTaskMapping]:
        async with get_session() as session:
            result = await session.execute(
                select(JiraTaskMapping).where(
                    JiraTaskMapping.user_id == self.user_id,
                    JiraTaskMapping.task_id == task_id,
                )
            )
            return result.scalar_one_or_none()

    async def find_by_remote_id(self, remote_id: str) -> Optional[JiraTaskMapping]:
        async with get_session() as session:
            result = await session.execute(
                select(JiraTaskMapping).where(
                    JiraTaskMapping.user_id == self.user_id,
                    JiraTaskMapping.jira_issue_id == remote_id,
                )
            )
            return result.scalar_one_or_none()

    async def list_by_project(self, project_id: UUID) -> list[JiraTaskMapping]:
        async with get_session() as session:
            result = await session.execute(
                select(JiraTaskMapping)
                .where(
                    JiraTaskMapping.user_id == self.user_id,
                    JiraTaskMapping.jira_project_id == project_id,
                )
                .order_by(JiraTaskMapping.created_at.asc())
            )
            return list(result.scalars().all())

    async def list_all(self) -> list[JiraTaskMapping]:
        async with get_session() as session:
            result = await session.execute(
                select(JiraTaskMapping)
                .where(JiraTaskMapping.user_id == self.user_id)
                .order_by(JiraTaskMapping.created_at.asc())
            )
            return list(result.scalars().all())

    async def imported_issue_ids(self) -> set[str]:
        async with get_session() as session:
            result = await session.execute(
                select(JiraTaskMapping.jira_issue_id).where(
                    JiraTaskMapping.user_id == self.user_id
                )
            )
            return {row[0] for row in result.all()}

    async def update_status(
        self,
        mapping_id: UUID,
        category: str,
        timestamp: datetime,
    ) -> None:
        """Store the latest known status category and when it was seen."""
        async with get_session() as session:
            result = await session.execute(
                update(JiraTaskMapping)
                .where(
                    JiraTaskMapping.id == mapping_id,
                    JiraTaskMapping.user_id == self.user_id,
                )
                .values(jira_status=category, last_synced_at=timestamp)
            )
            if result.rowcount == 0:
                await session.rollback()
                raise NotFoundError(f"Jira mapping {mapping_id} not found")
            await session.commit()

    async def delete_all_for_user(self, user_id: Optional[UUID] = None) -> int:
        """Drop every mapping of the user. Only used by connection teardown."""
        target = user_id or self.user_id
        async with get_session() as session:
            result = await session.execute(
                delete(JiraTaskMapping).where(JiraTaskMapping.user_id == target)
            )
            await session.commit()
        return result.rowcount or 0
