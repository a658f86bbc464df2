"""
Task store collaborator used by Jira import and status sync.

The sync core only needs to create, patch and remove a task. TaskWriter is the
seam; SqlTaskWriter is the implementation backed by our tasks table.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol
from uuid import UUID

from config import utcnow
from models.database import get_session
from models.task import Task, TaskPriority, TaskStatus
from services.jira_errors import TaskNotFoundError

logger = logging.getLogger(__name__)

# Fields update_task accepts; everything else is owned by task CRUD
UPDATABLE_FIELDS: frozenset[str] = frozenset({"status", "completion"})


@dataclass(frozen=True)
class TaskDraft:
    """Fields of a task created from a Jira issue."""

    title: str
    description: str
    status: TaskStatus
    priority: TaskPriority
    completion: int
    date: str
    parent_id: Optional[UUID] = None


class TaskWriter(Protocol):
    async def create_task(self, user_id: UUID, draft: TaskDraft) -> UUID:
        ...

    async def update_task(self, task_id: UUID, fields: dict[str, Any]) -> None:
        ...

    async def delete_task(self, task_id: UUID) -> None:
        ...


class SqlTaskWriter:
    """TaskWriter over the tasks table."""

    async def create_task(self, user_id: UUID, draft: TaskDraft) -> UUID:
        async with get_session() as session:
            task = Task(
                user_id=user_id,
                parent_id=draft.parent_id,
                title=draft.title,
                description=draft.description,
                status=draft.status.value,
                priority=draft.priority.value,
                completion=draft.completion,
                date=draft.date,
            )
            session.add(task)
            await session.commit()
            return task.id

    async def update_task(self, task_id: UUID, fields: dict[str, Any]) -> None:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported task fields: {sorted(unknown)}")

        async with get_session() as session:
            task = await session.get(Task, task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            if "status" in fields:
                status = fields["status"]
                task.status = status.value if isinstance(status, TaskStatus) else str(status)
            if "completion" in fields:
                task.completion = int(fields["completion"])
            task.updated_at = utcnow()
            await session.commit()

    async def delete_task(self, task_id: UUID) -> None:
        """Remove a task; a task that is already gone is not an error."""
        async with get_session() as session:
            task = await session.get(Task, task_id)
            if task is None:
                return
            await session.delete(task)
            await session.commit()
