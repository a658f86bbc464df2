"""Translation between Jira status categories/priorities and local task fields."""
from __future__ import annotations

from typing import Optional

from models.task import TaskPriority, TaskStatus

CATEGORY_TO_STATUS: dict[str, TaskStatus] = {
    "new": TaskStatus.TODO,
    "indeterminate": TaskStatus.IN_PROGRESS,
    "done": TaskStatus.COMPLETED,
}

STATUS_TO_CATEGORY: dict[TaskStatus, str] = {
    TaskStatus.TODO: "new",
    TaskStatus.IN_PROGRESS: "indeterminate",
    TaskStatus.COMPLETED: "done",
}

# Completion is derived from status, not measured
STATUS_COMPLETION: dict[TaskStatus, int] = {
    TaskStatus.TODO: 0,
    TaskStatus.IN_PROGRESS: 50,
    TaskStatus.COMPLETED: 100,
}

PRIORITY_MAP: dict[str, TaskPriority] = {
    "highest": TaskPriority.HIGH,
    "high": TaskPriority.HIGH,
    "low": TaskPriority.LOW,
    "lowest": TaskPriority.LOW,
}


def status_for_category(category: str) -> TaskStatus:
    """Local status for a Jira status category; unknown categories map to TODO."""
    return CATEGORY_TO_STATUS.get(category, TaskStatus.TODO)


def category_for_status(status: TaskStatus) -> Optional[str]:
    """Jira status category for a local status, or None for CANCELLED."""
    if status == TaskStatus.CANCELLED:
        return None
    return STATUS_TO_CATEGORY.get(status, "new")


def completion_for_status(status: TaskStatus) -> int:
    return STATUS_COMPLETION.get(status, 0)


def priority_for_jira(priority_name: Optional[str]) -> TaskPriority:
    if not priority_name:
        return TaskPriority.MEDIUM
    return PRIORITY_MAP.get(priority_name.strip().lower(), TaskPriority.MEDIUM)
