"""
Jira task mapping model - the ledger row linking one local task to one Jira issue.

Per user, a task links to at most one issue and an issue is imported at most
once. Both rules are unique indexes so they hold even under concurrent imports.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from config import to_iso8601, utcnow
from models.database import Base


class JiraTaskMapping(Base):
    """Persisted mapping between a local task and a Jira issue."""

    __tablename__ = "jira_task_mappings"
    __table_args__ = (
        Index(
            "uq_jira_task_mappings_user_task",
            "user_id",
            "task_id",
            unique=True,
        ),
        Index(
            "uq_jira_task_mappings_user_issue",
            "user_id",
            "jira_issue_id",
            unique=True,
        ),
        Index(
            "ix_jira_task_mappings_user_project",
            "user_id",
            "jira_project_id",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    task_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    # Removing a tracked project keeps its mappings; only disconnect deletes them
    jira_project_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("jira_projects.id", ondelete="SET NULL"), nullable=True
    )
    jira_issue_id: Mapped[str] = mapped_column(String(255), nullable=False)
    jira_issue_key: Mapped[str] = mapped_column(String(64), nullable=False)
    jira_parent_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Cached status category: 'new', 'indeterminate', 'done' (or '' if unknown)
    jira_status: Mapped[str] = mapped_column(String(30), nullable=False, default="")
    last_synced_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, default=utcnow, nullable=True
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "task_id": str(self.task_id),
            "jira_project_id": str(self.jira_project_id) if self.jira_project_id else None,
            "jira_issue_id": self.jira_issue_id,
            "jira_issue_key": self.jira_issue_key,
            "jira_parent_id": self.jira_parent_id,
            "jira_status": self.jira_status,
            "last_synced_at": to_iso8601(self.last_synced_at),
            "created_at": to_iso8601(self.created_at),
        }
