"""
Jira project model - a remote project the user chose to track.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from config import to_iso8601, utcnow
from models.database import Base


class JiraProject(Base):
    """A tracked Jira project, owned by exactly one connection."""

    __tablename__ = "jira_projects"
    __table_args__ = (
        Index("idx_jira_projects_user", "user_id"),
        Index(
            "uq_jira_projects_user_project",
            "user_id",
            "project_id",
            unique=True,
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    connection_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("jira_connections.id"), nullable=False
    )

    # Remote identity
    project_id: Mapped[str] = mapped_column(String(255), nullable=False)
    project_key: Mapped[str] = mapped_column(String(64), nullable=False)
    project_name: Mapped[str] = mapped_column(String(512), nullable=False, default="")

    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, default=utcnow, nullable=True
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "connection_id": str(self.connection_id),
            "project_id": self.project_id,
            "project_key": self.project_key,
            "project_name": self.project_name,
            "last_synced_at": to_iso8601(self.last_synced_at),
            "created_at": to_iso8601(self.created_at),
        }
