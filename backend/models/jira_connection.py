"""
Jira connection model - one Atlassian OAuth connection per user.

Unlike the rest of our integrations, Jira tokens are stored here directly:
the access token is short-lived (about an hour) and the refresh token may be
rotated on every refresh, so both are rewritten together by the token guard.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from config import to_iso8601, utcnow
from models.database import Base


class JiraConnection(Base):
    """A user's connection to a Jira Cloud site."""

    __tablename__ = "jira_connections"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    # One connection per user; a second OAuth completion replaces the first
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, nullable=False, unique=True, index=True
    )

    # Atlassian site identity ("cloud id" is the path segment for API calls)
    cloud_id: Mapped[str] = mapped_column(String(255), nullable=False)
    site_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    atlassian_email: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)
    token_expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # Timestamps
    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, default=utcnow, nullable=True
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=True
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses. Tokens are never included."""
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "cloud_id": self.cloud_id,
            "site_name": self.site_name,
            "atlassian_email": self.atlassian_email,
            "token_expires_at": to_iso8601(self.token_expires_at),
            "created_at": to_iso8601(self.created_at),
        }
