"""
Persistence for Jira connections and tracked projects.

One connection per user. Disconnecting removes the user's mappings, then
projects, then the connection, in that order so no child row outlives its
parent; mappings are the ledger's to delete.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, select, update

from config import utcnow
from models.database import get_session
from models.jira_connection import JiraConnection
from models.jira_project import JiraProject
from services.jira_errors import NotFoundError

logger = logging.getLogger(__name__)


class ConnectionStore:
    """Connection and project records, keyed by user."""

    async def get_for_user(self, user_id: UUID) -> Optional[JiraConnection]:
        async with get_session() as session:
            result = await session.execute(
                select(JiraConnection).where(JiraConnection.user_id == user_id)
            )
            return result.scalar_one_or_none()

    async def require_for_user(self, user_id: UUID) -> JiraConnection:
        connection = await self.get_for_user(user_id)
        if connection is None:
            raise NotFoundError("No Jira connection found. Please reconnect.")
        return connection

    async def get_by_id(self, connection_id: UUID) -> Optional[JiraConnection]:
        async with get_session() as session:
            return await session.get(JiraConnection, connection_id)

    async def upsert(
        self,
        *,
        user_id: UUID,
        cloud_id: str,
        site_name: str,
        atlassian_email: str,
        access_token: str,
        refresh_token: str,
        token_expires_at: datetime,
    ) -> JiraConnection:
        """Create or replace the user's connection (keyed by user_id)."""
        async with get_session() as session:
            result = await session.execute(
                select(JiraConnection).where(JiraConnection.user_id == user_id)
            )
            connection = result.scalar_one_or_none()

            if connection:
                connection.cloud_id = cloud_id
                connection.site_name = site_name
                connection.atlassian_email = atlassian_email
                connection.access_token = access_token
                connection.refresh_token = refresh_token
                connection.token_expires_at = token_expires_at
                connection.updated_at = utcnow()
            else:
                connection = JiraConnection(
                    user_id=user_id,
                    cloud_id=cloud_id,
                    site_name=site_name,
                    atlassian_email=atlassian_email,
                    access_token=access_token,
                    refresh_token=refresh_token,
                    token_expires_at=token_expires_at,
                )
                session.add(connection)

            await session.commit()

        logger.info(
            "[jira_connections] Stored connection for user %s (site=%s)",
            user_id,
            site_name,
        )
        return connection

    async def update_tokens(
        self,
        connection_id: UUID,
        *,
        access_token: str,
        refresh_token: str,
        token_expires_at: datetime,
    ) -> None:
        """
        Persist a rotated token pair and its expiry in one statement.

        Raises:
            NotFoundError: The connection was deleted (user disconnected).
        """
        async with get_session() as session:
            result = await session.execute(
                update(JiraConnection)
                .where(JiraConnection.id == connection_id)
                .values(
                    access_token=access_token,
                    refresh_token=refresh_token,
                    token_expires_at=token_expires_at,
                    updated_at=utcnow(),
                )
            )
            if result.rowcount == 0:
                await session.rollback()
                raise NotFoundError("Jira connection no longer exists")
            await session.commit()

    async def delete_for_user(self, user_id: UUID) -> bool:
        """
        Delete the user's projects and then the connection.

        Mappings must already be gone (TaskMappingLedger.delete_all_for_user).
        Returns False if the user had no connection.
        """
        async with get_session() as session:
            await session.execute(
                delete(JiraProject).where(JiraProject.user_id == user_id)
            )
            result = await session.execute(
                delete(JiraConnection).where(JiraConnection.user_id == user_id)
            )
            await session.commit()

        removed = bool(result.rowcount)
        logger.info(
            "[jira_connections] Disconnected user %s (connection_removed=%s)",
            user_id,
            removed,
        )
        return removed

    # ── Projects ─────────────────────────────────────────────────────────

    async def list_projects(self, user_id: UUID) -> list[JiraProject]:
        async with get_session() as session:
            result = await session.execute(
                select(JiraProject)
                .where(JiraProject.user_id == user_id)
                .order_by(JiraProject.created_at.asc())
            )
            return list(result.scalars().all())

    async def get_project(self, user_id: UUID, project_id: UUID) -> Optional[JiraProject]:
        async with get_session() as session:
            result = await session.execute(
                select(JiraProject).where(
                    JiraProject.id == project_id,
                    JiraProject.user_id == user_id,
                )
            )
            return result.scalar_one_or_none()

    async def add_project(
        self,
        user_id: UUID,
        *,
        remote_project_id: str,
        project_key: str,
        project_name: str,
    ) -> JiraProject:
        """Start tracking a remote project. Adding the same project twice returns the existing row."""
        connection = await self.require_for_user(user_id)

        async with get_session() as session:
            result = await session.execute(
                select(JiraProject).where(
                    JiraProject.user_id == user_id,
                    JiraProject.project_id == remote_project_id,
                )
            )
            project = result.scalar_one_or_none()
            if project:
                return project

            project = JiraProject(
                user_id=user_id,
                connection_id=connection.id,
                project_id=remote_project_id,
                project_key=project_key,
                project_name=project_name,
            )
            session.add(project)
            await session.commit()

        logger.info("[jira_connections] User %s added project %s", user_id, project_key)
        return project

    async def remove_project(self, user_id: UUID, project_id: UUID) -> bool:
        async with get_session() as session:
            result = await session.execute(
                delete(JiraProject).where(
                    JiraProject.id == project_id,
                    JiraProject.user_id == user_id,
                )
            )
            await session.commit()
        return bool(result.rowcount)

    async def mark_project_synced(self, project_id: UUID, timestamp: datetime) -> None:
        async with get_session() as session:
            await session.execute(
                update(JiraProject)
                .where(JiraProject.id == project_id)
                .values(last_synced_at=timestamp)
            )
            await session.commit()
