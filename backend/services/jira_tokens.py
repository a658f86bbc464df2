"""
Access-token guard for Jira connections.

Atlassian access tokens live for about an hour. Before every Jira request the
gateway asks the guard for a token; the guard hands back the stored one
unless it expires within the refresh threshold, in which case it rotates the
pair through the Atlassian token endpoint and persists the result first.

Refreshes are single-flight per connection. Atlassian may rotate the refresh
token on every use, so two racing refreshes could each invalidate the other's
new refresh token.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable, Optional

from config import settings, utcnow
from models.jira_connection import JiraConnection
from services.atlassian_oauth import AtlassianOAuthClient
from services.jira_connections import ConnectionStore
from services.jira_errors import NotFoundError

logger = logging.getLogger(__name__)


class RefreshLockManager:
    """In-process async lock manager keyed by connection id."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_refs: dict[str, int] = {}
        self._manager_lock = asyncio.Lock()

    @asynccontextmanager
    async def connection_lock(self, lock_key: str) -> AsyncIterator[None]:
        """Acquire/release the per-connection lock, cleaning up idle keys."""
        async with self._manager_lock:
            lock = self._locks.get(lock_key)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[lock_key] = lock
                self._lock_refs[lock_key] = 0
            self._lock_refs[lock_key] = self._lock_refs.get(lock_key, 0) + 1
            queued_count = self._lock_refs[lock_key]

        logger.debug(
            "[jira_tokens] Waiting for refresh lock key=%s queued=%d",
            lock_key,
            queued_count,
        )
        await lock.acquire()

        try:
            yield
        finally:
            lock.release()
            async with self._manager_lock:
                remaining = max(self._lock_refs.get(lock_key, 1) - 1, 0)
                if remaining == 0:
                    self._lock_refs.pop(lock_key, None)
                    self._locks.pop(lock_key, None)
                else:
                    self._lock_refs[lock_key] = remaining


_refresh_lock_manager = RefreshLockManager()


class TokenRefreshGuard:
    """Hands out valid access tokens for Jira connections."""

    def __init__(
        self,
        store: Optional[ConnectionStore] = None,
        oauth_client: Optional[AtlassianOAuthClient] = None,
        lock_manager: Optional[RefreshLockManager] = None,
        clock: Callable[[], datetime] = utcnow,
        threshold: Optional[timedelta] = None,
    ) -> None:
        self.store = store or ConnectionStore()
        self.oauth_client = oauth_client or AtlassianOAuthClient()
        self.lock_manager = lock_manager or _refresh_lock_manager
        self.clock = clock
        self.threshold = threshold or timedelta(
            seconds=settings.JIRA_TOKEN_REFRESH_THRESHOLD_SECONDS
        )

    def needs_refresh(self, connection: JiraConnection) -> bool:
        return connection.token_expires_at - self.clock() <= self.threshold

    async def ensure_valid_token(self, connection: JiraConnection) -> str:
        """
        Return an access token for the connection, refreshing it if it is
        about to expire.

        Raises:
            AuthError: Atlassian rejected the refresh token; the user must reconnect.
            NotFoundError: The connection was removed while we were refreshing.
        """
        if not self.needs_refresh(connection):
            return connection.access_token

        async with self.lock_manager.connection_lock(str(connection.id)):
            # Another caller may have refreshed while we waited
            current = await self.store.get_by_id(connection.id)
            if current is None:
                raise NotFoundError("Jira connection no longer exists")
            if not self.needs_refresh(current):
                return current.access_token

            logger.info("[jira_tokens] Refreshing Jira token for connection %s", current.id)
            tokens = await self.oauth_client.refresh(current.refresh_token)

            refresh_token = tokens.refresh_token or current.refresh_token
            expires_at = self.clock() + timedelta(seconds=tokens.expires_in)
            await self.store.update_tokens(
                current.id,
                access_token=tokens.access_token,
                refresh_token=refresh_token,
                token_expires_at=expires_at,
            )

            # Keep the caller's copy in step with what was persisted
            connection.access_token = tokens.access_token
            connection.refresh_token = refresh_token
            connection.token_expires_at = expires_at
            return tokens.access_token
