"""Shared helpers for tests that need a database."""
import asyncio
from typing import Any, Awaitable, Callable

import pytest

from models.database import close_db, configure_engine, init_db

SQLITE_MEMORY_URL = "sqlite+aiosqlite://"


@pytest.fixture
def run_db() -> Callable[[Callable[[], Awaitable[Any]]], Any]:
    """
    Run a coroutine factory against a fresh in-memory database.

    Engine setup, the test body and teardown share one event loop, since
    aiosqlite connections cannot move between loops.
    """

    def _run(body: Callable[[], Awaitable[Any]]) -> Any:
        async def _wrapped() -> Any:
            configure_engine(SQLITE_MEMORY_URL)
            await init_db()
            try:
                return await body()
            finally:
                await close_db()

        return asyncio.run(_wrapped())

    return _run
