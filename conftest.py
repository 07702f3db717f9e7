"""Root conftest: PostgreSQL testcontainer fixtures for integration tests.

One container serves the whole session; every ``migrated_pool()`` call gets its
own freshly migrated database, so tests never see each other's rows.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from asyncpg.pool import Pool
    from testcontainers.postgres import PostgresContainer

logger = logging.getLogger(__name__)

POSTGRES_IMAGE = "postgres:16"


@pytest.fixture(scope="session")
def postgres_container() -> Iterator[PostgresContainer]:
    """Session-wide Postgres container; requires Docker."""
    from testcontainers.postgres import PostgresContainer

    with PostgresContainer(POSTGRES_IMAGE) as pg:
        logger.info("Started %s on port %s", POSTGRES_IMAGE, pg.get_exposed_port(5432))
        yield pg


@pytest.fixture
def migrated_pool(
    postgres_container: PostgresContainer,
) -> Callable[..., AbstractAsyncContextManager[Pool]]:
    """Factory for a migrated database plus its asyncpg pool.

    Usage::

        async with migrated_pool(max_pool_size=10) as pool:
            ...
    """
    from rolodex.db import Database
    from rolodex.migrations import run_migrations

    @asynccontextmanager
    async def _provision(*, min_pool_size: int = 1, max_pool_size: int = 5) -> AsyncIterator[Pool]:
        db = Database(
            db_name=f"test_{uuid.uuid4().hex[:12]}",
            host=postgres_container.get_container_host_ip(),
            port=int(postgres_container.get_exposed_port(5432)),
            user=postgres_container.username,
            password=postgres_container.password,
            min_pool_size=min_pool_size,
            max_pool_size=max_pool_size,
        )
        await db.provision()
        await run_migrations(db.dsn)
        try:
            yield await db.connect()
        finally:
            await db.close()

    return _provision
