"""Database provisioning and connection pool management."""

from __future__ import annotations

import contextlib
import logging
import os
from collections.abc import Awaitable, Callable, Iterator
from typing import Any, TypeVar
from urllib.parse import parse_qs, urlparse

import asyncpg

from rolodex.errors import PersistenceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SSL_MODES = frozenset({"disable", "allow", "prefer", "require", "verify-ca", "verify-full"})

# asyncpg's STARTTLS negotiation against servers without SSL can fail this way.
_SSL_UPGRADE_LOST = "unexpected connection_lost() call"


def normalize_ssl_mode(value: str | None) -> str | None:
    """Lower-case a libpq ``sslmode``; unknown or blank values become None."""
    mode = (value or "").strip().lower()
    if not mode:
        return None
    if mode not in SSL_MODES:
        logger.warning("Ignoring unknown sslmode %r", value)
        return None
    return mode


def db_params_from_env() -> dict[str, str | int | None]:
    """Connection defaults from ``DATABASE_URL``, else the ``POSTGRES_*`` variables."""
    url = os.environ.get("DATABASE_URL")
    if url:
        parsed = urlparse(url)
        return {
            "host": parsed.hostname or "localhost",
            "port": parsed.port or 5432,
            "user": parsed.username or "rolodex",
            "password": parsed.password or "rolodex",
            "ssl": normalize_ssl_mode(parse_qs(parsed.query).get("sslmode", [None])[0]),
        }

    env = os.environ
    return {
        "host": env.get("POSTGRES_HOST", "localhost"),
        "port": int(env.get("POSTGRES_PORT", "5432")),
        "user": env.get("POSTGRES_USER", "rolodex"),
        "password": env.get("POSTGRES_PASSWORD", "rolodex"),
        "ssl": normalize_ssl_mode(env.get("POSTGRES_SSLMODE")),
    }


def should_retry_with_ssl_disable(exc: BaseException, configured_ssl: str | None) -> bool:
    """True when no sslmode was configured and the SSL upgrade dropped the connection."""
    if configured_ssl is not None or not isinstance(exc, ConnectionError):
        return False
    return _SSL_UPGRADE_LOST in str(exc)


class Database:
    """One PostgreSQL database: creation on demand plus an asyncpg pool."""

    def __init__(
        self,
        db_name: str,
        host: str = "localhost",
        port: int = 5432,
        user: str = "postgres",
        password: str = "postgres",
        ssl: str | None = None,
        min_pool_size: int = 2,
        max_pool_size: int = 10,
    ) -> None:
        self.db_name = db_name
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.ssl = ssl
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.pool: asyncpg.Pool | None = None

    @classmethod
    def from_config(cls, config: Any) -> Database:
        """Build from a ``DatabaseConfig``."""
        return cls(
            db_name=config.name,
            host=config.host,
            port=config.port,
            user=config.user,
            password=config.password,
            ssl=config.ssl,
            min_pool_size=config.min_pool_size,
            max_pool_size=config.max_pool_size,
        )

    @property
    def dsn(self) -> str:
        """libpq-style URL, used by the migration runner."""
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.db_name}"

    def _connect_kwargs(self, database: str) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "database": database,
        }
        if self.ssl is not None:
            kwargs["ssl"] = self.ssl
        return kwargs

    async def _open(self, opener: Callable[..., Awaitable[T]], kwargs: dict[str, Any]) -> T:
        try:
            return await opener(**kwargs)
        except ConnectionError as exc:
            if not should_retry_with_ssl_disable(exc, self.ssl):
                raise
            logger.info(
                "SSL upgrade to %s:%s failed; retrying with ssl=disable", self.host, self.port
            )
            return await opener(**{**kwargs, "ssl": "disable"})

    async def provision(self) -> None:
        """Create the database when it does not exist yet."""
        conn = await self._open(asyncpg.connect, self._connect_kwargs("postgres"))
        try:
            if await conn.fetchval("SELECT 1 FROM pg_database WHERE datname = $1", self.db_name):
                logger.debug("Database %s already exists", self.db_name)
                return
            quoted = self.db_name.replace('"', '""')
            await conn.execute(f'CREATE DATABASE "{quoted}" TEMPLATE template0')
            logger.info("Created database %s", self.db_name)
        finally:
            await conn.close()

    async def connect(self) -> asyncpg.Pool:
        """Open the pool (min/max sizes from the constructor) and return it."""
        kwargs = self._connect_kwargs(self.db_name)
        kwargs.update(min_size=self.min_pool_size, max_size=self.max_pool_size)
        self.pool = await self._open(asyncpg.create_pool, kwargs)
        logger.info(
            "Connected to %s (pool %d-%d)", self.db_name, self.min_pool_size, self.max_pool_size
        )
        return self.pool

    async def close(self) -> None:
        if self.pool is None:
            return
        await self.pool.close()
        self.pool = None
        logger.info("Closed pool for %s", self.db_name)


@contextlib.contextmanager
def translate_db_errors(operation: str) -> Iterator[None]:
    """Re-raise driver failures inside the block as ``PersistenceError``."""
    try:
        yield
    except (asyncpg.PostgresError, asyncpg.InterfaceError) as exc:
        logger.error("Database error during %s: %s", operation, exc)
        raise PersistenceError(f"Database error during {operation}: {exc}") from exc
