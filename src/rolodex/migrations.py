"""Programmatic Alembic migration runner.

Lets the CLI (and tests) apply the schema without shelling out to the
Alembic CLI.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from alembic.config import Config

from alembic import command

logger = logging.getLogger(__name__)

# Root of the alembic directory (sibling to src/)
ALEMBIC_DIR = Path(__file__).resolve().parent.parent.parent / "alembic"

CORE_CHAIN = "core"


def _build_alembic_config(db_url: str) -> Config:
    config = Config()
    config.set_main_option("script_location", str(ALEMBIC_DIR))
    # Config uses configparser interpolation, so '%' in URLs must be escaped.
    config.set_main_option("sqlalchemy.url", db_url.replace("%", "%%"))
    config.set_main_option("version_locations", str(ALEMBIC_DIR / "versions" / CORE_CHAIN))
    return config


def _upgrade(db_url: str, revision: str) -> None:
    logger.info("Running migration chain to %s (chain=%s)", revision, CORE_CHAIN)
    command.upgrade(_build_alembic_config(db_url), revision)


async def run_migrations(db_url: str, revision: str = "heads") -> None:
    """Upgrade the database at *db_url* to *revision* (default: latest).

    Alembic's command API is synchronous, so it runs in a worker thread to
    keep the event loop responsive.
    """
    await asyncio.to_thread(_upgrade, db_url, revision)
