"""CLI for rolodex: migrations, directory sync and export, and the verification queue."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, TypeVar

import click

from rolodex import __version__
from rolodex.config import CONFIG_FILENAME, ConfigError, RolodexConfig, load_config, parse_config
from rolodex.core.logging import configure_logging
from rolodex.core.metrics import init_metrics
from rolodex.core.telemetry import init_telemetry
from rolodex.db import Database
from rolodex.errors import RolodexError
from rolodex.migrations import run_migrations
from rolodex.models import QueueStatus
from rolodex.service import ContactService

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _load(config_path: Path) -> RolodexConfig:
    if not config_path.exists():
        return parse_config({})
    return load_config(config_path)


@asynccontextmanager
async def _service(config: RolodexConfig) -> AsyncIterator[ContactService]:
    db = Database.from_config(config.database)
    pool = await db.connect()
    service = ContactService.from_pool(pool, config)
    await service.start()
    try:
        yield service
    finally:
        await service.shutdown()
        await db.close()


def _run(config: RolodexConfig, action: Callable[[ContactService], Awaitable[T]]) -> T:
    async def _main() -> T:
        async with _service(config) as service:
            return await action(service)

    try:
        return asyncio.run(_main())
    except RolodexError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


def _echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, sort_keys=True))


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=Path(CONFIG_FILENAME),
    show_default=True,
    help="Path to rolodex.toml (or the directory holding it)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path) -> None:
    """Rolodex: contact identity resolution and directory sync."""
    try:
        config = _load(config_path)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    log_file = Path(config.logging.log_file) if config.logging.log_file else None
    configure_logging(config.logging.level, config.logging.format, log_file)
    init_telemetry()
    init_metrics()
    ctx.obj = config


@cli.command()
@click.option("--revision", default="heads", show_default=True, help="Target revision")
@click.pass_obj
def migrate(config: RolodexConfig, revision: str) -> None:
    """Provision the database and apply schema migrations."""

    async def _main() -> None:
        db = Database.from_config(config.database)
        await db.provision()
        await run_migrations(db.dsn, revision)

    asyncio.run(_main())
    click.echo(f"Database {config.database.name} migrated to {revision}")


@cli.command()
@click.argument("owner")
@click.argument("account")
@click.pass_obj
def sync(config: RolodexConfig, owner: str, account: str) -> None:
    """Run one directory sync for OWNER's external ACCOUNT."""
    result = _run(config, lambda service: service.sync(owner, account))
    _echo_json(result.model_dump(mode="json"))
    if result.status == "failed":
        sys.exit(1)


@cli.command()
@click.argument("owner")
@click.argument("contact_id", type=click.UUID)
@click.argument("account")
@click.pass_obj
def export(config: RolodexConfig, owner: str, contact_id: uuid.UUID, account: str) -> None:
    """Push one of OWNER's contacts to the external ACCOUNT."""
    result = _run(config, lambda service: service.export_contact(owner, contact_id, account))
    click.echo(f"Contact {result.contact_id} {result.action.value} as {result.resource_name}")


@cli.command("sync-status")
@click.argument("owner")
@click.pass_obj
def sync_status(config: RolodexConfig, owner: str) -> None:
    """Show sync state for every account of OWNER."""
    states = _run(config, lambda service: service.list_sync_states(owner))
    if not states:
        click.echo(f"No accounts synced for {owner}")
        return

    click.echo(f"{'Account':<36} {'Status':<14} {'Last sync':<34} {'Error'}")
    click.echo("-" * 100)
    for state in states:
        last = state.last_sync_at.isoformat() if state.last_sync_at else "-"
        click.echo(
            f"{state.account_email:<36} {state.sync_status.value:<14} {last:<34} "
            f"{state.error_message or ''}"
        )


@cli.group()
def queue() -> None:
    """Review the contact verification queue."""


@queue.command("list")
@click.argument("owner")
@click.option(
    "--status",
    type=click.Choice([s.value for s in QueueStatus] + ["all"]),
    default=QueueStatus.PENDING.value,
    show_default=True,
)
@click.option("--limit", type=int, default=50, show_default=True)
@click.pass_obj
def queue_list(config: RolodexConfig, owner: str, status: str, limit: int) -> None:
    """List verification queue items for OWNER."""
    selected = None if status == "all" else QueueStatus(status)
    items = _run(config, lambda service: service.list_queue(owner, status=selected, limit=limit))
    if not items:
        click.echo("Queue is empty")
        return

    click.echo(f"{'Id':<38} {'Status':<10} {'Type':<14} {'Conf':<6} {'Reasoning'}")
    click.echo("-" * 100)
    for item in items:
        suggested = item.suggested_type.value if item.suggested_type else "-"
        confidence = f"{item.confidence:.2f}" if item.confidence is not None else "-"
        click.echo(
            f"{item.id!s:<38} {item.status.value:<10} {suggested:<14} {confidence:<6} "
            f"{item.reasoning or ''}"
        )


@queue.command("approve")
@click.argument("owner")
@click.argument("queue_id", type=click.UUID)
@click.pass_obj
def queue_approve(config: RolodexConfig, owner: str, queue_id: uuid.UUID) -> None:
    """Approve one queue item; its contact becomes verified."""
    result = _run(config, lambda service: service.approve(owner, queue_id))
    click.echo(f"Approved {result.item.id}: {result.contact.email} is now verified")


@queue.command("reject")
@click.argument("owner")
@click.argument("queue_id", type=click.UUID)
@click.pass_obj
def queue_reject(config: RolodexConfig, owner: str, queue_id: uuid.UUID) -> None:
    """Reject one queue item; its contact is marked rejected."""
    result = _run(config, lambda service: service.reject(owner, queue_id))
    click.echo(f"Rejected {result.item.id}: {result.contact.email}")


@queue.command("approve-domain")
@click.argument("owner")
@click.argument("domain")
@click.pass_obj
def queue_approve_domain(config: RolodexConfig, owner: str, domain: str) -> None:
    """Approve every pending item whose contact belongs to DOMAIN."""
    result = _run(config, lambda service: service.batch_approve_by_domain(owner, domain))
    click.echo(f"Approved {len(result.approved)} of {result.total} item(s) for {result.domain}")
    for queue_id, error in sorted(result.failed.items(), key=lambda kv: str(kv[0])):
        click.echo(f"  failed: {queue_id}: {error}")
    if result.failed:
        sys.exit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
