"""CLI entry point for the marketplace core."""

from __future__ import annotations

import asyncio

import click

from .infrastructure.feature_flags import FlagContext, env_var_name, rollout_bucket


@click.group()
def main() -> None:
    """Marketplace core: outbox processing and feature flags."""


# ---------------------------------------------------------------------------
# Outbox
# ---------------------------------------------------------------------------

@main.group()
def outbox() -> None:
    """Outbox processing."""


@outbox.command("process")
@click.option("--config", default=None, help="Config file path")
@click.option("--batch-size", default=None, type=int, help="Rows per batch override")
def outbox_process(config: str | None, batch_size: int | None) -> None:
    """Drain pending outbox rows once and exit."""
    from .main import process_outbox_once

    overrides: dict = {}
    if batch_size:
        overrides["outbox"] = {"batch_size": batch_size}

    result = asyncio.run(process_outbox_once(config_path=config, overrides=overrides))
    click.echo(f"processed={result.processed} failed={result.failed}")
    if result.failed:
        raise SystemExit(1)


@outbox.command("worker")
@click.option("--config", default=None, help="Config file path")
@click.option("--interval", default=None, type=float, help="Poll interval override (seconds)")
def outbox_worker(config: str | None, interval: float | None) -> None:
    """Run the outbox worker until interrupted."""
    from .main import run_worker

    overrides: dict = {}
    if interval:
        overrides["outbox"] = {"poll_interval_seconds": interval}

    asyncio.run(run_worker(config_path=config, overrides=overrides))


@outbox.command("failed")
@click.option("--config", default=None, help="Config file path")
@click.option("--limit", default=50, type=int, help="Maximum rows to show")
def outbox_failed(config: str | None, limit: int) -> None:
    """List failed outbox rows, oldest first."""
    from .main import list_failed_records

    records = asyncio.run(list_failed_records(limit=limit, config_path=config))
    if not records:
        click.echo("No failed outbox records.")
        return
    for record in records:
        click.echo(
            f"{record.id}  {record.created_at.isoformat()}  {record.event_type:<28}  "
            f"{record.error_message or ''}"
        )


# ---------------------------------------------------------------------------
# Feature flags
# ---------------------------------------------------------------------------

@main.group()
def flags() -> None:
    """Feature flag inspection."""


@flags.command("check")
@click.argument("name")
@click.option("--user-id", default=None, help="Acting user id")
@click.option("--session-id", default=None, help="Anonymous session id")
@click.option("--role", default=None, help="Acting user role")
@click.option("--config", default=None, help="Config file path")
def flags_check(
    name: str,
    user_id: str | None,
    session_id: str | None,
    role: str | None,
    config: str | None,
) -> None:
    """Resolve flag NAME for a caller and print the decision."""
    from .main import check_flag

    context = FlagContext(user_id=user_id, session_id=session_id, role=role)
    enabled = asyncio.run(check_flag(name, context, config_path=config))
    click.echo(f"{name}: {'on' if enabled else 'off'}")
    click.echo(f"  key={context.key} bucket={rollout_bucket(context)} env={env_var_name(name)}")


if __name__ == "__main__":
    main()
