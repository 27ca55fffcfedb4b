"""Tidemark CLI - Migration Commands

run-pending, rollback, rollback-to and refresh.
"""
import sys

import click

from ..errors import LedgerDesyncError
from ..migrations import Direction

# Local CLI imports
from .common import (
    EXIT_FAILURE,
    ENGINE_ERRORS,
    VERBOSITY_NORMAL,
    echo_normal,
    echo_quiet,
    emit_json,
    finish,
    get_migrator,
    run_engine,
)


@click.group()
def migrate_group():
    """Migration commands."""
    pass


@migrate_group.command('run-pending')
@click.option('--dry-run', is_flag=True, default=False,
              help='Show what would be applied without applying it')
@click.pass_context
def run_pending(ctx, dry_run: bool) -> None:
    """Apply all pending migrations.

    Every migration applied by one invocation shares a new batch number.
    Stops at the first failing migration.

    Examples:
        tidemark run-pending
        tidemark run-pending --dry-run
    """
    echo_normal(click.style("Running migrations...", fg="cyan", bold=True),
                ctx.obj.get('verbosity', VERBOSITY_NORMAL))
    result = run_engine(ctx, Direction.FORWARD,
                        lambda migrator: migrator.migrate_up(dry_run=dry_run))
    finish(ctx, result, "Dry run complete" if dry_run else "Migrations completed!")


@migrate_group.command('rollback')
@click.argument('count', type=int, default=1, required=False)
@click.option('--dry-run', is_flag=True, default=False,
              help='Show what would be rolled back without doing it')
@click.pass_context
def rollback(ctx, count: int, dry_run: bool) -> None:
    """Roll back the last COUNT applied migrations (default: 1).

    Fails without changing anything if COUNT exceeds the applied history.

    Examples:
        tidemark rollback
        tidemark rollback 3
    """
    echo_normal(click.style(f"Rolling back {count} migration(s)...", fg="cyan", bold=True),
                ctx.obj.get('verbosity', VERBOSITY_NORMAL))
    result = run_engine(ctx, Direction.BACKWARD,
                        lambda migrator: migrator.migrate_down(count, dry_run=dry_run))
    finish(ctx, result, "Dry run complete" if dry_run else "Rollback completed!")


@migrate_group.command('rollback-to')
@click.argument('name')
@click.option('--dry-run', is_flag=True, default=False,
              help='Show what would be rolled back without doing it')
@click.pass_context
def rollback_to(ctx, name: str, dry_run: bool) -> None:
    """Roll back every migration applied after NAME.

    NAME itself stays applied. A trailing .py is accepted.

    Examples:
        tidemark rollback-to 20230514062913_sessions
        tidemark rollback-to migrations/20230514062913_sessions.py
    """
    echo_normal(click.style(f"Rolling back to migration: {name}", fg="cyan", bold=True),
                ctx.obj.get('verbosity', VERBOSITY_NORMAL))
    result = run_engine(ctx, Direction.BACKWARD,
                        lambda migrator: migrator.migrate_to(name, dry_run=dry_run))
    finish(ctx, result, "Dry run complete" if dry_run else "Rollback completed!")


@migrate_group.command('refresh')
@click.confirmation_option(prompt='Roll back every migration and re-apply them all?')
@click.pass_context
def refresh(ctx) -> None:
    """Roll back every applied migration, then apply all migrations again.

    Data in migrated tables is lost. Stops at the first failure.
    """
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    echo_normal(click.style("Refreshing database...", fg="cyan", bold=True), verbosity)

    down = up = partial = None
    try:
        down, up = get_migrator(ctx).refresh()
    except LedgerDesyncError as e:
        partial = e.result
        error = e
    except ENGINE_ERRORS as e:
        error = e
    else:
        error = None

    success = error is None and down.success and up is not None and up.success
    if success:
        echo_normal(f"  ↓ {len(down.completed)} rolled back, ✓ {len(up.completed)} applied", verbosity)
        echo_normal(click.style("✓ Database refreshed successfully!", fg="green"), verbosity)
    else:
        reason = error or (up if down.success else down).cause.message
        echo_quiet(click.style(f"✗ Refresh failed: {reason}", fg="red"), verbosity)

    emit_json({
        "success": success,
        "rollback": down.to_dict() if down else None,
        "migrate": up.to_dict() if up else None,
        "partial": partial.to_dict() if partial else None,
        "error": f"{type(error).__name__}: {error}" if error else None,
    })
    if not success:
        sys.exit(EXIT_FAILURE)
