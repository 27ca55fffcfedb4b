"""Tidemark CLI - Status and Backup Commands

Migration status reporting, snapshot listing and restore.
"""
import sys
from pathlib import Path

import click

from ..migrations import BackupManager, MigrationLedger

# Local CLI imports
from .common import (
    EXIT_FAILURE,
    ENGINE_ERRORS,
    VERBOSITY_NORMAL,
    echo_normal,
    echo_quiet,
    emit_json,
    get_config,
    get_migrator,
)


@click.group()
@click.pass_context
def status_group(ctx):
    """Status and backup commands."""
    ctx.ensure_object(dict)


@status_group.command()
@click.pass_context
def status(ctx) -> None:
    """Show every known migration and whether it is applied."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)

    try:
        statuses = get_migrator(ctx).status()
    except ENGINE_ERRORS as e:
        echo_quiet(click.style(f"Error: {e}", fg="red"), verbosity)
        emit_json({"success": False, "error": f"{type(e).__name__}: {e}"})
        sys.exit(EXIT_FAILURE)

    applied = [s for s in statuses if s.state == "applied"]
    echo_normal(click.style("Migration Status", fg="cyan", bold=True), verbosity)
    echo_normal("=" * 50, verbosity)
    for entry in statuses:
        if entry.state == "applied":
            marker = click.style("✓", fg="green")
            detail = f"batch {entry.batch}"
        else:
            marker = click.style("•", fg="yellow")
            detail = "pending"
        echo_normal(f" {marker} {entry.name}  ({detail})", verbosity)
    echo_normal(f"\n{len(applied)} applied, {len(statuses) - len(applied)} pending", verbosity)

    emit_json({
        "success": True,
        "applied": len(applied),
        "pending": len(statuses) - len(applied),
        "migrations": [s.to_dict() for s in statuses],
    })


@status_group.command()
@click.pass_context
def backups(ctx) -> None:
    """List database snapshots taken before migration runs."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    try:
        config = get_config(ctx)
        snapshots = BackupManager(config.database, config.backup.dir).list_backups()
    except ENGINE_ERRORS as e:
        echo_quiet(click.style(f"Error: {e}", fg="red"), verbosity)
        emit_json({"success": False, "error": f"{type(e).__name__}: {e}"})
        sys.exit(EXIT_FAILURE)

    if not snapshots:
        echo_normal(click.style("No backups found.", fg="yellow"), verbosity)
    for info in snapshots:
        size_kb = info.size_bytes / 1024
        echo_normal(f" {info.created_at:%Y-%m-%d %H:%M:%S}  {info.path.name}  "
                    f"({size_kb:.1f} KB, batch {info.latest_batch})", verbosity)

    emit_json({"success": True, "backups": [b.to_dict() for b in snapshots]})


@status_group.command()
@click.argument('backup', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.confirmation_option(prompt='Overwrite the database (ledger included) with this backup?')
@click.pass_context
def restore(ctx, backup: Path) -> None:
    """Restore the database from a snapshot.

    Use after a failed run that left schema and ledger out of step.
    """
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    try:
        config = get_config(ctx)
        ledger = MigrationLedger(config.database, table=config.ledger_table,
                                 lock_path=config.lock_path)
        with ledger.lock():
            BackupManager(config.database, config.backup.dir).restore_backup(backup)
    except ENGINE_ERRORS as e:
        echo_quiet(click.style(f"Error: {e}", fg="red"), verbosity)
        emit_json({"success": False, "error": f"{type(e).__name__}: {e}"})
        sys.exit(EXIT_FAILURE)

    echo_normal(click.style(f"✓ Restored {config.database} from {backup.name}", fg="green"), verbosity)
    emit_json({"success": True, "restored": str(backup), "database": str(config.database)})
