"""Tidemark CLI - schema migration commands

This module wires the command modules into one click group:
- migrate.py: run-pending, rollback, rollback-to, refresh
- status.py: status, backups, restore
- make.py: make
- common.py: shared utilities
"""
from pathlib import Path

import click

from .. import __version__

# Local imports
from .common import (
    VERBOSITY_NORMAL,
    VERBOSITY_QUIET,
    VERBOSITY_VERBOSE,
    configure_logging,
)
from .make import make_group
from .migrate import migrate_group
from .status import status_group


@click.group()
@click.version_option(version=__version__, prog_name="tidemark")
@click.option('--config', 'config_path', type=click.Path(dir_okay=False, path_type=Path),
              default=None, help='Path to tidemark.yaml (default: $TIDEMARK_CONFIG or ./tidemark.yaml)')
@click.option('--database', type=click.Path(dir_okay=False, path_type=Path), default=None,
              help='SQLite database to migrate (overrides config)')
@click.option('--migrations-dir', type=click.Path(file_okay=False, path_type=Path), default=None,
              help='Directory holding migration files (overrides config)')
@click.option('--verbose', '-v', is_flag=True, default=False,
              help='Enable verbose output')
@click.option('--quiet', '-q', is_flag=True, default=False,
              help='Suppress non-essential output')
@click.pass_context
def cli(ctx, config_path, database, migrations_dir, verbose, quiet):
    """Tidemark - schema migrations with a ledger

    Every command prints a JSON result as the last line of stdout.

    \b
    Key Commands:
        run-pending        Apply all pending migrations
        rollback [COUNT]   Roll back the last COUNT migrations (default 1)
        rollback-to NAME   Roll back everything applied after NAME
        status             Show applied and pending migrations
        make LABEL         Create a new migration file

    \b
    Examples:
        tidemark make create_users
        tidemark run-pending
        tidemark rollback 2
        tidemark rollback-to 20230513055909_users
    """
    ctx.ensure_object(dict)

    if verbose and quiet:
        raise click.UsageError("--verbose and --quiet are mutually exclusive")

    if quiet:
        ctx.obj['verbosity'] = VERBOSITY_QUIET
    elif verbose:
        ctx.obj['verbosity'] = VERBOSITY_VERBOSE
    else:
        ctx.obj['verbosity'] = VERBOSITY_NORMAL

    ctx.obj['config_path'] = config_path
    ctx.obj['database'] = database
    ctx.obj['migrations_dir'] = migrations_dir

    configure_logging(ctx.obj['verbosity'])


# Register migration commands (run-pending, rollback, rollback-to, refresh)
for _name in ('run-pending', 'rollback', 'rollback-to', 'refresh'):
    cli.add_command(migrate_group.commands[_name])

# Register status commands (status, backups, restore)
for _name in ('status', 'backups', 'restore'):
    cli.add_command(status_group.commands[_name])

# Register scaffolding command (make)
cli.add_command(make_group.commands['make'])


def main():
    """Entry point for the CLI."""
    cli()


__all__ = [
    'cli',
    'main',
]
