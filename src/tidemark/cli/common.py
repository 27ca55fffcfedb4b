"""Shared utilities for Tidemark CLI commands.

Human-readable output goes to stderr. stdout carries exactly one JSON
document per command, printed last, so scripts can parse it.
"""
import json
import logging
import sqlite3
import sys
from typing import Any, Callable, Dict, Optional

import click

from ..config import TidemarkConfig, load_config
from ..errors import ConfigError, LedgerDesyncError, MigrationError
from ..migrations import Direction, MigrationResult, Migrator

# Verbosity levels
VERBOSITY_QUIET = 0
VERBOSITY_NORMAL = 1
VERBOSITY_VERBOSE = 2

# Exit codes (2 is click's usage error)
EXIT_OK = 0
EXIT_FAILURE = 1

# Everything a command reports as a failed result instead of a traceback
ENGINE_ERRORS = (MigrationError, ConfigError, ValueError, OSError, sqlite3.Error)

_LOG_LEVELS = {
    VERBOSITY_QUIET: logging.WARNING,
    VERBOSITY_NORMAL: logging.INFO,
    VERBOSITY_VERBOSE: logging.DEBUG,
}

_LEVEL_COLORS = {
    logging.WARNING: "yellow",
    logging.ERROR: "red",
    logging.CRITICAL: "red",
}


class ClickHandler(logging.Handler):
    """Logging handler writing through click.echo to the current stderr."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record)
            color = _LEVEL_COLORS.get(record.levelno)
            click.echo(click.style(message, fg=color) if color else message, err=True)
        except Exception:
            self.handleError(record)


_handler: Optional[logging.Handler] = None


def configure_logging(verbosity: int) -> None:
    """Route tidemark logs to stderr at the level matching verbosity."""
    global _handler

    logger = logging.getLogger("tidemark")
    if _handler is not None:
        logger.removeHandler(_handler)

    _handler = ClickHandler()
    fmt = "%(levelname)s %(name)s: %(message)s" if verbosity >= VERBOSITY_VERBOSE else "%(message)s"
    _handler.setFormatter(logging.Formatter(fmt))
    logger.addHandler(_handler)
    logger.setLevel(_LOG_LEVELS[verbosity])


def should_print(verbosity: int, message_level: int) -> bool:
    """Determine if a message should be printed based on verbosity settings."""
    return verbosity >= message_level


def echo_normal(message: str, verbosity: int) -> None:
    """Print a message to stderr in normal and verbose modes."""
    if should_print(verbosity, VERBOSITY_NORMAL):
        click.echo(message, err=True)


def echo_quiet(message: str, verbosity: int) -> None:
    """Print a message to stderr that is shown even in quiet mode."""
    click.echo(message, err=True)


def emit_json(payload: Dict[str, Any]) -> None:
    """Print the machine-readable result as a single line on stdout."""
    click.echo(json.dumps(payload, default=str))


def get_config(ctx: click.Context) -> TidemarkConfig:
    """Resolve configuration from --config, environment and CLI overrides."""
    return load_config(
        ctx.obj.get('config_path'),
        database=ctx.obj.get('database'),
        migrations_dir=ctx.obj.get('migrations_dir'),
    )


def get_migrator(ctx: click.Context) -> Migrator:
    """Build the migrator for this invocation."""
    return Migrator.from_config(get_config(ctx))


def run_engine(ctx: click.Context,
               direction: Direction,
               action: Callable[[Migrator], MigrationResult]) -> MigrationResult:
    """Run one engine operation and turn every engine error into a result.

    Planning and storage errors become a failed result with nothing completed. A ledger
    desync keeps the partial result it carries.
    """
    try:
        return action(get_migrator(ctx))
    except LedgerDesyncError as e:
        return e.result if e.result is not None else MigrationResult.from_error(direction, e)
    except ENGINE_ERRORS as e:
        return MigrationResult.from_error(direction, e)


def finish(ctx: click.Context, result: MigrationResult, success_message: str) -> None:
    """Report a result: summary on stderr, JSON on stdout, exit code."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    arrow = "✓" if result.direction == Direction.FORWARD else "↓"

    for name in result.completed:
        echo_normal(f"  {arrow} {name}", verbosity)

    if result.success:
        if not result.completed:
            echo_normal(click.style("Nothing to do.", fg="cyan"), verbosity)
        echo_normal(click.style(f"✓ {success_message}", fg="green"), verbosity)
    else:
        cause = result.cause.message if result.cause else "unknown error"
        where = f" at {result.failed_at}" if result.failed_at else ""
        echo_quiet(click.style(f"✗ Failed{where}: {cause}", fg="red"), verbosity)

    emit_json(result.to_dict())
    if not result.success:
        sys.exit(EXIT_FAILURE)
