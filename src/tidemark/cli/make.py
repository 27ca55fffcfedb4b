"""Tidemark CLI - Scaffolding

Creates new timestamped migration files.
"""
import re
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import click

from ..migrations.migration_base import SEQUENCE_FORMAT

# Local CLI imports
from .common import (
    ENGINE_ERRORS,
    EXIT_FAILURE,
    VERBOSITY_NORMAL,
    echo_normal,
    echo_quiet,
    emit_json,
    get_config,
)

MIGRATION_TEMPLATE = '''"""{description}"""


def up(conn):
    """Apply the migration. conn is inside an open transaction."""
    conn.execute("""
        CREATE TABLE {table} (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    """)


def down(conn):
    """Reverse up()."""
    conn.execute("DROP TABLE {table}")
'''


def slugify(label: str) -> str:
    """Turn a free-form label into a migration file label."""
    slug = re.sub(r"[^a-z0-9]+", "_", label.lower()).strip("_")
    return slug


def table_name(slug: str) -> str:
    """Template table name; SQL identifiers cannot start with a digit."""
    return f"t_{slug}" if slug[0].isdigit() else slug


def docstring_text(label: str) -> str:
    """Label as a single line that is safe inside a triple-quoted docstring."""
    text = " ".join(label.split()).capitalize()
    return text.replace("\\", "\\\\").replace('"', '\\"')


def free_stamp(migrations_dir: Path, moment: datetime) -> str:
    """First timestamp at or after ``moment`` that no migration file uses."""
    while True:
        stamp = moment.strftime(SEQUENCE_FORMAT)
        if not any(migrations_dir.glob(f"{stamp}_*.py")):
            return stamp
        moment += timedelta(seconds=1)


def fail(message: str, verbosity: int, **extra) -> None:
    echo_quiet(click.style(f"Error: {message}", fg="red"), verbosity)
    emit_json({"success": False, "error": message, **extra})
    sys.exit(EXIT_FAILURE)


@click.group()
def make_group():
    """Scaffolding commands."""
    pass


@make_group.command('make')
@click.argument('label')
@click.pass_context
def make(ctx, label: str) -> None:
    """Create a new migration file named after the current UTC time.

    When another migration already uses that second, the timestamp moves
    forward until it is unique.

    Examples:
        tidemark make create_users
        tidemark make "add avatar to users"
    """
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    slug = slugify(label)
    if not slug:
        fail(f"label {label!r} has no usable characters", verbosity)

    try:
        config = get_config(ctx)
        stamp = free_stamp(config.migrations_dir, datetime.now(timezone.utc))
        name = f"{stamp}_{slug}"
        path = config.migrations_dir / f"{name}.py"

        config.migrations_dir.mkdir(parents=True, exist_ok=True)
        path.write_text(MIGRATION_TEMPLATE.format(
            description=docstring_text(label),
            table=table_name(slug),
        ))
    except ENGINE_ERRORS as e:
        fail(f"{type(e).__name__}: {e}", verbosity)

    echo_normal(click.style(f"✓ Created migration {path}", fg="green"), verbosity)
    emit_json({"success": True, "name": name, "path": str(path)})
