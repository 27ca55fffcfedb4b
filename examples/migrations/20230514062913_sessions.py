"""Create sessions table"""
import sqlite3

from tidemark import MigrationBase


class Migration(MigrationBase):
    description = "Create sessions table with user and expiry indexes"

    def up(self, conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE sessions (
                id TEXT PRIMARY KEY,
                user_id TEXT,
                user_agent TEXT,
                expires_at TEXT
            )
        """)
        conn.execute("CREATE INDEX sessions_user_id_idx ON sessions(user_id)")
        conn.execute("CREATE INDEX sessions_expires_at_idx ON sessions(expires_at)")

    def down(self, conn: sqlite3.Connection) -> None:
        conn.execute("DROP TABLE sessions")
