"""Create password_reset_tokens table"""


def up(conn):
    conn.execute("""
        CREATE TABLE password_reset_tokens (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            email TEXT NOT NULL,
            token TEXT NOT NULL UNIQUE,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            expires_at TEXT NOT NULL
        )
    """)
    conn.execute(
        "CREATE INDEX password_reset_tokens_email_idx ON password_reset_tokens(email)"
    )


def down(conn):
    conn.execute("DROP TABLE password_reset_tokens")
