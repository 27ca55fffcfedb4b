"""Create users table"""


def up(conn):
    conn.execute("""
        CREATE TABLE users (
            id TEXT PRIMARY KEY NOT NULL,
            name TEXT,
            email TEXT NOT NULL UNIQUE,
            phone TEXT,
            avatar TEXT,
            is_verified INTEGER DEFAULT 0,
            membership_date INTEGER,
            is_admin INTEGER DEFAULT 0,
            password TEXT NOT NULL,
            remember_me_token TEXT,
            created_at INTEGER,
            updated_at INTEGER
        )
    """)


def down(conn):
    conn.execute("DROP TABLE users")
