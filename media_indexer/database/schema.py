import sqlite3
import logging


def init_schema(conn: sqlite3.Connection):
    """
    Initializes the document store tables.
    Safe to run repeatedly; every statement is IF NOT EXISTS.
    """
    with conn:
        # 1. Aliases (portable scan roots)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS aliases (
            alias               TEXT PRIMARY KEY,
            path                TEXT NOT NULL,
            date_added          TEXT NOT NULL,
            date_last_indexed   TEXT
        );
        """)

        # 2. Media documents
        # The searchable fields are columns; the full document rides along as JSON.
        conn.execute("""
        CREATE TABLE IF NOT EXISTS media (
            path            TEXT PRIMARY KEY,
            alias           TEXT NOT NULL,
            signature       TEXT NOT NULL,
            file_modified   REAL NOT NULL DEFAULT 0,
            date_time       TEXT,
            day_of_year     INTEGER,
            mime_type       TEXT,
            indexed_at      TEXT NOT NULL,
            document        TEXT NOT NULL
        );
        """)

        # 3. Indices for Performance
        conn.execute("CREATE INDEX IF NOT EXISTS idx_media_alias ON media(alias);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_media_signature ON media(signature);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_media_day_of_year ON media(day_of_year);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_media_date_time ON media(date_time);")

    logging.debug("Database schema initialized.")
