"""
SQLite backing for the record store.
"""

import sqlite3
from pathlib import Path

MEMORY_DB = ":memory:"


def connect(db_path: str) -> sqlite3.Connection:
    """Open a connection usable from any thread (callers serialize access)."""
    if db_path != MEMORY_DB:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, check_same_thread=False)
    init_db(conn)
    return conn


def init_db(conn: sqlite3.Connection):
    """Initialize the database with required tables."""
    cursor = conn.cursor()

    # One row per chunk; id is the RecordId, never reused
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS records (
            id INTEGER PRIMARY KEY,
            dim INTEGER NOT NULL,
            vector BLOB NOT NULL,
            text TEXT NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    # Store-wide settings such as the fixed dimension
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
    ''')

    conn.commit()


def health_check(conn: sqlite3.Connection) -> bool:
    """Check database health."""
    try:
        cursor = conn.cursor()
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
        table_names = [table[0] for table in cursor.fetchall()]
        required_tables = ['records', 'meta']
        return all(table in table_names for table in required_tables)
    except sqlite3.Error:
        return False
