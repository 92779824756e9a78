"""
Database connection management.

Provides SQLite connections for the usage event store.
"""

import sqlite3
from pathlib import Path

from usage_meter.core.errors import StorageUnavailableError

DEFAULT_DB_PATH = "usage_meter.db"
DB_PATH_ENV_VAR = "USAGE_METER_DB"

# Seconds a writer waits on a locked database before giving up.
BUSY_TIMEOUT_SECONDS = 30.0


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite database connection with foreign keys enabled.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign key constraints enabled

    Raises:
        StorageUnavailableError: If the database cannot be opened
    """
    path = Path(db_path)
    try:
        conn = sqlite3.connect(str(path), timeout=BUSY_TIMEOUT_SECONDS)
        conn.execute("PRAGMA foreign_keys = ON")
    except sqlite3.Error as e:
        raise StorageUnavailableError(f"Cannot open usage database {db_path}: {e}") from e
    return conn
