"""
Embedded DuckDB engine handle.
One database per process (DUCKDB_DATABASE, in-memory by default); every call gets its own
cursor through `scoped_connection()`, acquired and released under a process-wide lock.
"""
import logging
import os
import threading
from contextlib import contextmanager
from typing import Iterator

import duckdb
from dotenv import load_dotenv

load_dotenv()

DUCKDB_DATABASE = os.getenv("DUCKDB_DATABASE", ":memory:")

logger = logging.getLogger(__name__)

_database = None
_lock = threading.Lock()
_open_cursors = 0


def _get_database():
    """Lazy process-wide database. Caller must hold _lock."""
    global _database
    if _database is None:
        _database = duckdb.connect(database=DUCKDB_DATABASE)
        logger.info("engine: database opened at %s", DUCKDB_DATABASE)
    return _database


@contextmanager
def scoped_connection() -> Iterator["duckdb.DuckDBPyConnection"]:
    """
    Yield a fresh cursor on the shared database; always closed on exit.
    Temp views and registered frames live on the cursor, so requests never see each other's state.
    """
    global _open_cursors
    with _lock:
        cursor = _get_database().cursor()
        _open_cursors += 1
    try:
        yield cursor
    finally:
        with _lock:
            try:
                cursor.close()
            finally:
                _open_cursors -= 1


def open_cursor_count() -> int:
    """Cursors currently checked out (0 between requests)."""
    with _lock:
        return _open_cursors


def close_database() -> None:
    """Close the shared database (tests, process shutdown)."""
    global _database
    with _lock:
        if _database is not None:
            _database.close()
            _database = None
            logger.info("engine: database closed")
