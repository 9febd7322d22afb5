"""
SQLite database connection for tests and local runs without PostgreSQL.
"""

import os
import logging
import sqlite3
from typing import Any, Iterator, List, Optional, Sequence
from contextlib import contextmanager
from dotenv import load_dotenv

from pledgeflow.database.base import TransactionCursor, translate_store_error
from pledgeflow.database.schema import SQLITE_SCHEMA

load_dotenv()

logger = logging.getLogger(__name__)


class SQLiteManager:
    """SQLite database manager exposing the same store API as DatabaseManager."""

    backend = 'sqlite'

    def __init__(self, db_path: str = None, timeout: float = 30.0):
        self.db_path = db_path or os.getenv('SQLITE_DB_PATH', 'data/pledgeflow.db')
        self.timeout = timeout
        self._ensure_db_directory()

    def _ensure_db_directory(self):
        """Ensure the database directory exists."""
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

    @contextmanager
    def get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection in autocommit mode."""
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[TransactionCursor]:
        """Open a write transaction; commits on success, rolls back on any error."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute("BEGIN IMMEDIATE")
                yield TransactionCursor(cursor, placeholder='?')
                cursor.execute("COMMIT")
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.rollback()
                logger.error(f"Database transaction failed: {e}")
                raise translate_store_error(e, (sqlite3.IntegrityError,)) from e
            except Exception:
                if conn.in_transaction:
                    conn.rollback()
                raise
            finally:
                cursor.close()

    def execute_query(self, query: str, params: Optional[Sequence[Any]] = None, fetch: bool = True):
        """Execute a single statement in its own transaction."""
        with self.transaction() as tx:
            if fetch:
                return tx.fetch_all(query, params)
            return tx.execute(query, params)

    def execute_many(self, query: str, data: List[Sequence[Any]]) -> int:
        """Execute a statement with multiple rows of data."""
        with self.transaction() as tx:
            return tx.execute_many(query, data)

    def initialize_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        try:
            with self.get_connection() as conn:
                conn.executescript(SQLITE_SCHEMA)
            logger.info("SQLite schema initialized successfully")
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize SQLite schema: {e}")
            raise translate_store_error(e, (sqlite3.IntegrityError,)) from e

    def health_check(self) -> bool:
        """Check if database is healthy."""
        try:
            result = self.execute_query("SELECT 1 as health_check")
            return len(result) > 0 and result[0]['health_check'] == 1
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def close(self) -> None:
        """Connections are per call; nothing is pooled."""
