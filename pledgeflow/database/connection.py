"""
Database connection management with connection pooling and retry logic.
"""

import os
import logging
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence

import psycopg2
from psycopg2 import pool
from psycopg2.extras import execute_batch
from dotenv import load_dotenv
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from pledgeflow.database.base import TransactionCursor, translate_store_error
from pledgeflow.database.schema import POSTGRES_SCHEMA

load_dotenv()

logger = logging.getLogger(__name__)

_retry_connection = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, max=5),
    retry=retry_if_exception_type(psycopg2.OperationalError),
    reraise=True,
)


class PostgresCursor(TransactionCursor):
    """Transaction cursor using psycopg2's batched executor."""

    def execute_many(self, query: str, data: List[Sequence[Any]]) -> int:
        if not data:
            return 0
        execute_batch(self.cursor, query, [tuple(row) for row in data])
        return len(data)


class DatabaseManager:
    """Manages PostgreSQL connections with connection pooling."""

    backend = 'postgres'

    def __init__(self, database_url: str = None, min_connections: int = None, max_connections: int = None):
        self.connection_pool: Optional[pool.ThreadedConnectionPool] = None
        self.database_url = database_url or os.getenv('DATABASE_URL')
        if not self.database_url:
            raise ValueError("DATABASE_URL environment variable is required")
        self.min_connections = min_connections or int(os.getenv('DB_POOL_MIN', '1'))
        self.max_connections = max_connections or int(os.getenv('DB_POOL_MAX', '10'))

    @_retry_connection
    def initialize_pool(self) -> None:
        """Initialize the connection pool."""
        try:
            self.connection_pool = pool.ThreadedConnectionPool(
                minconn=self.min_connections,
                maxconn=self.max_connections,
                dsn=self.database_url
            )
            logger.info(f"Database connection pool initialized: {self.min_connections}-{self.max_connections} connections")
        except Exception as e:
            logger.error(f"Failed to initialize database connection pool: {e}")
            raise

    @_retry_connection
    def get_connection(self):
        """Get a connection from the pool."""
        if not self.connection_pool:
            self.initialize_pool()

        try:
            return self.connection_pool.getconn()
        except Exception as e:
            logger.error(f"Failed to get database connection: {e}")
            raise

    def return_connection(self, connection) -> None:
        """Return a connection to the pool."""
        if self.connection_pool and connection:
            try:
                self.connection_pool.putconn(connection)
            except Exception as e:
                logger.error(f"Failed to return connection to pool: {e}")

    def close_all_connections(self) -> None:
        """Close all connections in the pool."""
        if self.connection_pool:
            try:
                self.connection_pool.closeall()
                logger.info("All database connections closed")
            except Exception as e:
                logger.error(f"Error closing database connections: {e}")
            finally:
                self.connection_pool = None

    @contextmanager
    def transaction(self) -> Iterator[TransactionCursor]:
        """Open a transaction; commits on success, rolls back on any error."""
        connection = self.get_connection()
        try:
            with connection.cursor() as cursor:
                yield PostgresCursor(cursor)
            connection.commit()
        except psycopg2.Error as e:
            connection.rollback()
            logger.error(f"Database transaction failed: {e}")
            raise translate_store_error(e, (psycopg2.IntegrityError,)) from e
        except Exception:
            connection.rollback()
            raise
        finally:
            self.return_connection(connection)

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
        connection = self.get_connection()
        try:
            with connection.cursor() as cursor:
                cursor.execute(POSTGRES_SCHEMA)
            connection.commit()
            logger.info("PostgreSQL schema initialized successfully")
        except psycopg2.Error as e:
            connection.rollback()
            logger.error(f"Failed to initialize PostgreSQL schema: {e}")
            raise translate_store_error(e, (psycopg2.IntegrityError,)) from e
        finally:
            self.return_connection(connection)

    def health_check(self) -> bool:
        """Check if database is healthy and accessible."""
        try:
            result = self.execute_query("SELECT 1 as health_check")
            return len(result) > 0 and result[0]['health_check'] == 1
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def close(self) -> None:
        self.close_all_connections()


def create_database_manager(backend: str = None, **kwargs):
    """Build the store client selected by ``DATABASE_BACKEND``."""
    backend = (backend or os.getenv('DATABASE_BACKEND', 'postgres')).lower()

    if backend == 'sqlite':
        from pledgeflow.database.sqlite_connection import SQLiteManager
        return SQLiteManager(**kwargs)
    if backend in ('postgres', 'postgresql'):
        return DatabaseManager(**kwargs)

    raise ValueError(f"Unsupported DATABASE_BACKEND: {backend}")

