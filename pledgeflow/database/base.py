"""
Shared cursor wrapper and driver error translation for the store managers.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from pledgeflow.errors import ConstraintViolationError, StoreError

logger = logging.getLogger(__name__)


class TransactionCursor:
    """Cursor bound to one open transaction, returning rows as dicts.

    Queries are written with ``%s`` placeholders; managers whose driver
    uses another paramstyle pass it as ``placeholder``.
    """

    def __init__(self, cursor, placeholder: str = '%s'):
        self.cursor = cursor
        self.placeholder = placeholder

    def _prepare(self, query: str) -> str:
        if self.placeholder == '%s':
            return query
        return query.replace('%s', self.placeholder)

    def execute(self, query: str, params: Optional[Sequence[Any]] = None) -> int:
        """Execute a statement and return the affected row count."""
        self.cursor.execute(self._prepare(query), tuple(params or ()))
        return self.cursor.rowcount

    def fetch_all(self, query: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        """Execute a query and return every row."""
        self.cursor.execute(self._prepare(query), tuple(params or ()))
        if not self.cursor.description:
            return []
        columns = [desc[0] for desc in self.cursor.description]
        return [dict(zip(columns, row)) for row in self.cursor.fetchall()]

    def fetch_one(self, query: str, params: Optional[Sequence[Any]] = None) -> Optional[Dict[str, Any]]:
        """Execute a query and return the first row, if any."""
        rows = self.fetch_all(query, params)
        return rows[0] if rows else None

    def execute_many(self, query: str, data: List[Sequence[Any]]) -> int:
        """Execute a statement once per parameter tuple."""
        if not data:
            return 0
        self.cursor.executemany(self._prepare(query), [tuple(row) for row in data])
        return self.cursor.rowcount


def translate_store_error(error: Exception, integrity_errors: tuple) -> StoreError:
    """Map a driver exception to the pipeline's store error kinds."""
    if isinstance(error, StoreError):
        return error
    if isinstance(error, integrity_errors):
        return ConstraintViolationError(str(error).strip())
    return StoreError(str(error).strip())


def dump_json(value: Any) -> Optional[str]:
    """Serialize a JSON column value."""
    if value is None:
        return None
    return json.dumps(value)


def load_json(value: Any) -> Any:
    """Deserialize a JSON column; PostgreSQL JSONB arrives already decoded."""
    if value is None or not isinstance(value, (str, bytes)):
        return value
    return json.loads(value)
