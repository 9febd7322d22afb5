"""
Error taxonomy for the ingestion pipeline.
"""

from typing import Any, Dict, List, Optional


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class ParseError(PipelineError):
    """Raw CSV text could not be turned into a grid of cells."""


class StructuralError(PipelineError):
    """The parsed grid is missing headers, data or required columns."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class RowValidationError(PipelineError):
    """A single row failed semantic validation."""

    def __init__(self, line: int, message: str):
        super().__init__(f"Row {line}: {message}")
        self.line = line


class AllRowsInvalidError(PipelineError):
    """Every row of a chunk failed validation."""

    def __init__(self, messages: List[str]):
        super().__init__(f"All rows failed validation: {'; '.join(messages)}")
        self.messages = messages


class StoreError(PipelineError):
    """The relational store rejected an operation."""


class ConstraintViolationError(StoreError):
    """A uniqueness or foreign-key constraint was violated."""


class NotFoundError(StoreError):
    """A referenced record does not exist."""


class QueueDeliveryFailure(PipelineError):
    """A job handler raised; the queue will retry per its policy."""
