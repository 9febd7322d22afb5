"""
Structured logging configuration for the backer import pipeline.

Entry points call ``setup_logging()`` once at start-up. Library modules log
through ``logging.getLogger(__name__)``; those records and structlog events
share one renderer, so both come out as JSON (or console text) with the
job context bound by the worker.
"""

import os
import logging
import logging.handlers
from datetime import datetime
from typing import Any, Dict

import structlog

SERVICE_NAME = 'pledgeflow'


def _add_service(logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    event_dict.setdefault('service', SERVICE_NAME)
    return event_dict


def _renderer(log_format: str):
    if log_format.lower() == 'json':
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True)


def setup_logging(log_level: str = None, log_format: str = None, log_file: str = None) -> None:
    """Configure stdlib logging and structlog for the process."""
    log_level = (log_level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    log_format = log_format or os.getenv('LOG_FORMAT', 'json')
    log_file = log_file or os.getenv('LOG_FILE')
    level = getattr(logging, log_level, logging.INFO)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_service,
    ]

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            _renderer(log_format),
        ],
    )

    handlers = [logging.StreamHandler()]
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5
        ))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(level)
        root_logger.addHandler(handler)
    root_logger.setLevel(level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.get_logger(__name__).info(
        "Logging initialized",
        log_level=log_level,
        log_format=log_format,
        log_file=log_file or "console"
    )


def get_logger(**context):
    """structlog logger with ``context`` bound to every event."""
    return structlog.get_logger(SERVICE_NAME).bind(**context)


class OperationLogger:
    """Context manager logging the start, end and duration of an operation."""

    def __init__(self, operation_name: str, **context):
        self.operation_name = operation_name
        self.context = context
        self.start_time = None
        self.logger = get_logger(operation=operation_name, **context)

    def __enter__(self):
        self.start_time = datetime.now()
        self.logger.info(f"Operation started: {self.operation_name}")
        return self.logger

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = (datetime.now() - self.start_time).total_seconds()

        if exc_type is None:
            self.logger.info(
                f"Operation completed: {self.operation_name}",
                duration_seconds=duration
            )
        else:
            self.logger.error(
                f"Operation failed: {self.operation_name}",
                duration_seconds=duration,
                error_type=exc_type.__name__,
                error_message=str(exc_val)
            )

        return False
