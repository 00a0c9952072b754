"""
Logging utility module for mongosync.

Provides plain-text operator output or JSON-structured logging, with a run ID
propagated through a context variable so every line of one run can be correlated.
"""

import json
import logging
import uuid
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from contextvars import ContextVar

# Context variable for run ID propagation
_run_id: ContextVar[Optional[str]] = ContextVar('run_id', default=None)

# Attributes present on every LogRecord; anything else came in through ``extra=``
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {'message', 'asctime'}

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def get_run_id() -> Optional[str]:
    """Get the current run ID from context.

    Returns:
        Current run ID or None if not set
    """
    return _run_id.get()


def set_run_id(run_id: Optional[str] = None) -> str:
    """Set run ID in context.

    Args:
        run_id: Optional run ID. If None, generates a new UUID.

    Returns:
        The run ID that was set
    """
    if run_id is None:
        run_id = str(uuid.uuid4())
    _run_id.set(run_id)
    return run_id


def clear_run_id():
    """Clear the run ID from context."""
    _run_id.set(None)


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and not key.startswith('_')
    }


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON-formatted log string
        """
        log_data: Dict[str, Any] = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        run_id = get_run_id()
        if run_id:
            log_data['run_id'] = run_id

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        log_data.update(_extra_fields(record))

        return json.dumps(log_data, default=str)


def configure_logging(level: str = "INFO", fmt: str = "text") -> logging.Handler:
    """Install a single stream handler on the root logger.

    Args:
        level: Logging level name
        fmt: ``text`` for operator lines, ``json`` for structured output

    Returns:
        The installed handler
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root.addHandler(handler)
    root.setLevel(level.upper())

    # pymongo is chatty at DEBUG
    logging.getLogger("pymongo").setLevel(max(root.level, logging.INFO))
    return handler
