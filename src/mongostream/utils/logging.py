"""
Logging utility module for mongostream.

JSON-structured log lines tagged with the id of the connector that emitted
them, so interleaved output from several connectors in one process can be
told apart.
"""

import json
import logging
import uuid
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from contextvars import ContextVar

# Attributes every LogRecord carries; anything else came in through `extra=`
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime"}

_connector_id: ContextVar[Optional[str]] = ContextVar('connector_id', default=None)


def get_connector_id() -> Optional[str]:
    """Return the connector id bound to the current context, if any."""
    return _connector_id.get()


def set_connector_id(connector_id: Optional[str] = None) -> str:
    """Bind a connector id to the current context.

    Args:
        connector_id: Id to bind. A new UUID is generated when None.

    Returns:
        The id that was bound
    """
    if connector_id is None:
        connector_id = str(uuid.uuid4())
    _connector_id.set(connector_id)
    return connector_id


def clear_connector_id() -> None:
    _connector_id.set(None)


class JSONFormatter(logging.Formatter):
    """Render each record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'thread': record.threadName,
        }

        connector_id = get_connector_id()
        if connector_id:
            log_data['connector_id'] = connector_id

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith('_'):
                log_data[key] = value

        return json.dumps(log_data, default=str)


def get_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Get a JSON logger.

    Handlers are attached once per logger name; repeated calls return the
    already configured instance.

    Args:
        name: Logger name (typically __name__)
        level: Logging level (default: INFO)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    logger.setLevel(level)

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())

    logger.addHandler(handler)
    logger.propagate = False

    return logger


class ConnectorLogContext:
    """Context manager binding a connector id to log records.

    The id lives in a ContextVar, which new threads do not inherit, so the
    pump thread enters its own context on start.
    """

    def __init__(self, connector_id: Optional[str] = None):
        self.connector_id = connector_id
        self._previous_id: Optional[str] = None

    def __enter__(self) -> str:
        self._previous_id = get_connector_id()
        return set_connector_id(self.connector_id)

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._previous_id is not None:
            set_connector_id(self._previous_id)
        else:
            clear_connector_id()


def set_log_level(level, prefix: str = "mongostream") -> None:
    """Apply `level` to every configured logger under `prefix` and its handlers."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    for name, logger in logging.root.manager.loggerDict.items():
        if not isinstance(logger, logging.Logger):
            continue
        if name == prefix or name.startswith(prefix + "."):
            logger.setLevel(level)
            for handler in logger.handlers:
                handler.setLevel(level)
