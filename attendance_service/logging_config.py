"""
Logging configuration for Attendance Service.

Every record carries the scanning session it belongs to and a local
timestamp, so log lines can be lined up with recorded attendance events.
"""

import logging
import sys
from typing import Iterable, Optional

LOG_FORMAT = '%(asctime)s [%(levelname)s] [session=%(session_id)s] %(name)s: %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Operator UI polls /status and the backend store keeps a connection pool;
# both log every request at INFO.
NOISY_LOGGERS = ('werkzeug', 'urllib3')

_session_filter: Optional['SessionContextFilter'] = None


class SessionContextFilter(logging.Filter):
    """Add scanning session context to log records."""

    def __init__(self, session_id: str):
        super().__init__()
        self.session_id = session_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = self.session_id
        return True


def setup_logging(
    session_id: str,
    debug: bool = False,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> SessionContextFilter:
    """
    Configure logging for the service.

    Args:
        session_id: Session (camera) identifier for log context
        debug: Enable debug level logging
        quiet: Third-party loggers capped at WARNING

    Returns:
        The installed session filter
    """
    global _session_filter

    level = logging.DEBUG if debug else logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    _session_filter = SessionContextFilter(session_id)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    console_handler.addFilter(_session_filter)
    root_logger.addHandler(console_handler)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)

    return _session_filter


def bind_session(session_id: str) -> None:
    """Tag subsequent log records with a new session id."""
    if _session_filter is not None and _session_filter.session_id != session_id:
        logging.getLogger(__name__).debug(
            f'Log session {_session_filter.session_id} -> {session_id}'
        )
        _session_filter.session_id = session_id


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
