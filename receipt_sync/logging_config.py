# Logging configuration - rotating file, console, and an error alert hook

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Callable

from .config import LoggingSettings

# Default log directory (project root / logs)
LOG_DIR = Path(__file__).resolve().parent.parent / "logs"
LOG_FILE = LOG_DIR / "receipt_sync.log"
LOG_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
LOG_BACKUP_COUNT = 5
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Chatty third-party loggers kept at WARNING unless debugging
QUIET_LOGGERS = ("urllib3", "sqlalchemy.engine")


class ErrorAlertHandler(logging.Handler):
    """Forwards ERROR and CRITICAL records to a callback(message, level)."""

    def __init__(self, callback: Callable[[str, str], None]):
        super().__init__(level=logging.ERROR)
        self.callback = callback

    def emit(self, record: logging.LogRecord):
        try:
            self.callback(self.format(record), record.levelname)
        except Exception:
            self.handleError(record)


def setup_logging(
    settings: Optional[LoggingSettings] = None,
    alert_callback: Optional[Callable[[str, str], None]] = None,
    max_bytes: int = LOG_MAX_BYTES,
    backup_count: int = LOG_BACKUP_COUNT,
) -> Path:
    """
    Configure root logging for the agent and return the log file path.

    Safe to call more than once: previously installed handlers are replaced.
    """
    settings = settings or LoggingSettings()
    log_path = Path(settings.log_path) if settings.log_path else LOG_FILE
    log_path.parent.mkdir(parents=True, exist_ok=True)
    level = logging.DEBUG if settings.debug else logging.INFO

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    if settings.console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

    if alert_callback:
        alert_handler = ErrorAlertHandler(alert_callback)
        alert_handler.setFormatter(formatter)
        root.addHandler(alert_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if settings.debug else logging.WARNING)

    return log_path
