import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from beacon.core.config import settings
from beacon.core.logging_buffer import logging_buffer

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_THIRD_PARTY_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi", "aiogram")


class JournalHandler(logging.Handler):
    """Mirrors error records from ``beacon.*`` into the admin log journal."""

    def __init__(self, level: int = logging.ERROR):
        super().__init__(level)
        self.addFilter(logging.Filter("beacon"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            details = {"logger": record.name}
            if record.exc_info:
                details["traceback"] = logging.Formatter().formatException(record.exc_info)
            logging_buffer.add("error", record.getMessage(), details)
        except Exception:
            self.handleError(record)


def _get_log_level() -> int:
    level = (settings.LOG_LEVEL or "INFO").strip().upper()
    return getattr(logging, level, logging.INFO)


def _file_handler(formatter: logging.Formatter) -> logging.Handler | None:
    try:
        log_dir = Path(settings.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = TimedRotatingFileHandler(
            filename=str(log_dir / settings.LOG_FILE_NAME),
            when=settings.LOG_FILE_ROTATION_WHEN,
            interval=settings.LOG_FILE_ROTATION_INTERVAL,
            backupCount=settings.LOG_FILE_RETENTION_DAYS,
            encoding="utf-8",
            utc=True,
        )
    except OSError as exc:
        logging.getLogger(__name__).warning("File logging disabled (%s): %s", settings.LOG_DIR, exc)
        return None
    handler.setFormatter(formatter)
    return handler


def setup_logging() -> None:
    """Configure the root logger once per process (API and workers share it)."""
    root_logger = logging.getLogger()
    if getattr(root_logger, "_beacon_logging_configured", False):
        return

    log_level = _get_log_level()
    root_logger.setLevel(log_level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    file_handler = _file_handler(formatter)
    if file_handler is not None:
        root_logger.addHandler(file_handler)

    root_logger.addHandler(JournalHandler())

    for logger_name in _THIRD_PARTY_LOGGERS:
        logging.getLogger(logger_name).setLevel(log_level)

    root_logger._beacon_logging_configured = True
