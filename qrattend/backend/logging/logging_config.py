import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from ..config.config import settings

LOG_FORMAT = "%(asctime)s - [%(name)s] - %(levelname)s - %(message)s"
LOG_FILE_NAME = "qrattend.log"
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 5


def _file_handler(log_dir: Path) -> logging.Handler:
    log_dir.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        log_dir / LOG_FILE_NAME,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS
    )


def setup_logging():
    """
    Sends every logger of the process to stdout and to a size-rotated file
    under ``settings.LOG_DIR``, at ``settings.LOG_LEVEL``.
    """
    root = logging.getLogger()
    root.setLevel(settings.LOG_LEVEL.upper())
    root.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in (logging.StreamHandler(sys.stdout), _file_handler(Path(settings.LOG_DIR))):
        handler.setFormatter(formatter)
        root.addHandler(handler)

    # uvicorn installs its own access/error handlers; route them through root.
    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True
