"""
Sidecar logging

Every project module logs through ``get_logger(__name__)``: a
non-propagating logger writing to stdout, to the rotating sidecar log
and, for errors only, to ``errors.log`` in ``settings.log_dir``.
"""
import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from config import settings

CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

ERROR_LOG = "errors.log"


def _rotating_handler(path: Path, level: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path,
        maxBytes=settings.log_file_max_bytes,
        backupCount=settings.log_file_backup_count
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def get_logger(name: str) -> logging.Logger:
    """Get the sidecar logger for a module, attaching handlers on first use"""
    logger = logging.getLogger(name)
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logger.setLevel(log_level)

    if logger.handlers:
        return logger

    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))

    logger.addHandler(console_handler)
    # Files always get debug output, whatever the console level
    logger.addHandler(_rotating_handler(log_dir / settings.log_file, logging.DEBUG))
    logger.addHandler(_rotating_handler(log_dir / ERROR_LOG, logging.ERROR))

    logger.propagate = False

    return logger


def configure_root_logger():
    """Send third-party warnings (aiohttp, apscheduler, uvicorn) to stdout"""
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.WARNING)

    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        root_logger.addHandler(handler)


configure_root_logger()
