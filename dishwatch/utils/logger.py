"""Logging configuration"""

import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ("aiohttp.access", "uvicorn.access")


def setup_logger(
    name: str = "dishwatch",
    level: str = "INFO",
    log_format: Optional[str] = None,
    log_file: Optional[str] = None,
    max_size_mb: int = 100,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Configure application logger

    Args:
        name: Logger name ("" for the root logger)
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log message format
        log_file: Path to log file (if None, only console logging)
        max_size_mb: Maximum log file size before rotation
        backup_count: Number of backup files to keep

    Returns:
        Configured logger instance
    """
    log_level = getattr(logging, level.upper())
    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    logger.handlers.clear()

    if log_format is None:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    formatter = logging.Formatter(log_format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if log_level > logging.DEBUG:
        for noisy in NOISY_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)

    return logger


class CameraLogAdapter(logging.LoggerAdapter):
    """Prefixes every message with the camera it concerns"""

    def process(self, msg, kwargs):
        return f"[{self.extra['camera_id']}] {msg}", kwargs


def get_camera_logger(name: str, camera_id: str) -> CameraLogAdapter:
    """
    Get a logger scoped to one camera

    Args:
        name: Logger name
        camera_id: Upstream camera identifier

    Returns:
        Logger adapter that tags messages with the camera id
    """
    return CameraLogAdapter(logging.getLogger(name), {"camera_id": camera_id})
