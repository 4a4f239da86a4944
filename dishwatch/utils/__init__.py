"""Utility modules"""

from .config import load_config, AppConfig
from .logger import setup_logger, get_camera_logger
from .retry import retry_async, call_with_retry

__all__ = [
    "load_config",
    "AppConfig",
    "setup_logger",
    "get_camera_logger",
    "retry_async",
    "call_with_retry",
]
