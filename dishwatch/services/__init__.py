"""Service modules"""

from .state_store import StateStore, JsonFileStore, MemoryStore
from .token_vault import TokenVault
from .camera_registry import CameraRegistry
from .event_classifier import EventClassifier, Thresholds
from .poll_scheduler import PollScheduler
from .transition_bus import TransitionBus
from .notifier import WebhookNotifier
from .error_logger import ErrorLogger

__all__ = [
    "StateStore",
    "JsonFileStore",
    "MemoryStore",
    "TokenVault",
    "CameraRegistry",
    "EventClassifier",
    "Thresholds",
    "PollScheduler",
    "TransitionBus",
    "WebhookNotifier",
    "ErrorLogger",
]
