"""Data models"""

from .events import EventKind, Phase, RawEvent, Transition, utc_now
from .cycle import CycleState
from .credentials import Credential, TokenResponse
from .camera import MonitoredCamera, DiscoveredCamera
from .errors import (
    ErrorLog,
    DishwatchError,
    AuthError,
    ReauthorizationRequired,
    TransientAuthFailure,
    InvalidOAuthState,
    MissingAuthorizationCode,
    OAuthRequestError,
    UpstreamError,
    UpstreamUnauthorizedError,
    RateLimitedError,
    UpstreamServerError,
    CameraNotFoundError,
    ClassificationError,
    StorageError,
)

__all__ = [
    "EventKind",
    "Phase",
    "RawEvent",
    "Transition",
    "utc_now",
    "CycleState",
    "Credential",
    "TokenResponse",
    "MonitoredCamera",
    "DiscoveredCamera",
    "ErrorLog",
    "DishwatchError",
    "AuthError",
    "ReauthorizationRequired",
    "TransientAuthFailure",
    "InvalidOAuthState",
    "MissingAuthorizationCode",
    "OAuthRequestError",
    "UpstreamError",
    "UpstreamUnauthorizedError",
    "RateLimitedError",
    "UpstreamServerError",
    "CameraNotFoundError",
    "ClassificationError",
    "StorageError",
]
