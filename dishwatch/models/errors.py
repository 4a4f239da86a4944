"""Error taxonomy and error logging models"""

from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, Field


class DishwatchError(Exception):
    """Base class for all engine errors"""


# --- Authentication -------------------------------------------------------

class AuthError(DishwatchError):
    """Credential could not be obtained or refreshed"""

    def __init__(self, user_id: str, message: str):
        super().__init__(f"{message} (user={user_id})")
        self.user_id = user_id


class ReauthorizationRequired(AuthError):
    """Refresh token is missing, revoked or invalid; the user must re-grant access"""


class TransientAuthFailure(AuthError):
    """Refresh failed for a retryable reason (network, timeout, 5xx)"""


class InvalidOAuthState(DishwatchError):
    """OAuth callback state does not match a pending authorization (possible CSRF)"""


class MissingAuthorizationCode(DishwatchError):
    """OAuth callback arrived without an authorization code"""


class OAuthRequestError(DishwatchError):
    """Token endpoint rejected a request"""

    def __init__(self, status: int, body: str, transient: bool):
        super().__init__(f"Token endpoint returned HTTP {status}: {body}")
        self.status = status
        self.body = body
        self.transient = transient


# --- Upstream camera API --------------------------------------------------

class UpstreamError(DishwatchError):
    """Upstream camera API request failed"""

    def __init__(self, camera_id: Optional[str], message: str, status: Optional[int] = None):
        super().__init__(message)
        self.camera_id = camera_id
        self.status = status


class UpstreamUnauthorizedError(UpstreamError):
    """Upstream rejected the access token (HTTP 401)"""


class RateLimitedError(UpstreamError):
    """Upstream quota exceeded (HTTP 429)"""

    def __init__(self, camera_id: Optional[str], retry_after: Optional[float] = None):
        super().__init__(camera_id, f"Rate limited (retry_after={retry_after})", status=429)
        self.retry_after = retry_after


class UpstreamServerError(UpstreamError):
    """Upstream returned a 5xx or an unexpected status"""


class CameraNotFoundError(UpstreamError):
    """Camera no longer exists upstream (HTTP 404)"""


# --- Classification / storage ---------------------------------------------

class ClassificationError(DishwatchError):
    """A raw event payload could not be interpreted"""

    def __init__(self, payload: object, reason: str):
        super().__init__(f"Malformed event payload: {reason}")
        self.payload = payload
        self.reason = reason


class StorageError(DishwatchError):
    """Persistent store failed; checkpointing is halted"""


class ErrorLog(BaseModel):
    """Error log entry"""
    operation: str
    error_type: str
    error_message: str
    retry_count: int
    camera_id: Optional[str] = None
    user_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    context: dict = Field(default_factory=dict)
    traceback: Optional[str] = None

    def to_webhook_payload(self) -> dict:
        """Convert to notifier webhook payload"""
        return {
            "event": "system_error",
            "operation": self.operation,
            "error_type": self.error_type,
            "error_message": self.error_message,
            "retry_count": self.retry_count,
            "camera_id": self.camera_id,
            "user_id": self.user_id,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context,
            "traceback": self.traceback,
        }
