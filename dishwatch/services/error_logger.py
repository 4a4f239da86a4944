"""Failure history per camera and user"""

import logging
import traceback
from collections import Counter, deque
from typing import Optional, Dict, Any, TYPE_CHECKING

from ..models.errors import ErrorLog

if TYPE_CHECKING:
    from .notifier import WebhookNotifier

logger = logging.getLogger(__name__)


class ErrorLogger:
    """
    Records failed polls, refreshes and deliveries

    Keeps a bounded history (exposed on /errors, filterable by camera or user)
    and a streak of consecutive failures per camera that a successful poll
    resets. Each failure can optionally be forwarded to the notifier webhook.
    """

    def __init__(
        self,
        notifier: Optional["WebhookNotifier"] = None,
        keep_in_memory: int = 100,
        send_to_webhook: bool = False,
    ):
        """
        Initialize error logger

        Args:
            notifier: WebhookNotifier instance
            keep_in_memory: Number of errors to keep in memory
            send_to_webhook: Whether to forward errors to the webhook
        """
        self.notifier = notifier
        self.send_to_webhook = send_to_webhook
        self.error_history: deque[ErrorLog] = deque(maxlen=keep_in_memory)
        self.consecutive_failures: Counter[str] = Counter()

    async def record_failure(
        self,
        operation: str,
        error: BaseException,
        camera_id: Optional[str] = None,
        user_id: Optional[str] = None,
        attempts: int = 1,
        context: Optional[Dict[str, Any]] = None,
    ) -> ErrorLog:
        """
        Record a failed operation

        Args:
            operation: Name of failed operation (e.g., "poll_camera")
            error: The exception that occurred
            camera_id: Camera the operation was for, if any
            user_id: Owning user, if known
            attempts: Number of attempts made
            context: Additional details (sequence, collaborator, ...)
        """
        error_log = ErrorLog(
            operation=operation,
            error_type=type(error).__name__,
            error_message=str(error),
            retry_count=attempts,
            camera_id=camera_id,
            user_id=user_id,
            context=context or {},
            traceback="".join(traceback.format_exception(type(error), error, error.__traceback__)),
        )

        self.error_history.append(error_log)
        if camera_id is not None:
            self.consecutive_failures[camera_id] += 1

        logger.error(
            f"❌ {operation} failed after {attempts} attempt(s)"
            f"{f' for {camera_id}' if camera_id else ''}: {error}",
            extra={
                "operation": operation,
                "error_type": error_log.error_type,
                "camera_id": camera_id,
                "user_id": user_id,
            },
        )

        if self.send_to_webhook and self.notifier:
            try:
                await self.notifier.send(error_log.to_webhook_payload())
            except Exception as e:
                # Last resort: only log locally if the webhook is unreachable
                logger.critical(f"❌ Failed to send error log to webhook: {e}")

        return error_log

    def record_success(self, camera_id: str) -> None:
        """End a camera's failure streak"""
        if self.consecutive_failures.pop(camera_id, 0):
            logger.info(f"✅ {camera_id} recovered")

    def failing_cameras(self) -> dict[str, int]:
        """Cameras whose last poll failed, with their streak length"""
        return dict(self.consecutive_failures)

    def get_recent_errors(
        self,
        limit: int = 10,
        camera_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> list[dict]:
        """
        Get recent errors, newest last

        Args:
            limit: Maximum number of errors to return
            camera_id: Only errors for this camera
            user_id: Only errors for this user
        """
        errors = [
            error for error in self.error_history
            if (camera_id is None or error.camera_id == camera_id)
            and (user_id is None or error.user_id == user_id)
        ]
        return [error.model_dump(mode="json") for error in errors[-limit:]]
