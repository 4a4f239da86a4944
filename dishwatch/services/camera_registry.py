"""Camera registry service - which cameras belong to whom and which are monitored"""

import logging
import asyncio
from datetime import datetime
from typing import Optional

from ..models.camera import MonitoredCamera
from ..models.cycle import CycleState
from ..models.events import utc_now
from .state_store import StateStore

logger = logging.getLogger(__name__)


class CameraOwnershipError(ValueError):
    """Camera is already registered to another user"""


class CameraRegistry:
    """
    Registry of monitored cameras

    Gates which cameras the poll scheduler may poll. Persists changes to the
    state store on every user-visible update; poll scheduling times are kept
    in memory only.
    """

    def __init__(self, store: StateStore):
        """
        Initialize camera registry

        Args:
            store: StateStore for registry and cycle state persistence
        """
        self.store = store
        self.cameras: dict[str, MonitoredCamera] = {}
        self._lock = asyncio.Lock()

    async def load(self) -> None:
        """Load the registry from the state store"""
        async with self._lock:
            cameras = await self.store.load_cameras()
            self.cameras = {camera.camera_id: camera for camera in cameras}
            # Due immediately after a restart
            for camera in self.cameras.values():
                camera.next_poll_at = None

        logger.info(f"✅ Loaded {len(self.cameras)} cameras from registry")

    async def save(self) -> None:
        """Persist the registry"""
        async with self._lock:
            snapshot = [camera.model_copy() for camera in self.cameras.values()]
        if await self.store.save_cameras(snapshot):
            logger.debug(f"Saved camera registry ({len(snapshot)} cameras)")

    async def get_camera(self, camera_id: str) -> Optional[MonitoredCamera]:
        """Get a copy of a camera record"""
        async with self._lock:
            camera = self.cameras.get(camera_id)
            return camera.model_copy() if camera else None

    async def list_cameras(self, user_id: str) -> list[MonitoredCamera]:
        """All cameras registered by a user, monitored or paused"""
        async with self._lock:
            return [c.model_copy() for c in self.cameras.values() if c.user_id == user_id]

    async def list_monitored(self, user_id: str) -> set[MonitoredCamera]:
        """Cameras the user currently monitors"""
        async with self._lock:
            return {
                c.model_copy()
                for c in self.cameras.values()
                if c.user_id == user_id and c.monitoring_enabled
            }

    async def is_monitored(self, camera_id: str) -> bool:
        async with self._lock:
            camera = self.cameras.get(camera_id)
            return bool(camera and camera.monitoring_enabled)

    async def set_monitoring(
        self,
        user_id: str,
        camera_id: str,
        enabled: bool,
        display_name: Optional[str] = None,
    ) -> MonitoredCamera:
        """
        Enable or pause monitoring for a camera

        Enabling a camera with no cycle state creates a fresh Idle state.
        Pausing keeps the cycle state and transition history untouched.

        Raises:
            CameraOwnershipError: If the camera belongs to another user
        """
        async with self._lock:
            camera = self.cameras.get(camera_id)
            if camera is not None and camera.user_id != user_id:
                raise CameraOwnershipError(f"Camera {camera_id} is registered to another user")

            if camera is None:
                camera = MonitoredCamera(
                    camera_id=camera_id,
                    user_id=user_id,
                    monitoring_enabled=enabled,
                    display_name=display_name,
                )
                self.cameras[camera_id] = camera
                logger.info(f"📷 Registered camera {camera_id} for {user_id}")
            else:
                old = camera.monitoring_enabled
                camera.monitoring_enabled = enabled
                if display_name:
                    camera.display_name = display_name
                if old != enabled:
                    logger.info(f"Camera {camera_id} monitoring: {old} → {enabled}")

            # Poll right away when (re)enabled; nothing scheduled while paused
            camera.next_poll_at = None
            result = camera.model_copy()

        if enabled and await self.store.load_cycle_state(camera_id) is None:
            await self.store.save_cycle_state(CycleState.initial(camera_id, user_id))
            logger.info(f"Created Idle cycle state for {camera_id}")

        await self.save()
        return result

    async def cameras_due_for_poll(self, now: Optional[datetime] = None) -> list[tuple[str, str]]:
        """
        Cameras that should be polled now

        Returns:
            (user_id, camera_id) pairs, most overdue first
        """
        now = now or utc_now()
        async with self._lock:
            due = [
                c for c in self.cameras.values()
                if c.monitoring_enabled
                and not c.degraded
                and (c.next_poll_at is None or c.next_poll_at <= now)
            ]
        due.sort(key=lambda c: (c.next_poll_at is not None, c.next_poll_at or now, c.camera_id))
        return [(c.user_id, c.camera_id) for c in due]

    async def schedule_next(self, camera_id: str, at: datetime) -> None:
        """Set the next poll time (in memory only)"""
        async with self._lock:
            camera = self.cameras.get(camera_id)
            if camera is not None:
                camera.next_poll_at = at

    async def update_cursor(self, camera_id: str, cursor: Optional[str]) -> None:
        """Remember the upstream event cursor for a camera"""
        async with self._lock:
            camera = self.cameras.get(camera_id)
            if camera is None or camera.event_cursor == cursor:
                return
            camera.event_cursor = cursor

        await self.save()

    async def mark_user_degraded(self, user_id: str, degraded: bool) -> int:
        """
        Pause (or resume) polling for every camera of a user

        Returns:
            Number of cameras whose flag changed
        """
        changed = 0
        async with self._lock:
            for camera in self.cameras.values():
                if camera.user_id == user_id and camera.degraded != degraded:
                    camera.degraded = degraded
                    camera.next_poll_at = None
                    changed += 1

        if changed:
            state = "degraded (polling paused)" if degraded else "restored"
            logger.warning(f"User {user_id}: {changed} cameras {state}")
            await self.save()
        return changed

    async def user_status(self, user_id: str) -> dict:
        """Status summary surfaced to the UI collaborator"""
        async with self._lock:
            cameras = [c for c in self.cameras.values() if c.user_id == user_id]
            return {
                "user_id": user_id,
                "total_cameras": len(cameras),
                "monitored_cameras": len([c for c in cameras if c.monitoring_enabled]),
                "degraded": any(c.degraded for c in cameras),
            }
