"""Upstream camera API client (device listing and event feed)"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import aiohttp

from ..models.camera import DiscoveredCamera
from ..models.errors import (
    CameraNotFoundError,
    RateLimitedError,
    UpstreamServerError,
    UpstreamUnauthorizedError,
)
from ..utils.config import CameraApiConfig

logger = logging.getLogger(__name__)


@dataclass
class EventPage:
    """One events-since(cursor) response"""
    events: list[dict[str, Any]] = field(default_factory=list)
    next_cursor: Optional[str] = None


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds; HTTP dates are ignored"""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


class CameraApiClient:
    """
    Thin aiohttp client for the camera provider

    Maps HTTP failures onto the UpstreamError hierarchy:
    401 → UpstreamUnauthorizedError, 404 → CameraNotFoundError,
    429 → RateLimitedError, anything else non-2xx → UpstreamServerError.
    """

    def __init__(self, config: CameraApiConfig):
        self.config = config
        self.timeout = aiohttp.ClientTimeout(total=config.timeout_seconds)

    @property
    def _project_url(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/enterprises/{self.config.project_id}"

    async def list_cameras(self, access_token: str) -> list[DiscoveredCamera]:
        """
        Discover the user's devices and keep only cameras

        Args:
            access_token: Valid OAuth2 access token

        Returns:
            Camera devices
        """
        payload = await self._get(f"{self._project_url}/devices", access_token, camera_id=None)
        devices = [DiscoveredCamera.from_upstream(d) for d in payload.get("devices") or []]
        cameras = [d for d in devices if d.is_camera]
        logger.info(f"Discovered {len(cameras)} cameras out of {len(devices)} devices")
        return cameras

    async def fetch_events(
        self,
        access_token: str,
        camera_id: str,
        cursor: Optional[str] = None,
    ) -> EventPage:
        """
        Fetch events newer than ``cursor``

        Args:
            access_token: Valid OAuth2 access token
            camera_id: Upstream camera identifier
            cursor: Cursor returned by the previous call (None for latest window)

        Returns:
            EventPage with raw event payloads and the next cursor
        """
        params = {"since": cursor} if cursor else None
        payload = await self._get(
            f"{self._project_url}/devices/{camera_id}/events",
            access_token,
            camera_id=camera_id,
            params=params,
        )

        events = payload.get("events") or []
        if not isinstance(events, list):
            raise UpstreamServerError(camera_id, "Malformed events response: 'events' is not a list")

        return EventPage(events=events, next_cursor=payload.get("nextCursor") or cursor)

    async def _get(
        self,
        url: str,
        access_token: str,
        camera_id: Optional[str],
        params: Optional[dict] = None,
    ) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {access_token}"}

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.get(url, headers=headers, params=params) as resp:
                if resp.status == 200:
                    payload = await resp.json()
                    if not isinstance(payload, dict):
                        raise UpstreamServerError(camera_id, "Malformed response: expected an object", 200)
                    return payload

                body = await resp.text()
                if resp.status == 401:
                    raise UpstreamUnauthorizedError(camera_id, "Access token rejected", 401)
                if resp.status == 404:
                    raise CameraNotFoundError(camera_id, f"Camera not found: {camera_id}", 404)
                if resp.status == 429:
                    raise RateLimitedError(camera_id, parse_retry_after(resp.headers.get("Retry-After")))

                raise UpstreamServerError(
                    camera_id, f"Upstream returned HTTP {resp.status}: {body[:200]}", resp.status
                )
