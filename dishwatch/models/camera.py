"""Camera models"""

from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field

from .events import utc_now


class MonitoredCamera(BaseModel):
    """A camera a user has opted to watch"""
    camera_id: str
    user_id: str
    monitoring_enabled: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    display_name: Optional[str] = None
    event_cursor: Optional[str] = None
    next_poll_at: Optional[datetime] = None
    degraded: bool = False

    def __hash__(self) -> int:
        return hash(self.camera_id)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MonitoredCamera):
            return NotImplemented
        return self.camera_id == other.camera_id and self.user_id == other.user_id


class DiscoveredCamera(BaseModel):
    """Device reported by the upstream camera-listing endpoint"""
    name: str
    device_id: str
    type_name: str
    traits: list[str] = Field(default_factory=list)
    room_name: Optional[str] = None
    display_name: str

    @classmethod
    def from_upstream(cls, device: dict[str, Any]) -> "DiscoveredCamera":
        """
        Convert an upstream device record

        Device names are full paths ("enterprises/<project>/devices/<id>");
        the id is the last path segment.
        """
        name = device["name"]
        device_id = name.rsplit("/", 1)[-1]
        traits: dict = device.get("traits") or {}

        info = traits.get("sdm.devices.traits.Info") or traits.get("info") or {}
        display_name = info.get("customName") or device_id

        room_name = None
        for relation in device.get("parentRelations") or []:
            if relation.get("relationshipType", "ROOM") == "ROOM" and relation.get("displayName"):
                room_name = relation["displayName"]
                break

        return cls(
            name=name,
            device_id=device_id,
            type_name=device.get("type", ""),
            traits=list(traits.keys()),
            room_name=room_name,
            display_name=display_name,
        )

    @property
    def is_camera(self) -> bool:
        """Camera-type devices or devices exposing a camera trait"""
        if "camera" in self.type_name.lower():
            return True
        return any("camera" in trait.lower() for trait in self.traits)
