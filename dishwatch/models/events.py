"""Event data models"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import ClassificationError


def utc_now() -> datetime:
    """Get current datetime in UTC"""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class EventKind(str, Enum):
    """Upstream event classification"""
    MOTION = "motion"
    SOUND = "sound"
    PERSON = "person"
    UNKNOWN = "unknown"


class Phase(str, Enum):
    """Dishwasher lifecycle phase"""
    IDLE = "Idle"
    RUNNING = "Running"
    FINISHING = "Finishing"
    COMPLETE_PENDING_CONFIRM = "CompletePendingConfirm"


class RawEvent(BaseModel):
    """Upstream camera event, immutable once received"""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    event_id: str = Field(alias="eventId", min_length=1)
    camera_id: str = Field(alias="deviceId", min_length=1)
    kind: EventKind = Field(alias="eventType")
    start: datetime = Field(alias="startTime")
    end: Optional[datetime] = Field(default=None, alias="endTime")

    @field_validator("kind", mode="before")
    @classmethod
    def _normalize_kind(cls, value: Any) -> EventKind:
        if isinstance(value, EventKind):
            return value
        if not isinstance(value, str):
            raise ValueError("eventType must be a string")
        try:
            return EventKind(value.strip().lower())
        except ValueError:
            return EventKind.UNKNOWN

    @field_validator("start", "end")
    @classmethod
    def _to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _check_bounds(self) -> "RawEvent":
        if self.end is not None and self.end < self.start:
            raise ValueError("endTime precedes startTime")
        return self

    @classmethod
    def from_payload(cls, payload: Any, camera_id: str) -> "RawEvent":
        """
        Parse an upstream event payload

        Args:
            payload: Event dict as returned by the events endpoint
            camera_id: Camera the events were fetched for (used when the
                payload omits deviceId)

        Raises:
            ClassificationError: If the payload is malformed
        """
        if not isinstance(payload, dict):
            raise ClassificationError(payload, "payload is not an object")

        data = dict(payload)
        data.setdefault("deviceId", camera_id)

        try:
            event = cls.model_validate(data)
        except ValidationError as e:
            raise ClassificationError(payload, str(e)) from e

        if event.camera_id != camera_id:
            raise ClassificationError(
                payload, f"event belongs to {event.camera_id}, not {camera_id}"
            )
        return event

    def duration_seconds(self, observed_at: datetime) -> float:
        """Duration of the event, measured up to observed_at while still ongoing"""
        end = self.end if self.end is not None else observed_at
        return max((end - self.start).total_seconds(), 0.0)


class Transition(BaseModel):
    """A confirmed dishwasher phase change, never revised once emitted"""

    model_config = ConfigDict(frozen=True)

    camera_id: str
    user_id: str
    from_phase: Phase
    to_phase: Phase
    timestamp: datetime
    sequence: int

    @property
    def key(self) -> str:
        """Durable queue key, unique per camera and sequence number"""
        return f"{self.camera_id}:{self.sequence:012d}"

    def to_payload(self) -> dict:
        """Convert to JSON-serializable notifier payload"""
        return {"event": "dishwasher_transition", **self.model_dump(mode="json")}
