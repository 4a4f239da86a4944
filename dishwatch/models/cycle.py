"""Per-camera cycle state snapshot"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from .events import Phase


class CycleState(BaseModel):
    """
    Checkpointed state of one camera's dishwasher state machine

    The phase is a plain tag; all behaviour lives in the classifier's pure
    transition functions. ``sequence`` is the last emitted sequence number.
    ``seen_events`` maps recently seen upstream event ids to whether the event
    had ended when it was folded (insertion ordered, oldest first).
    """

    camera_id: str
    user_id: str
    phase: Phase = Phase.IDLE
    last_transition_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    cycle_started_at: Optional[datetime] = None
    quiet_seconds: float = 0.0
    active_seconds: float = 0.0
    sequence: int = 0
    seen_events: dict[str, bool] = Field(default_factory=dict)

    @classmethod
    def initial(cls, camera_id: str, user_id: str) -> "CycleState":
        """Fresh state for a newly monitored camera"""
        return cls(camera_id=camera_id, user_id=user_id)
