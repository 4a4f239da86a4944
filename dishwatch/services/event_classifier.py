"""Event classifier - folds raw camera events into dishwasher lifecycle transitions

State machine (one instance per camera):

    Idle ──activity──▶ Running ──quiet──▶ Finishing ──confirm──▶ CompletePendingConfirm ──▶ Idle
                          ▲                   │
                          └─────activity──────┘  (false end, corrective transition)

The transition functions below are pure: they take a CycleState and return a
new CycleState plus the transitions it produced. EventClassifier wraps them
with parsing, checkpointing and publishing.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Iterable, Iterator, Optional

from ..models.cycle import CycleState
from ..models.errors import ClassificationError
from ..models.events import EventKind, Phase, RawEvent, Transition
from ..utils.logger import get_camera_logger
from .state_store import StateStore

if TYPE_CHECKING:
    from .transition_bus import TransitionBus

logger = logging.getLogger(__name__)

ACTIVITY_KINDS = (EventKind.MOTION, EventKind.SOUND)

Step = tuple[CycleState, list[Transition]]


@dataclass(frozen=True)
class Thresholds:
    """Tunable durations of the state machine"""
    min_activity: timedelta = timedelta(seconds=10)
    quiet: timedelta = timedelta(minutes=5)
    confirm: timedelta = timedelta(minutes=15)
    dedup_window: int = 20

    @classmethod
    def from_config(cls, config) -> "Thresholds":
        return cls(
            min_activity=timedelta(seconds=config.min_activity_seconds),
            quiet=timedelta(seconds=config.quiet_threshold_seconds),
            confirm=timedelta(seconds=config.confirm_threshold_seconds),
            dedup_window=config.dedup_window,
        )


def _emit(state: CycleState, to_phase: Phase, at: datetime) -> Step:
    sequence = state.sequence + 1
    transition = Transition(
        camera_id=state.camera_id,
        user_id=state.user_id,
        from_phase=state.phase,
        to_phase=to_phase,
        timestamp=at,
        sequence=sequence,
    )
    new_state = state.model_copy(update={
        "phase": to_phase,
        "last_transition_at": at,
        "sequence": sequence,
    })
    return new_state, [transition]


def _remember(state: CycleState, event_id: str, ended: bool, window: int) -> CycleState:
    seen = dict(state.seen_events)
    seen.pop(event_id, None)
    seen[event_id] = ended
    while len(seen) > window:
        del seen[next(iter(seen))]
    return state.model_copy(update={"seen_events": seen})


def _quiet_since(state: CycleState, thresholds: Thresholds) -> Optional[datetime]:
    """Moment the quiet threshold was crossed after the last activity"""
    if state.last_activity_at is None:
        return state.last_transition_at if state.phase == Phase.FINISHING else None
    return state.last_activity_at + thresholds.quiet


def advance_clock(state: CycleState, now: datetime, thresholds: Thresholds) -> Step:
    """
    Apply the passage of time up to ``now``

    Running turns into Finishing once the quiet threshold has passed without
    activity. Finishing is confirmed once the confirm threshold has passed
    since the quiet threshold was crossed, emitting the completion and the
    reset to Idle together. Both checks run in the same step, so a late poll
    after a long silence still completes the cycle.
    """
    if state.last_transition_at is not None and now < state.last_transition_at:
        return state, []

    transitions: list[Transition] = []
    quiet_since = _quiet_since(state, thresholds)

    if state.phase in (Phase.RUNNING, Phase.FINISHING) and state.last_activity_at is not None:
        quiet = max((now - state.last_activity_at).total_seconds(), 0.0)
        state = state.model_copy(update={"quiet_seconds": quiet})

    if state.phase == Phase.RUNNING and quiet_since is not None and now >= quiet_since:
        state, emitted = _emit(state, Phase.FINISHING, now)
        transitions += emitted

    if (
        state.phase == Phase.FINISHING
        and quiet_since is not None
        and now - quiet_since >= thresholds.confirm
    ):
        state, emitted = _emit(state, Phase.COMPLETE_PENDING_CONFIRM, now)
        transitions += emitted
        state, emitted = _emit(state, Phase.IDLE, now)
        transitions += emitted
        state = state.model_copy(update={
            "last_activity_at": None,
            "cycle_started_at": None,
            "quiet_seconds": 0.0,
            "active_seconds": 0.0,
        })

    return state, transitions


def fold_event(
    state: CycleState,
    event: RawEvent,
    observed_at: datetime,
    thresholds: Thresholds,
) -> Step:
    """
    Fold one event into the state

    Args:
        state: Current cycle state
        event: Parsed upstream event
        observed_at: Poll time, used as the end of ongoing events
        thresholds: State machine thresholds

    Returns:
        New state and the transitions it produced (possibly none)
    """
    ended = event.end is not None
    previously = state.seen_events.get(event.event_id)

    if previously is True:
        return state, []

    activity_end = event.end if ended else observed_at
    duration = event.duration_seconds(observed_at)
    qualifies = (
        event.kind in ACTIVITY_KINDS
        and duration > thresholds.min_activity.total_seconds()
    )

    if previously is False:
        # Re-delivery of an event first seen while ongoing: refresh only
        if ended:
            state = _remember(state, event.event_id, True, thresholds.dedup_window)
        if qualifies and state.phase == Phase.RUNNING:
            state = _refresh_activity(state, activity_end, 0.0)
        return state, []

    if state.last_transition_at is not None and activity_end <= state.last_transition_at:
        # Activity that ended before the last transition can't change history
        return _remember(state, event.event_id, True, thresholds.dedup_window), []

    if not qualifies:
        if ended or event.kind not in ACTIVITY_KINDS:
            state = _remember(state, event.event_id, True, thresholds.dedup_window)
        # Ongoing activity that is still too short is re-evaluated next poll
        return state, []

    state = _remember(state, event.event_id, ended, thresholds.dedup_window)

    if state.phase in (Phase.IDLE, Phase.COMPLETE_PENDING_CONFIRM):
        state, transitions = _emit(state, Phase.RUNNING, activity_end)
        state = state.model_copy(update={
            "cycle_started_at": event.start,
            "last_activity_at": activity_end,
            "active_seconds": duration,
            "quiet_seconds": 0.0,
        })
        return state, transitions

    if state.phase == Phase.FINISHING:
        resumed_at = max(event.start, state.last_transition_at)
        state, transitions = _emit(state, Phase.RUNNING, resumed_at)
        return _refresh_activity(state, activity_end, duration), transitions

    return _refresh_activity(state, activity_end, duration), []


def _refresh_activity(state: CycleState, activity_end: datetime, duration: float) -> CycleState:
    last = state.last_activity_at
    if last is not None and last > activity_end:
        activity_end = last
    return state.model_copy(update={
        "last_activity_at": activity_end,
        "active_seconds": state.active_seconds + duration,
        "quiet_seconds": 0.0,
    })


def classify_steps(
    state: CycleState,
    events: Iterable[RawEvent],
    now: datetime,
    thresholds: Thresholds,
) -> Iterator[Step]:
    """
    Yield (state, transitions) after every step of a poll batch

    Events are reordered by start time; the clock is advanced to each event's
    start before the event is folded, and finally to ``now``.
    """
    for event in sorted(events, key=lambda e: (e.start, e.event_id)):
        state, transitions = advance_clock(state, min(event.start, now), thresholds)
        yield state, transitions
        state, transitions = fold_event(state, event, now, thresholds)
        yield state, transitions

    state, transitions = advance_clock(state, now, thresholds)
    yield state, transitions


def classify_batch(
    state: CycleState,
    events: Iterable[RawEvent],
    now: datetime,
    thresholds: Thresholds,
) -> Step:
    """Pure batch form of classify_steps"""
    emitted: list[Transition] = []
    for state, transitions in classify_steps(state, events, now, thresholds):
        emitted += transitions
    return state, emitted


class EventClassifier:
    """
    Single owner of one camera's CycleState

    Callers must not run ``process`` concurrently for the same camera (the
    poll scheduler holds a per-camera lock).
    """

    def __init__(
        self,
        state: CycleState,
        store: StateStore,
        bus: Optional["TransitionBus"] = None,
        thresholds: Optional[Thresholds] = None,
    ):
        self.state = state
        self.store = store
        self.bus = bus
        self.thresholds = thresholds or Thresholds()
        self.log = get_camera_logger(__name__, state.camera_id)

    @classmethod
    async def restore(
        cls,
        camera_id: str,
        user_id: str,
        store: StateStore,
        bus: Optional["TransitionBus"] = None,
        thresholds: Optional[Thresholds] = None,
    ) -> "EventClassifier":
        """Resume from the last checkpoint, or start Idle"""
        state = await store.load_cycle_state(camera_id)
        if state is None:
            state = CycleState.initial(camera_id, user_id)
            await store.save_cycle_state(state)
        return cls(state, store, bus, thresholds)

    @property
    def camera_id(self) -> str:
        return self.state.camera_id

    def parse(self, payloads: Iterable[Any]) -> list[RawEvent]:
        """Parse payloads, skipping (and logging) malformed ones"""
        events = []
        for payload in payloads:
            try:
                events.append(RawEvent.from_payload(payload, self.camera_id))
            except ClassificationError as e:
                self.log.warning(f"Skipping event: {e.reason}")
        return events

    async def process(self, payloads: Iterable[Any], now: datetime) -> list[Transition]:
        """
        Fold a poll batch into the state machine

        Each step that emits transitions is checkpointed and then published
        before the next step runs.

        Args:
            payloads: Raw upstream event payloads
            now: Poll time

        Returns:
            Transitions emitted by this batch, in sequence order
        """
        events = self.parse(payloads)
        persisted = self.state
        emitted: list[Transition] = []

        for state, transitions in classify_steps(self.state, events, now, self.thresholds):
            self.state = state
            if transitions:
                await self._commit(transitions)
                persisted = self.state
                emitted += transitions

        if self._changed(persisted, self.state):
            await self.store.save_cycle_state(self.state)

        return emitted

    async def _commit(self, transitions: list[Transition]) -> None:
        await self.store.checkpoint(self.state, transitions)
        for transition in transitions:
            self.log.info(
                f"🍽️ {transition.from_phase.value} → {transition.to_phase.value} "
                f"@ {transition.timestamp.isoformat()} (seq {transition.sequence})"
            )
            if self.bus is not None:
                await self.bus.publish(transition)

    @staticmethod
    def _changed(before: CycleState, after: CycleState) -> bool:
        ignore = {"quiet_seconds"}
        return before.model_dump(exclude=ignore) != after.model_dump(exclude=ignore)
