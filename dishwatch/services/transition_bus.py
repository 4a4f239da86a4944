"""Transition bus - durable fan-out of confirmed transitions to collaborators"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TYPE_CHECKING

from ..models.events import Transition
from ..utils.retry import call_with_retry
from .state_store import StateStore

if TYPE_CHECKING:
    from .error_logger import ErrorLogger

logger = logging.getLogger(__name__)

Handler = Callable[[Transition], Awaitable[None]]


@dataclass
class _Collaborator:
    name: str
    handler: Handler
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    last_delivered: dict[str, int] = field(default_factory=dict)
    task: Optional[asyncio.Task] = None
    delivered: int = 0
    dropped: int = 0


class TransitionBus:
    """
    Fans transitions out to registered collaborators

    ``publish`` writes the transition to the durable outbox (a rewrite of the
    same entry when it comes from a classifier checkpoint) and enqueues it
    for every collaborator; it never raises and never waits for delivery.
    Each collaborator has its own worker, so a slow or failing collaborator
    does not hold up the others. A transition leaves the outbox once every
    collaborator has either acknowledged or dropped it.
    """

    def __init__(
        self,
        store: StateStore,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        backoff: float = 2.0,
        error_logger: Optional["ErrorLogger"] = None,
    ):
        """
        Initialize transition bus

        Args:
            store: StateStore holding the outbox
            max_attempts: Delivery attempts per collaborator before dropping
            initial_delay: First retry delay in seconds
            backoff: Retry delay multiplier
            error_logger: ErrorLogger for dropped deliveries
        """
        self.store = store
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.backoff = backoff
        self.error_logger = error_logger

        self._collaborators: dict[str, _Collaborator] = {}
        self._outstanding: dict[str, tuple[Transition, set[str]]] = {}
        self._running = False

    def register(self, name: str, handler: Handler) -> None:
        """Register a collaborator (before start)"""
        if name in self._collaborators:
            raise ValueError(f"Collaborator already registered: {name}")
        self._collaborators[name] = _Collaborator(name=name, handler=handler)
        logger.info(f"Registered transition collaborator: {name}")
        if self._running:
            self._start_worker(self._collaborators[name])

    async def start(self) -> None:
        """Re-queue outbox leftovers and start delivery workers"""
        if self._running:
            logger.warning("TransitionBus already running")
            return

        self._running = True
        pending = await self.store.load_outbox()
        requeued = 0
        for transition in pending:
            if transition.key not in self._outstanding:
                await self._dispatch(transition)
                requeued += 1

        for collaborator in self._collaborators.values():
            self._start_worker(collaborator)

        logger.info(
            f"✅ TransitionBus started ({len(self._collaborators)} collaborators, "
            f"{requeued} transitions re-queued)"
        )

    async def stop(self) -> None:
        """Stop delivery workers; undelivered transitions stay in the outbox"""
        if not self._running:
            return

        self._running = False
        for collaborator in self._collaborators.values():
            if collaborator.task:
                collaborator.task.cancel()
                try:
                    await collaborator.task
                except asyncio.CancelledError:
                    pass
                collaborator.task = None

        logger.info("TransitionBus stopped")

    async def publish(self, transition: Transition) -> None:
        """Durably enqueue a transition for every collaborator"""
        if not await self.store.put_outbox(transition):
            logger.warning(f"Outbox write failed for {transition.key}, delivering from memory only")
        await self._dispatch(transition)

    async def drain(self) -> None:
        """Wait until every queued transition was delivered or dropped"""
        await asyncio.gather(*(c.queue.join() for c in self._collaborators.values()))

    def pending(self) -> int:
        """Transitions not yet settled by every collaborator"""
        return len(self._outstanding)

    def stats(self) -> dict:
        return {
            name: {"delivered": c.delivered, "dropped": c.dropped, "queued": c.queue.qsize()}
            for name, c in self._collaborators.items()
        }

    async def _dispatch(self, transition: Transition) -> None:
        if not self._collaborators:
            await self.store.delete_outbox(transition)
            return

        self._outstanding[transition.key] = (transition, set(self._collaborators))
        for collaborator in self._collaborators.values():
            collaborator.queue.put_nowait(transition)

    def _start_worker(self, collaborator: _Collaborator) -> None:
        collaborator.task = asyncio.create_task(self._run_worker(collaborator))

    async def _run_worker(self, collaborator: _Collaborator) -> None:
        while True:
            transition = await collaborator.queue.get()
            try:
                await self._deliver(collaborator, transition)
            finally:
                await self._settle(transition, collaborator.name)
                collaborator.queue.task_done()

    async def _deliver(self, collaborator: _Collaborator, transition: Transition) -> None:
        last = collaborator.last_delivered.get(transition.camera_id, 0)
        if transition.sequence <= last:
            logger.debug(f"{collaborator.name}: skipping replayed {transition.key}")
            return

        try:
            await call_with_retry(
                collaborator.handler,
                transition,
                max_attempts=self.max_attempts,
                delay=self.initial_delay,
                backoff=self.backoff,
            )
        except Exception as e:
            collaborator.dropped += 1
            logger.error(f"❌ Dropped {transition.key} for {collaborator.name}: {e}")
            if self.error_logger:
                await self.error_logger.record_failure(
                    f"deliver_transition_{collaborator.name}",
                    e,
                    camera_id=transition.camera_id,
                    user_id=transition.user_id,
                    attempts=self.max_attempts,
                    context={"sequence": transition.sequence, "to_phase": transition.to_phase.value},
                )
            return

        collaborator.last_delivered[transition.camera_id] = transition.sequence
        collaborator.delivered += 1

    async def _settle(self, transition: Transition, name: str) -> None:
        entry = self._outstanding.get(transition.key)
        if entry is None:
            return
        waiting = entry[1]
        waiting.discard(name)
        if not waiting:
            del self._outstanding[transition.key]
            await self.store.delete_outbox(transition)
