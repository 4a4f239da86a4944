"""Poll scheduler - adaptive per-camera polling of the upstream event feed"""

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, TYPE_CHECKING

import aiohttp

from ..clients.camera_api import CameraApiClient, EventPage
from ..models.errors import (
    CameraNotFoundError,
    RateLimitedError,
    ReauthorizationRequired,
    TransientAuthFailure,
    UpstreamError,
    UpstreamUnauthorizedError,
)
from ..models.events import Transition, utc_now
from .camera_registry import CameraRegistry
from .event_classifier import EventClassifier, Thresholds
from .rate_limiter import RateLimiterPool
from .state_store import StateStore
from .token_vault import TokenVault

if TYPE_CHECKING:
    from .error_logger import ErrorLogger
    from .transition_bus import TransitionBus

logger = logging.getLogger(__name__)


@dataclass
class PollState:
    """Adaptive interval bookkeeping for one camera"""
    interval: float
    empty_polls: int = 0


class PollScheduler:
    """
    Background service polling every monitored camera

    A scheduling pass runs every ``tick_seconds``: cameras the registry reports
    as due are polled concurrently, bounded by ``max_workers``. A per-camera
    lock spans one poll-and-classify cycle, so a camera's classifier never
    runs twice at once. Failures stay with the camera that caused them.
    """

    def __init__(
        self,
        registry: CameraRegistry,
        vault: TokenVault,
        api_client: CameraApiClient,
        store: StateStore,
        bus: Optional["TransitionBus"] = None,
        rate_limiters: Optional[RateLimiterPool] = None,
        thresholds: Optional[Thresholds] = None,
        error_logger: Optional["ErrorLogger"] = None,
        default_interval_seconds: float = 30.0,
        max_interval_seconds: float = 300.0,
        empty_polls_before_backoff: int = 2,
        max_workers: Optional[int] = None,
        tick_seconds: float = 1.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize poll scheduler

        Args:
            registry: CameraRegistry deciding which cameras are due
            vault: TokenVault providing access tokens
            api_client: CameraApiClient for the events feed
            store: StateStore for classifier checkpoints
            bus: TransitionBus receiving emitted transitions
            rate_limiters: Per-user token buckets (default 1 req/s, burst 5)
            thresholds: Classifier thresholds
            error_logger: ErrorLogger for failed polls
            default_interval_seconds: Base poll interval
            max_interval_seconds: Cap for the adaptive interval
            empty_polls_before_backoff: Consecutive empty polls before doubling
            max_workers: Concurrent polls (default CPU count x 4)
            tick_seconds: Scheduling pass period
            clock: Current time provider
        """
        self.registry = registry
        self.vault = vault
        self.api_client = api_client
        self.store = store
        self.bus = bus
        self.rate_limiters = rate_limiters or RateLimiterPool()
        self.thresholds = thresholds or Thresholds()
        self.error_logger = error_logger
        self.default_interval = default_interval_seconds
        self.max_interval = max_interval_seconds
        self.empty_polls_before_backoff = empty_polls_before_backoff
        self.max_workers = max_workers or (os.cpu_count() or 1) * 4
        self.tick_seconds = tick_seconds
        self.clock = clock

        self.classifiers: dict[str, EventClassifier] = {}
        self.poll_states: dict[str, PollState] = {}
        self._camera_locks: dict[str, asyncio.Lock] = {}
        self._in_flight: dict[str, asyncio.Task] = {}
        self._semaphore = asyncio.Semaphore(self.max_workers)
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the background scheduling loop"""
        if self._running:
            logger.warning("PollScheduler already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            f"✅ PollScheduler started (interval: {self.default_interval}s, "
            f"max interval: {self.max_interval}s, workers: {self.max_workers})"
        )

    async def stop(self) -> None:
        """Stop scheduling; in-flight polls finish and checkpoint"""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        if self._in_flight:
            logger.info(f"Waiting for {len(self._in_flight)} in-flight polls")
            await asyncio.gather(*self._in_flight.values(), return_exceptions=True)

        logger.info("PollScheduler stopped")

    async def _run_loop(self) -> None:
        logger.info("PollScheduler loop started")

        while self._running:
            try:
                await self.poll_once()
                await asyncio.sleep(self.tick_seconds)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in PollScheduler loop: {e}", exc_info=True)
                await asyncio.sleep(self.tick_seconds)

    async def poll_once(self) -> list[asyncio.Task]:
        """
        Launch polls for every due camera not already being polled

        Returns:
            The launched poll tasks
        """
        launched = []
        for user_id, camera_id in await self.registry.cameras_due_for_poll(self.clock()):
            if camera_id in self._in_flight:
                continue
            task = asyncio.create_task(self._guarded_poll(user_id, camera_id))
            self._in_flight[camera_id] = task
            task.add_done_callback(lambda _, cid=camera_id: self._in_flight.pop(cid, None))
            launched.append(task)
        return launched

    async def _guarded_poll(self, user_id: str, camera_id: str) -> list[Transition]:
        try:
            return await self.poll_camera(user_id, camera_id)
        except Exception as e:
            logger.error(f"Unexpected error polling {camera_id}: {e}", exc_info=True)
            await self._record_failure("poll_camera", e, user_id, camera_id)
            await self.registry.schedule_next(
                camera_id, self.clock() + timedelta(seconds=self._poll_state(camera_id).interval)
            )
            return []

    def _lock_for(self, camera_id: str) -> asyncio.Lock:
        lock = self._camera_locks.get(camera_id)
        if lock is None:
            lock = self._camera_locks[camera_id] = asyncio.Lock()
        return lock

    def _poll_state(self, camera_id: str) -> PollState:
        state = self.poll_states.get(camera_id)
        if state is None:
            state = self.poll_states[camera_id] = PollState(interval=self.default_interval)
        return state

    async def classifier_for(self, user_id: str, camera_id: str) -> EventClassifier:
        """The camera's single classifier instance, restored from its checkpoint"""
        classifier = self.classifiers.get(camera_id)
        if classifier is None:
            classifier = await EventClassifier.restore(
                camera_id, user_id, self.store, self.bus, self.thresholds
            )
            self.classifiers[camera_id] = classifier
        return classifier

    async def poll_camera(self, user_id: str, camera_id: str) -> list[Transition]:
        """
        Poll one camera and classify its events

        Returns:
            Transitions emitted by this poll
        """
        async with self._semaphore:
            async with self._lock_for(camera_id):
                camera = await self.registry.get_camera(camera_id)
                if camera is None or not camera.monitoring_enabled or camera.degraded:
                    logger.debug(f"Skipping {camera_id}: no longer monitored")
                    return []

                poll_state = self._poll_state(camera_id)
                delay = poll_state.interval
                transitions: list[Transition] = []

                try:
                    page = await self._fetch(user_id, camera_id, camera.event_cursor)
                    classifier = await self.classifier_for(user_id, camera_id)
                    transitions = await classifier.process(page.events, self.clock())
                    await self.registry.update_cursor(camera_id, page.next_cursor)
                    if self.error_logger:
                        self.error_logger.record_success(camera_id)
                    delay = self._adapt_interval(poll_state, bool(page.events))

                except ReauthorizationRequired as e:
                    logger.error(f"🔒 {e}; pausing cameras of {user_id}")
                    await self.registry.mark_user_degraded(user_id, True)

                except TransientAuthFailure as e:
                    logger.warning(f"Token refresh failed for {user_id}, will retry: {e}")
                    await self._record_failure("refresh_token", e, user_id, camera_id)

                except RateLimitedError as e:
                    if e.retry_after is not None:
                        delay = e.retry_after
                    else:
                        delay = self._back_off(poll_state)
                    logger.warning(f"⏳ Rate limited polling {camera_id}, next poll in {delay:.0f}s")

                except CameraNotFoundError:
                    logger.warning(f"Camera {camera_id} no longer exists upstream, disabling monitoring")
                    await self.registry.set_monitoring(user_id, camera_id, False)

                except (UpstreamError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                    logger.error(f"Upstream failure polling {camera_id}: {e}")
                    await self._record_failure("poll_camera", e, user_id, camera_id)

                await self.registry.schedule_next(camera_id, self.clock() + timedelta(seconds=delay))
                return transitions

    async def _fetch(self, user_id: str, camera_id: str, cursor: Optional[str]) -> EventPage:
        token = await self.vault.get_valid_token(user_id)
        await self.rate_limiters.acquire(user_id)
        try:
            return await self.api_client.fetch_events(token, camera_id, cursor)
        except UpstreamUnauthorizedError:
            logger.info(f"Access token rejected for {camera_id}, refreshing and retrying once")
            await self.vault.invalidate(user_id, token)
            token = await self.vault.get_valid_token(user_id)
            await self.rate_limiters.acquire(user_id)
            return await self.api_client.fetch_events(token, camera_id, cursor)

    def _adapt_interval(self, state: PollState, had_events: bool) -> float:
        if had_events:
            state.empty_polls = 0
            state.interval = self.default_interval
        else:
            state.empty_polls += 1
            if state.empty_polls >= self.empty_polls_before_backoff:
                state.interval = min(state.interval * 2, self.max_interval)
        return state.interval

    def _back_off(self, state: PollState) -> float:
        state.interval = min(state.interval * 2, self.max_interval)
        return state.interval

    async def _record_failure(self, operation: str, error: Exception, user_id: str, camera_id: str) -> None:
        if self.error_logger:
            await self.error_logger.record_failure(
                operation, error, camera_id=camera_id, user_id=user_id
            )

    def get_status(self) -> dict:
        return {
            "running": self._running,
            "in_flight": len(self._in_flight),
            "intervals": {cid: s.interval for cid, s in self.poll_states.items()},
        }
