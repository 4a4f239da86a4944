"""Monitoring engine - wires token vault, registry, scheduler, classifier and bus"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from .clients.camera_api import CameraApiClient
from .clients.oauth_client import OAuthClient, generate_oauth_state, validate_callback
from .models.camera import DiscoveredCamera, MonitoredCamera
from .models.events import Transition, utc_now
from .services.camera_registry import CameraRegistry
from .services.error_logger import ErrorLogger
from .services.event_classifier import Thresholds
from .services.notifier import WebhookNotifier
from .services.poll_scheduler import PollScheduler
from .services.rate_limiter import RateLimiterPool
from .services.state_store import JsonFileStore, KeyValueStore, StateStore
from .services.token_vault import TokenVault
from .services.transition_bus import TransitionBus
from .utils.config import AppConfig

logger = logging.getLogger(__name__)

# Pending OAuth states expire after this long
OAUTH_STATE_TTL = timedelta(minutes=10)


class MonitoringEngine:
    """
    Central coordinator for the session and event-detection engine

    - TokenVault keeps per-user credentials valid
    - CameraRegistry gates which cameras are polled
    - PollScheduler polls, EventClassifier folds events into transitions
    - TransitionBus fans transitions out to the notifier
    """

    def __init__(self, config: AppConfig, backend: Optional[KeyValueStore] = None):
        """
        Initialize monitoring engine

        Args:
            config: Application configuration
            backend: Key-value backend (default: JSON file from config)
        """
        self.config = config
        self._running = False

        logger.info("Initializing services...")

        self.store = StateStore(backend or JsonFileStore(config.storage.state_file))

        self.notifier: Optional[WebhookNotifier] = None
        if config.notifier.webhook_url:
            self.notifier = WebhookNotifier(
                webhook_url=config.notifier.webhook_url,
                timeout=config.notifier.timeout_seconds,
                rate_limit_per_second=config.notifier.rate_limit_per_second,
            )

        self.error_logger = ErrorLogger(
            notifier=self.notifier,
            keep_in_memory=config.error_logging.keep_in_memory,
            send_to_webhook=config.error_logging.send_to_webhook,
        )

        self.oauth_client = OAuthClient(config.oauth)
        self.api_client = CameraApiClient(config.camera_api)

        self.vault = TokenVault(
            oauth_client=self.oauth_client,
            store=self.store,
            safety_margin_seconds=config.oauth.safety_margin_seconds,
            refresh_max_attempts=config.oauth.refresh_max_attempts,
            refresh_initial_delay=config.oauth.refresh_initial_delay,
        )

        self.registry = CameraRegistry(self.store)

        self.bus = TransitionBus(
            store=self.store,
            max_attempts=config.bus.max_attempts,
            initial_delay=config.bus.initial_delay,
            backoff=config.bus.backoff_multiplier,
            error_logger=self.error_logger,
        )
        if self.notifier:
            self.bus.register("webhook_notifier", self.notifier.notify)

        self.scheduler = PollScheduler(
            registry=self.registry,
            vault=self.vault,
            api_client=self.api_client,
            store=self.store,
            bus=self.bus,
            rate_limiters=RateLimiterPool(
                rate_per_second=config.polling.rate_limit_per_second,
                burst=config.polling.rate_limit_burst,
            ),
            thresholds=Thresholds.from_config(config.classifier),
            error_logger=self.error_logger,
            default_interval_seconds=config.polling.default_interval_seconds,
            max_interval_seconds=config.polling.max_interval_seconds,
            empty_polls_before_backoff=config.polling.empty_polls_before_backoff,
            max_workers=config.polling.max_workers,
            tick_seconds=config.polling.tick_seconds,
        )

        # OAuth state -> (user_id, issued_at)
        self._pending_authorizations: dict[str, tuple[str, datetime]] = {}
        self._auth_lock = asyncio.Lock()

        logger.info("✅ All services initialized")

    async def start(self) -> None:
        """Load persisted state and start background services"""
        if self._running:
            logger.warning("Engine already running")
            return

        self._running = True
        logger.info("🚀 Starting dishwasher monitoring engine")

        try:
            await self.vault.load()
            await self.registry.load()
        except Exception as e:
            self._running = False
            logger.error(f"Failed to load persisted state: {e}")
            raise

        await self.bus.start()
        await self.scheduler.start()

        logger.info(f"✅ Engine started ({len(self.registry.cameras)} cameras, {len(self.vault.users())} users)")

    async def stop(self) -> None:
        """Stop background services; in-flight polls finish first"""
        if not self._running:
            return

        self._running = False
        logger.info("🛑 Stopping dishwasher monitoring engine")

        await self.scheduler.stop()
        await self.bus.stop()

        logger.info("✅ Engine stopped")

    # --- Authorization ----------------------------------------------------

    async def begin_authorization(self, user_id: str) -> str:
        """
        Start the OAuth consent flow for a user

        Returns:
            Authorization URL to redirect the user to
        """
        state = generate_oauth_state()
        async with self._auth_lock:
            self._expire_pending_authorizations()
            self._pending_authorizations[state] = (user_id, utc_now())
        return self.oauth_client.authorization_url(state)

    async def complete_authorization(self, code: Optional[str], state: Optional[str]) -> str:
        """
        Handle the OAuth callback: validate, exchange, store, resume polling

        Returns:
            The user id the credential was stored for

        Raises:
            InvalidOAuthState: Unknown or expired state
            MissingAuthorizationCode: Callback carried no code
        """
        async with self._auth_lock:
            self._expire_pending_authorizations()
            pending = self._pending_authorizations.pop(state or "", None)

        code = validate_callback(code, state, expected_state=state if pending else None)
        user_id = pending[0]

        token_response = await self.oauth_client.exchange_code(code)
        await self.vault.store_initial_credential(user_id, token_response)
        await self.registry.mark_user_degraded(user_id, False)

        logger.info(f"✅ User {user_id} authorized")
        return user_id

    def _expire_pending_authorizations(self) -> None:
        cutoff = utc_now() - OAUTH_STATE_TTL
        expired = [s for s, (_, issued_at) in self._pending_authorizations.items() if issued_at < cutoff]
        for state in expired:
            del self._pending_authorizations[state]

    async def deauthorize(self, user_id: str) -> None:
        """Revoke a user's credential and pause their cameras"""
        await self.vault.revoke(user_id)
        await self.registry.mark_user_degraded(user_id, True)

    # --- Cameras ----------------------------------------------------------

    async def discover_cameras(self, user_id: str) -> list[DiscoveredCamera]:
        """List the user's cameras from the upstream camera API"""
        token = await self.vault.get_valid_token(user_id)
        await self.scheduler.rate_limiters.acquire(user_id)
        return await self.api_client.list_cameras(token)

    async def set_monitoring(
        self,
        user_id: str,
        camera_id: str,
        enabled: bool,
        display_name: Optional[str] = None,
    ) -> MonitoredCamera:
        return await self.registry.set_monitoring(user_id, camera_id, enabled, display_name)

    async def camera_history(self, camera_id: str) -> list[Transition]:
        return await self.store.load_transitions(camera_id)

    async def camera_state(self, camera_id: str) -> Optional[dict]:
        classifier = self.scheduler.classifiers.get(camera_id)
        if classifier is not None:
            state = classifier.state
        else:
            state = await self.store.load_cycle_state(camera_id)
        return state.model_dump(mode="json") if state else None

    def get_status(self) -> dict:
        """Get engine status"""
        cameras = list(self.registry.cameras.values())

        return {
            "running": self._running,
            "storage_degraded": self.store.degraded,
            "total_users": len(self.vault.users()),
            "total_cameras": len(cameras),
            "monitored_cameras": len([c for c in cameras if c.monitoring_enabled]),
            "degraded_cameras": len([c for c in cameras if c.degraded]),
            "failing_cameras": self.error_logger.failing_cameras(),
            "pending_transitions": self.bus.pending(),
            "scheduler": self.scheduler.get_status(),
        }
