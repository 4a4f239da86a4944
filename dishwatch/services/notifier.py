"""Webhook notifier - transition bus collaborator posting to an HTTP endpoint"""

import logging
from typing import Optional, Dict, Any
import aiohttp

from ..models.events import Transition
from .rate_limiter import TokenBucket

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """
    Webhook client with rate limiting

    Retries are left to the caller: the transition bus retries deliveries
    with its own backoff, and ErrorLogger sends at most once.
    """

    def __init__(
        self,
        webhook_url: str,
        timeout: int = 30,
        rate_limit_per_second: int = 20,
    ):
        """
        Initialize webhook notifier

        Args:
            webhook_url: Endpoint receiving JSON payloads
            timeout: Request timeout in seconds
            rate_limit_per_second: Maximum requests per second
        """
        self.webhook_url = webhook_url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.rate_limiter = TokenBucket(rate_limit_per_second, burst=1)

    async def send(self, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Post a payload

        Args:
            payload: JSON-serializable payload

        Returns:
            Response JSON, or None for an empty/non-JSON body

        Raises:
            aiohttp.ClientError: On connection failure or non-2xx status
        """
        await self.rate_limiter.acquire()

        logger.info(f"Sending webhook: {payload.get('event', 'unknown')}")

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.post(self.webhook_url, json=payload) as resp:
                resp.raise_for_status()
                if resp.content_type != "application/json":
                    return None
                return await resp.json()

    async def notify(self, transition: Transition) -> None:
        """Transition bus handler"""
        await self.send(transition.to_payload())
        logger.info(
            f"✅ Notified {transition.user_id}: {transition.camera_id} "
            f"{transition.from_phase.value} → {transition.to_phase.value}"
        )
