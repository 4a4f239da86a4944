"""Token vault - per-user OAuth2 credentials with proactive, collapsed refresh"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

import aiohttp

from ..clients.oauth_client import OAuthClient
from ..models.credentials import Credential, TokenResponse
from ..models.errors import (
    OAuthRequestError,
    ReauthorizationRequired,
    TransientAuthFailure,
)
from ..models.events import utc_now
from ..utils.retry import call_with_retry
from .state_store import StateStore

logger = logging.getLogger(__name__)

# Failures worth another refresh attempt
TRANSIENT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, TransientAuthFailure)


class TokenVault:
    """
    Owns every user's credential

    ``get_valid_token`` holds a per-user lock across read-check-refresh-write,
    so concurrent callers for the same user queue behind the single in-flight
    refresh and then read its result instead of refreshing again.
    """

    def __init__(
        self,
        oauth_client: OAuthClient,
        store: StateStore,
        safety_margin_seconds: float = 60,
        refresh_max_attempts: int = 3,
        refresh_initial_delay: float = 0.5,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize token vault

        Args:
            oauth_client: OAuthClient used for refresh grants
            store: StateStore where credentials are persisted
            safety_margin_seconds: Refresh tokens expiring sooner than this
            refresh_max_attempts: Attempts for transient refresh failures
            refresh_initial_delay: First backoff delay in seconds (doubles)
            clock: Current time provider
        """
        self.oauth_client = oauth_client
        self.store = store
        self.safety_margin = timedelta(seconds=safety_margin_seconds)
        self.refresh_max_attempts = refresh_max_attempts
        self.refresh_initial_delay = refresh_initial_delay
        self.clock = clock

        self._credentials: dict[str, Credential] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    async def load(self) -> None:
        """Restore persisted credentials"""
        for credential in await self.store.load_credentials():
            self._credentials[credential.user_id] = credential
        logger.info(f"🔑 Loaded {len(self._credentials)} credentials")

    def users(self) -> list[str]:
        return sorted(self._credentials)

    def get_credential(self, user_id: str) -> Optional[Credential]:
        return self._credentials.get(user_id)

    async def store_initial_credential(self, user_id: str, token_response: TokenResponse) -> Credential:
        """
        Store the credential obtained from an OAuth callback

        Replaces any previous (possibly invalid) credential of the user.
        """
        async with self._lock_for(user_id):
            credential = Credential.from_token_response(user_id, token_response, self.clock())
            self._credentials[user_id] = credential
            await self.store.save_credential(credential)

        logger.info(f"✅ Stored credential for {user_id} (expires {credential.expires_at.isoformat()})")
        return credential

    async def revoke(self, user_id: str) -> None:
        """Forget a user's credential (de-authorization)"""
        async with self._lock_for(user_id):
            removed = self._credentials.pop(user_id, None)
            await self.store.delete_credential(user_id)

        if removed:
            logger.info(f"Revoked credential for {user_id}")

    async def invalidate(self, user_id: str, access_token: str) -> None:
        """
        Force a refresh after the upstream rejected ``access_token``

        A no-op if the credential already moved on to a newer token, so many
        pollers reporting the same 401 still cause one refresh.
        """
        async with self._lock_for(user_id):
            credential = self._credentials.get(user_id)
            if credential is None or credential.access_token != access_token:
                return
            self._credentials[user_id] = credential.model_copy(update={"expires_at": self.clock()})
            logger.info(f"Access token for {user_id} invalidated after upstream rejection")

    async def get_valid_token(self, user_id: str) -> str:
        """
        Return an access token valid beyond the safety margin

        Raises:
            ReauthorizationRequired: No credential, or the refresh token was rejected
            TransientAuthFailure: Refresh kept failing for retryable reasons
        """
        async with self._lock_for(user_id):
            credential = self._credentials.get(user_id)
            if credential is None:
                raise ReauthorizationRequired(user_id, "No credential stored")
            if credential.invalid:
                raise ReauthorizationRequired(user_id, "Credential was rejected, re-authorization required")

            if credential.is_fresh(self.clock(), self.safety_margin):
                return credential.access_token

            credential = await self._refresh(credential)
            return credential.access_token

    async def _refresh(self, credential: Credential) -> Credential:
        user_id = credential.user_id
        logger.info(f"🔄 Refreshing access token for {user_id}")

        try:
            response = await call_with_retry(
                self._request_refresh,
                user_id,
                credential.refresh_token,
                max_attempts=self.refresh_max_attempts,
                delay=self.refresh_initial_delay,
                backoff=2.0,
                exceptions=TRANSIENT_ERRORS,
            )
        except ReauthorizationRequired:
            invalid = credential.model_copy(update={"invalid": True})
            self._credentials[user_id] = invalid
            await self.store.save_credential(invalid)
            logger.error(f"❌ Refresh token for {user_id} rejected, re-authorization required")
            raise
        except TransientAuthFailure:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientAuthFailure(user_id, f"Token refresh failed: {e}") from e

        refreshed = Credential.from_token_response(user_id, response, self.clock(), previous=credential)
        self._credentials[user_id] = refreshed
        await self.store.save_credential(refreshed)
        logger.info(f"✅ Refreshed access token for {user_id}")
        return refreshed

    async def _request_refresh(self, user_id: str, refresh_token: str) -> TokenResponse:
        try:
            return await self.oauth_client.refresh(refresh_token)
        except OAuthRequestError as e:
            if e.transient:
                raise TransientAuthFailure(user_id, str(e)) from e
            raise ReauthorizationRequired(user_id, str(e)) from e
        except ValueError as e:
            # Unparseable token response
            raise TransientAuthFailure(user_id, f"Invalid token response: {e}") from e
