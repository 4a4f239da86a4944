"""OAuth2 client for the camera provider's authorization server"""

import logging
import uuid
from typing import Optional
from urllib.parse import urlencode

import aiohttp

from ..models.credentials import TokenResponse
from ..models.errors import InvalidOAuthState, MissingAuthorizationCode, OAuthRequestError
from ..utils.config import OAuthConfig

logger = logging.getLogger(__name__)


def generate_oauth_state() -> str:
    """Random state parameter binding a callback to its authorization request"""
    return uuid.uuid4().hex


def validate_callback(code: Optional[str], state: Optional[str], expected_state: Optional[str]) -> str:
    """
    Validate an authorization callback

    Args:
        code: Authorization code from the callback
        state: State parameter from the callback
        expected_state: State issued with the authorization URL

    Returns:
        The authorization code

    Raises:
        InvalidOAuthState: If the state doesn't match (possible CSRF)
        MissingAuthorizationCode: If the code is empty
    """
    if not expected_state or state != expected_state:
        raise InvalidOAuthState("Invalid state parameter, possible CSRF attack")
    if not code:
        raise MissingAuthorizationCode("Missing authorization code")
    return code


class OAuthClient:
    """
    Authorization-code and refresh-token grants against the token endpoint

    Token endpoint errors are raised as OAuthRequestError with ``transient``
    set for 429/5xx; network errors propagate as aiohttp.ClientError.
    """

    def __init__(self, config: OAuthConfig):
        self.config = config
        self.timeout = aiohttp.ClientTimeout(total=config.timeout_seconds)

    def authorization_url(self, state: str) -> str:
        """Build the consent URL (offline access so a refresh token is issued)"""
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "response_type": "code",
            "scope": self.config.scope,
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{self.config.auth_uri}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenResponse:
        """Exchange an authorization code for tokens"""
        logger.info("Exchanging authorization code for tokens")
        return await self._post_token({
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.config.redirect_uri,
        })

    async def refresh(self, refresh_token: str) -> TokenResponse:
        """Obtain a new access token with a refresh token"""
        return await self._post_token({
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        })

    async def _post_token(self, form: dict) -> TokenResponse:
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.post(self.config.token_uri, data=form) as resp:
                if resp.status == 200:
                    payload = await resp.json()
                    return TokenResponse.model_validate(payload)

                body = await resp.text()
                transient = resp.status == 429 or resp.status >= 500
                logger.warning(
                    f"Token endpoint returned HTTP {resp.status} "
                    f"({'transient' if transient else 'permanent'}): {body[:200]}"
                )
                raise OAuthRequestError(resp.status, body, transient=transient)
