"""OAuth2 credential models"""

from datetime import datetime, timedelta
from typing import Optional
from pydantic import BaseModel, Field


class TokenResponse(BaseModel):
    """Token endpoint response (authorization_code or refresh_token grant)"""
    access_token: str
    expires_in: int
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None
    scope: Optional[str] = None


class Credential(BaseModel):
    """Per-user OAuth2 credential owned by the TokenVault"""
    user_id: str
    access_token: str
    refresh_token: str
    expires_at: datetime
    scopes: set[str] = Field(default_factory=set)
    invalid: bool = False

    @classmethod
    def from_token_response(
        cls,
        user_id: str,
        response: TokenResponse,
        issued_at: datetime,
        previous: Optional["Credential"] = None,
    ) -> "Credential":
        """
        Build a credential from a token endpoint response

        Refresh responses may omit the refresh token and scope; the values of
        the previous credential are kept in that case.

        Raises:
            ValueError: If no refresh token is available at all
        """
        refresh_token = response.refresh_token or (previous.refresh_token if previous else None)
        if not refresh_token:
            raise ValueError(f"Token response for {user_id} carries no refresh token")

        if response.scope:
            scopes = set(response.scope.split())
        else:
            scopes = set(previous.scopes) if previous else set()

        return cls(
            user_id=user_id,
            access_token=response.access_token,
            refresh_token=refresh_token,
            expires_at=issued_at + timedelta(seconds=response.expires_in),
            scopes=scopes,
        )

    def is_fresh(self, now: datetime, safety_margin: timedelta) -> bool:
        """True if the access token stays valid beyond the safety margin"""
        return not self.invalid and self.expires_at - now > safety_margin
