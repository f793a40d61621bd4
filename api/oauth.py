"""
Google OAuth 2.0 authorization-code flow.
"""

from typing import Dict, Optional
from urllib.parse import urlencode

import httpx
import structlog

from api.config import config as api_config

logger = structlog.get_logger(__name__)

AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"


class OAuthError(Exception):
    """The provider rejected the code or returned an unusable profile."""


class GoogleOAuthClient:
    """Builds the consent URL and exchanges authorization codes for profiles."""

    def __init__(self, client_id: str, client_secret: str, redirect_uri: str, timeout: float = 10.0):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": "openid profile email",
            "state": state,
            "prompt": "select_account",
        }
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    async def fetch_profile(self, code: str) -> Dict[str, Optional[str]]:
        """
        Exchange an authorization code and load the user's profile.

        Args:
            code: Authorization code from the callback

        Returns:
            Dict with googleId, displayName, email and avatar

        Raises:
            OAuthError: If either provider call fails
        """
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                token_response = await client.post(
                    TOKEN_URL,
                    data={
                        "code": code,
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "redirect_uri": self.redirect_uri,
                        "grant_type": "authorization_code",
                    },
                )
                token_response.raise_for_status()
                access_token = token_response.json()["access_token"]

                userinfo_response = await client.get(
                    USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                userinfo_response.raise_for_status()
                userinfo = userinfo_response.json()
            except (httpx.HTTPError, KeyError, ValueError) as e:
                logger.error("Google OAuth exchange failed", error=str(e))
                raise OAuthError(str(e)) from e

        if "sub" not in userinfo:
            raise OAuthError("Profile has no subject identifier")

        return {
            "googleId": userinfo["sub"],
            "displayName": userinfo.get("name") or userinfo.get("email"),
            "email": userinfo.get("email"),
            "avatar": userinfo.get("picture"),
        }


def get_oauth_client() -> Optional[GoogleOAuthClient]:
    """FastAPI dependency; None when no Google credentials are configured."""
    if not api_config.oauth_enabled():
        return None
    return GoogleOAuthClient(
        client_id=api_config.google_client_id,
        client_secret=api_config.google_client_secret,
        redirect_uri=api_config.google_callback_url,
    )
