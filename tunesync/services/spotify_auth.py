"""Refresh-token grant against the Spotify accounts service."""
import asyncio
import logging
from base64 import b64encode
from typing import Any, Dict, Optional

import aiohttp
from pydantic import BaseModel

from tunesync.core.config import get_settings
from tunesync.core.exceptions import CredentialExpiredError, UpstreamError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

class TokenGrant(BaseModel):
    """Token endpoint response."""
    access_token: str
    token_type: str = "Bearer"
    expires_in: int = 3600
    refresh_token: Optional[str] = None
    scope: Optional[str] = None

class SpotifyAuthClient:
    """Client for the Spotify accounts token endpoint."""

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        accounts_url: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        settings = get_settings()
        self.client_id = client_id or settings.SPOTIFY_CLIENT_ID
        self.client_secret = client_secret or settings.SPOTIFY_CLIENT_SECRET
        self.accounts_url = accounts_url or settings.SPOTIFY_ACCOUNTS_URL
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.SPOTIFY_REQUEST_TIMEOUT)

        if not all([self.client_id, self.client_secret]):
            raise ValueError("Missing required Spotify credentials")

        # Create Basic auth header
        credentials = f"{self.client_id}:{self.client_secret}"
        self.auth_header = b64encode(credentials.encode()).decode()

    @staticmethod
    async def _error_data(response: aiohttp.ClientResponse) -> Dict[str, Any]:
        try:
            data = await response.json(content_type=None)
        except (aiohttp.ContentTypeError, ValueError):
            return {}
        return data if isinstance(data, dict) else {}

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new access token."""
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(
                    self.accounts_url,
                    headers={
                        "Authorization": f"Basic {self.auth_header}",
                        "Content-Type": "application/x-www-form-urlencoded"
                    },
                    data={
                        "grant_type": "refresh_token",
                        "refresh_token": refresh_token
                    }
                ) as response:
                    if response.status != 200:
                        error_data = await self._error_data(response)
                        logger.error(f"Spotify token refresh failed: {error_data}")
                        message = f"Failed to refresh token: {error_data.get('error_description', 'Unknown error')}"
                        # invalid_grant means the refresh token itself was revoked
                        if response.status in (400, 401) and error_data.get("error") == "invalid_grant":
                            raise CredentialExpiredError(message, status=response.status, payload=error_data)
                        raise UpstreamError(message, status=response.status, payload=error_data)

                    return TokenGrant.model_validate(await response.json(content_type=None))
        except asyncio.TimeoutError as e:
            raise UpstreamTimeoutError("Spotify token refresh timed out") from e
        except aiohttp.ClientError as e:
            raise UpstreamError(f"Spotify token refresh failed: {str(e)}") from e
