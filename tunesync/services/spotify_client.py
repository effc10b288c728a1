"""Client for the Spotify Web API resources used by the sync pipeline."""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from tunesync.core.config import get_settings
from tunesync.core.exceptions import (
    CredentialExpiredError,
    RateLimitedError,
    UpstreamError,
    UpstreamNotFoundError,
    UpstreamTimeoutError
)
from tunesync.models.identity import Identity
from tunesync.schemas.listening import (
    UNKNOWN_ARTIST,
    UNKNOWN_ID,
    UNKNOWN_TRACK,
    UNTITLED_PLAYLIST,
    ArtistRecord,
    AudioFeatures,
    PlayRecord,
    PlaylistRecord,
    SpotifyUser,
    TrackRecord
)
from tunesync.services.token_provider import TokenProvider
from tunesync.utils.dates import parse_timestamp, to_millis
from tunesync.utils.retry_handler import RetryHandler

logger = logging.getLogger(__name__)

TIME_RANGES = ("short_term", "medium_term", "long_term")
MAX_PAGE_SIZE = 50
MAX_AUDIO_FEATURE_IDS = 100

# Normalizers: upstream JSON -> records with placeholders for missing fields

def _first_image(images: Optional[List[Dict[str, Any]]]) -> Optional[str]:
    if images:
        return images[0].get("url")
    return None

def normalize_track(item: Optional[Dict[str, Any]]) -> TrackRecord:
    item = item or {}
    artists = [a for a in item.get("artists") or [] if a]
    names = [a.get("name") for a in artists if a.get("name")]
    return TrackRecord(
        track_id=item.get("id") or UNKNOWN_ID,
        name=item.get("name") or UNKNOWN_TRACK,
        artist=", ".join(names) or UNKNOWN_ARTIST,
        artist_ids=[a["id"] for a in artists if a.get("id")],
        image_url=_first_image((item.get("album") or {}).get("images")),
        duration_ms=item.get("duration_ms"),
        popularity=item.get("popularity")
    )

def normalize_play(item: Dict[str, Any]) -> PlayRecord:
    track = normalize_track(item.get("track"))
    return PlayRecord(**track.model_dump(), played_at=parse_timestamp(item["played_at"]))

def normalize_artist(item: Optional[Dict[str, Any]]) -> ArtistRecord:
    item = item or {}
    return ArtistRecord(
        artist_id=item.get("id") or UNKNOWN_ID,
        name=item.get("name") or UNKNOWN_ARTIST,
        genres=list(item.get("genres") or []),
        image_url=_first_image(item.get("images")),
        popularity=item.get("popularity"),
        followers=(item.get("followers") or {}).get("total") or 0
    )

def normalize_audio_features(item: Dict[str, Any]) -> AudioFeatures:
    return AudioFeatures(
        track_id=item.get("id") or UNKNOWN_ID,
        energy=item.get("energy"),
        valence=item.get("valence"),
        danceability=item.get("danceability"),
        tempo=item.get("tempo")
    )

def normalize_playlist(item: Optional[Dict[str, Any]]) -> PlaylistRecord:
    item = item or {}
    owner = item.get("owner") or {}
    return PlaylistRecord(
        playlist_id=item.get("id") or UNKNOWN_ID,
        name=item.get("name") or UNTITLED_PLAYLIST,
        owner=owner.get("display_name") or owner.get("id"),
        image_url=_first_image(item.get("images")),
        track_count=(item.get("tracks") or {}).get("total") or 0,
        public=bool(item.get("public")),
        collaborative=bool(item.get("collaborative"))
    )

def normalize_user(item: Optional[Dict[str, Any]]) -> SpotifyUser:
    item = item or {}
    return SpotifyUser(
        spotify_id=item.get("id") or UNKNOWN_ID,
        display_name=item.get("display_name"),
        email=item.get("email"),
        avatar_url=_first_image(item.get("images")),
        followers=(item.get("followers") or {}).get("total") or 0
    )

def _check_time_range(time_range: str) -> None:
    if time_range not in TIME_RANGES:
        raise ValueError(f"Invalid time range {time_range!r}, expected one of {', '.join(TIME_RANGES)}")

def _check_limit(limit: int) -> None:
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValueError(f"limit must be between 1 and {MAX_PAGE_SIZE}, got {limit}")

class SpotifyClient:
    """Authenticated, retrying client bound to a single identity."""

    def __init__(
        self,
        identity: Identity,
        token_provider: TokenProvider,
        retry_handler: Optional[RetryHandler] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        settings = get_settings()
        self.identity = identity
        self.token_provider = token_provider
        self.retry_handler = retry_handler or RetryHandler(
            max_retries=settings.SPOTIFY_MAX_RETRIES,
            base_delay=settings.SPOTIFY_RETRY_BASE_DELAY
        )
        self.base_url = (base_url or settings.SPOTIFY_API_BASE_URL).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.SPOTIFY_REQUEST_TIMEOUT)
        self._session = session

    @staticmethod
    async def _error_message(response: aiohttp.ClientResponse) -> Tuple[str, Dict[str, Any]]:
        try:
            data = await response.json(content_type=None)
        except (aiohttp.ContentTypeError, ValueError):
            data = None
        if not isinstance(data, dict):
            return response.reason or f"HTTP {response.status}", {}
        error = data.get("error")
        if isinstance(error, dict):
            return error.get("message") or response.reason or "", data
        return data.get("error_description") or str(error or response.reason), data

    async def _handle_response(self, response: aiohttp.ClientResponse) -> Dict[str, Any]:
        if response.status == 204:
            return {}
        if response.status < 400:
            data = await response.json(content_type=None)
            return data or {}

        message, payload = await self._error_message(response)
        if response.status == 429:
            try:
                retry_after = float(response.headers.get("Retry-After"))
            except (TypeError, ValueError):
                retry_after = None
            raise RateLimitedError(
                f"Spotify rate limit exceeded: {message}",
                retry_after=retry_after,
                payload=payload
            )
        if response.status == 401:
            raise CredentialExpiredError(f"Spotify rejected the access token: {message}", payload=payload)
        if response.status == 404:
            raise UpstreamNotFoundError(f"Spotify resource not found: {message}", payload=payload)
        raise UpstreamError(f"Spotify API error {response.status}: {message}", status=response.status, payload=payload)

    async def _send(self, method: str, path: str, token: str, params: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {token}"}
        try:
            if self._session is not None:
                async with self._session.request(method, url, headers=headers, params=params, timeout=self.timeout) as response:
                    return await self._handle_response(response)
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(method, url, headers=headers, params=params) as response:
                    return await self._handle_response(response)
        except asyncio.TimeoutError as e:
            raise UpstreamTimeoutError(f"Spotify request to {path} timed out") from e
        except aiohttp.ClientError as e:
            raise UpstreamError(f"Spotify request to {path} failed: {str(e)}") from e

    async def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        params = {k: v for k, v in (params or {}).items() if v is not None}

        async def operation():
            token = await self.token_provider.get_valid_token(self.identity)
            return await self._send(method, path, token, params)

        async def refresh():
            await self.token_provider.force_refresh(self.identity)

        return await self.retry_handler.execute_with_retry(operation, on_credential_expired=refresh)

    # Resources

    async def get_current_user(self) -> SpotifyUser:
        return normalize_user(await self._request("GET", "/me"))

    async def get_recently_played(self, limit: int = 50, after: Optional[datetime] = None) -> List[PlayRecord]:
        """Recently played tracks, optionally only those after a timestamp."""
        _check_limit(limit)
        params = {"limit": limit}
        if after is not None:
            params["after"] = to_millis(after)
        data = await self._request("GET", "/me/player/recently-played", params)
        plays = []
        for item in data.get("items") or []:
            if not item or not item.get("played_at"):
                logger.debug("Skipping recently-played item without played_at")
                continue
            plays.append(normalize_play(item))
        return plays

    async def get_top_tracks(self, time_range: str = "medium_term", limit: int = 50) -> List[TrackRecord]:
        _check_time_range(time_range)
        _check_limit(limit)
        data = await self._request("GET", "/me/top/tracks", {"time_range": time_range, "limit": limit})
        return [normalize_track(item) for item in data.get("items") or [] if item]

    async def get_top_artists(self, time_range: str = "medium_term", limit: int = 50) -> List[ArtistRecord]:
        _check_time_range(time_range)
        _check_limit(limit)
        data = await self._request("GET", "/me/top/artists", {"time_range": time_range, "limit": limit})
        return [normalize_artist(item) for item in data.get("items") or [] if item]

    async def get_audio_features(self, track_ids: List[str]) -> List[AudioFeatures]:
        """Audio features for up to 100 tracks; unknown ids are omitted."""
        if not track_ids:
            return []
        if len(track_ids) > MAX_AUDIO_FEATURE_IDS:
            raise ValueError(f"At most {MAX_AUDIO_FEATURE_IDS} track ids per request, got {len(track_ids)}")
        data = await self._request("GET", "/audio-features", {"ids": ",".join(track_ids)})
        return [normalize_audio_features(item) for item in data.get("audio_features") or [] if item]

    async def get_track(self, track_id: str) -> TrackRecord:
        return normalize_track(await self._request("GET", f"/tracks/{track_id}"))

    async def get_artist(self, artist_id: str) -> ArtistRecord:
        return normalize_artist(await self._request("GET", f"/artists/{artist_id}"))

    async def get_playlists(self, limit: int = 50, offset: int = 0) -> List[PlaylistRecord]:
        _check_limit(limit)
        data = await self._request("GET", "/me/playlists", {"limit": limit, "offset": offset})
        return [normalize_playlist(item) for item in data.get("items") or [] if item]

    async def get_top_playlists(self, limit: int = 10) -> List[PlaylistRecord]:
        """The user's playlists with the most tracks."""
        playlists = await self.get_playlists(limit=MAX_PAGE_SIZE)
        playlists.sort(key=lambda p: p.track_count, reverse=True)
        return playlists[:limit]
