"""Tests for the Spotify Web API client."""

import re
import asyncio
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch
from aioresponses import aioresponses

from tunesync.core.exceptions import UpstreamError, UpstreamNotFoundError, UpstreamTimeoutError
from tunesync.schemas.listening import UNKNOWN_ARTIST, UNKNOWN_ID, UNKNOWN_TRACK, UNTITLED_PLAYLIST
from tunesync.services.spotify_client import SpotifyClient, normalize_artist, normalize_track
from tunesync.utils.retry_handler import RetryHandler

API = "https://api.spotify.com/v1"

def endpoint(path: str):
    return re.compile(rf"^{re.escape(API + path)}(\?.*)?$")

@pytest.fixture
def token_provider():
    provider = AsyncMock()
    provider.get_valid_token.return_value = "access-token"
    provider.force_refresh.return_value = "new-access-token"
    return provider

@pytest.fixture
def client(identity, token_provider):
    return SpotifyClient(
        identity,
        token_provider,
        retry_handler=RetryHandler(max_retries=3, base_delay=1.0),
        base_url=API,
        timeout=5
    )

@pytest.fixture
def mock_sleep():
    with patch("tunesync.utils.retry_handler.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep

@pytest.fixture
def recently_played_response():
    return {
        "items": [
            {
                "played_at": "2024-05-01T10:00:00.000Z",
                "track": {
                    "id": "t1",
                    "name": "First",
                    "duration_ms": 200000,
                    "popularity": 70,
                    "artists": [{"id": "a1", "name": "Artist One"}, {"id": "a2", "name": "Artist Two"}],
                    "album": {"images": [{"url": "https://img/t1.jpg"}]}
                }
            },
            {
                "played_at": "2024-05-01T09:00:00Z",
                "track": {"artists": [], "album": {"images": []}}
            }
        ]
    }

def test_normalize_track_fills_placeholders():
    track = normalize_track({})
    assert track.track_id == UNKNOWN_ID
    assert track.name == UNKNOWN_TRACK
    assert track.artist == UNKNOWN_ARTIST
    assert track.image_url is None
    assert track.duration_ms is None

def test_normalize_artist_fills_placeholders():
    artist = normalize_artist({"id": "a1", "followers": None})
    assert artist.name == UNKNOWN_ARTIST
    assert artist.genres == []
    assert artist.followers == 0

@pytest.mark.asyncio
async def test_get_recently_played_normalizes(client, recently_played_response):
    with aioresponses() as m:
        m.get(endpoint("/me/player/recently-played"), payload=recently_played_response)
        plays = await client.get_recently_played()

    assert len(plays) == 2
    first, second = plays
    assert first.track_id == "t1"
    assert first.artist == "Artist One, Artist Two"
    assert first.artist_ids == ["a1", "a2"]
    assert first.image_url == "https://img/t1.jpg"
    assert first.played_at == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    assert second.track_id == UNKNOWN_ID
    assert second.name == UNKNOWN_TRACK
    assert second.artist == UNKNOWN_ARTIST
    assert second.image_url is None

@pytest.mark.asyncio
async def test_get_recently_played_sends_after_cursor(client):
    after = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    with aioresponses() as m:
        m.get(endpoint("/me/player/recently-played"), payload={"items": []})
        await client.get_recently_played(limit=50, after=after)
        (method, url), = m.requests.keys()

    assert method == "GET"
    assert url.query["after"] == str(int(after.timestamp() * 1000))
    assert url.query["limit"] == "50"

@pytest.mark.asyncio
async def test_rate_limit_waits_retry_after(client, mock_sleep):
    with aioresponses() as m:
        m.get(endpoint("/me/top/artists"), status=429, headers={"Retry-After": "3"},
              payload={"error": {"status": 429, "message": "API rate limit exceeded"}})
        m.get(endpoint("/me/top/artists"), payload={"items": [{"id": "a1", "name": "A", "genres": ["pop"]}]})
        artists = await client.get_top_artists("short_term", 10)

    assert [a.artist_id for a in artists] == ["a1"]
    mock_sleep.assert_awaited_once_with(3.0)

@pytest.mark.asyncio
async def test_expired_token_is_refreshed_once(client, token_provider):
    with aioresponses() as m:
        m.get(endpoint("/me"), status=401, payload={"error": {"status": 401, "message": "The access token expired"}})
        m.get(endpoint("/me"), payload={"id": "spotify-123", "display_name": "Listener"})
        user = await client.get_current_user()

    assert user.spotify_id == "spotify-123"
    token_provider.force_refresh.assert_awaited_once()

@pytest.mark.asyncio
async def test_not_found(client):
    with aioresponses() as m:
        m.get(endpoint("/tracks/missing"), status=404, payload={"error": {"status": 404, "message": "Not found"}})
        with pytest.raises(UpstreamNotFoundError):
            await client.get_track("missing")

@pytest.mark.asyncio
async def test_server_error_is_not_retried(client, mock_sleep):
    with aioresponses() as m:
        m.get(endpoint("/artists/a1"), status=500, payload={"error": {"status": 500, "message": "boom"}})
        with pytest.raises(UpstreamError) as exc_info:
            await client.get_artist("a1")

    assert exc_info.value.status == 500
    assert "boom" in str(exc_info.value)
    mock_sleep.assert_not_awaited()

@pytest.mark.asyncio
async def test_timeout_surfaces_as_upstream_timeout(client):
    with aioresponses() as m:
        m.get(endpoint("/me"), exception=asyncio.TimeoutError())
        with pytest.raises(UpstreamTimeoutError):
            await client.get_current_user()

@pytest.mark.asyncio
async def test_audio_features_skip_nulls(client):
    with aioresponses() as m:
        m.get(endpoint("/audio-features"), payload={"audio_features": [
            {"id": "t1", "energy": 0.8, "valence": 0.4, "danceability": 0.6, "tempo": 120.0},
            None
        ]})
        features = await client.get_audio_features(["t1", "t2"])

    assert len(features) == 1
    assert features[0].track_id == "t1"
    assert features[0].energy == 0.8

@pytest.mark.asyncio
async def test_audio_features_limits(client):
    assert await client.get_audio_features([]) == []
    with pytest.raises(ValueError):
        await client.get_audio_features([f"t{i}" for i in range(101)])

@pytest.mark.asyncio
async def test_invalid_time_range(client):
    with pytest.raises(ValueError):
        await client.get_top_tracks("forever")

@pytest.mark.asyncio
async def test_top_playlists_sorted_by_track_count(client):
    with aioresponses() as m:
        m.get(endpoint("/me/playlists"), payload={"items": [
            {"id": "p1", "name": "Small", "tracks": {"total": 3}},
            {"id": "p2", "tracks": {"total": 40}, "owner": {"display_name": "Me"}},
            {"id": "p3", "name": "Medium", "tracks": {"total": 12}}
        ]})
        playlists = await client.get_top_playlists(limit=2)

    assert [p.playlist_id for p in playlists] == ["p2", "p3"]
    assert playlists[0].name == UNTITLED_PLAYLIST
    assert playlists[0].owner == "Me"
