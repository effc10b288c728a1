"""Tests for incremental listening sync against a SQLite store."""

import pytest
from datetime import timedelta
from unittest.mock import AsyncMock
from sqlalchemy import func, select

from helpers import make_artist, make_play, make_track
from tunesync.core.exceptions import UpstreamError
from tunesync.db.repository import ListeningRepository
from tunesync.models.listening import ArtistStat, MusicProfile, TrackStat
from tunesync.schemas.listening import AudioFeatures
from tunesync.services.spotify_client import SpotifyClient
from tunesync.services.sync_engine import SENTINEL_PLAYED_AT, SyncEngine
from tunesync.utils.dates import ensure_utc

@pytest.fixture
def client():
    client = AsyncMock(spec=SpotifyClient)
    client.get_recently_played.return_value = []
    client.get_top_tracks.return_value = []
    client.get_top_artists.return_value = []
    client.get_audio_features.return_value = []
    return client

@pytest.fixture
def engine_under_test(identity, client, session_factory):
    return SyncEngine(identity, client, session_factory, feature_batch_pause=0)

async def count_rows(session_factory, model) -> int:
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(model))
        return result.scalar_one()

async def track_rows(session_factory, track_id):
    async with session_factory() as session:
        result = await session.execute(select(TrackStat).where(TrackStat.track_id == track_id))
        return list(result.scalars().all())

@pytest.mark.asyncio
async def test_empty_store_inserts_every_event(engine_under_test, client, session_factory, now):
    client.get_recently_played.return_value = [
        make_play(f"t{i}", now - timedelta(minutes=i)) for i in range(5)
    ]

    result = await engine_under_test.sync_recent_plays()

    assert result.synced == 5
    assert result.total == 5
    assert await count_rows(session_factory, TrackStat) == 5
    client.get_recently_played.assert_awaited_once_with(limit=50, after=None)

@pytest.mark.asyncio
async def test_recent_sync_is_idempotent(engine_under_test, client, session_factory, now):
    plays = [make_play(f"t{i}", now - timedelta(minutes=i)) for i in range(3)]
    client.get_recently_played.return_value = plays

    await engine_under_test.sync_recent_plays()
    second = await engine_under_test.sync_recent_plays()

    assert second.synced == 0
    assert second.total == 3
    assert await count_rows(session_factory, TrackStat) == 3

@pytest.mark.asyncio
async def test_recent_sync_requests_after_watermark(engine_under_test, client, now):
    client.get_recently_played.return_value = [make_play("t1", now - timedelta(hours=1))]
    await engine_under_test.sync_recent_plays()

    client.get_recently_played.return_value = [
        make_play("t1", now - timedelta(hours=1)),
        make_play("t2", now)
    ]
    result = await engine_under_test.sync_recent_plays()

    assert client.get_recently_played.await_args.kwargs["after"] == now - timedelta(hours=1)
    # The event at the watermark itself is not re-inserted
    assert result.synced == 1

@pytest.mark.asyncio
async def test_duplicate_inserts_are_ignored(session_factory, identity, now):
    play = make_play("t1", now)
    async with session_factory() as session:
        repo = ListeningRepository(session)
        assert await repo.insert_play_events(identity.id, [play, play]) == 1
        assert await repo.insert_play_events(identity.id, [play]) == 0

@pytest.mark.asyncio
async def test_artist_counters_only_grow(engine_under_test, client, session_factory, identity):
    client.get_top_artists.return_value = [make_artist("a1", genres=["pop"]), make_artist("a2")]
    first = await engine_under_test.sync_top_artists("medium_term")

    client.get_top_artists.return_value = [
        make_artist("a1", name="Renamed", genres=["pop", "rock"], image_url="https://img/a1.jpg")
    ]
    await engine_under_test.sync_top_artists("medium_term")

    assert first.synced == 2
    async with session_factory() as session:
        artists = {a.artist_id: a for a in await ListeningRepository(session).list_artists(identity.id)}
    assert artists["a1"].play_count == 2
    assert artists["a1"].name == "Renamed"
    assert artists["a1"].genres == ["pop", "rock"]
    assert artists["a1"].image_url == "https://img/a1.jpg"
    assert artists["a2"].play_count == 1
    assert await count_rows(session_factory, ArtistStat) == 2

@pytest.mark.asyncio
async def test_unknown_top_track_gets_sentinel_event(engine_under_test, client, session_factory):
    client.get_top_tracks.return_value = [make_track("new", duration_ms=1000)]

    result = await engine_under_test.sync_top_tracks("medium_term")

    assert result.synced == 1
    assert result.total == 1
    rows = await track_rows(session_factory, "new")
    assert len(rows) == 1
    assert ensure_utc(rows[0].played_at) == SENTINEL_PLAYED_AT

    # A second pass does not add another sentinel row
    await engine_under_test.sync_top_tracks("medium_term")
    assert len(await track_rows(session_factory, "new")) == 1

@pytest.mark.asyncio
async def test_known_track_backfill_keeps_missing_fields(engine_under_test, client, session_factory, now):
    client.get_recently_played.return_value = [
        make_play("t1", now - timedelta(hours=2), image_url="https://img/old.jpg", duration_ms=1000, popularity=10),
        make_play("t1", now - timedelta(hours=1), image_url="https://img/old.jpg", duration_ms=1000, popularity=10)
    ]
    await engine_under_test.sync_recent_plays()

    client.get_top_tracks.return_value = [
        make_track("t1", name="Better Name", image_url=None, duration_ms=None, popularity=55)
    ]
    await engine_under_test.sync_top_tracks("medium_term")

    rows = await track_rows(session_factory, "t1")
    assert len(rows) == 2
    for row in rows:
        assert row.name == "Better Name"
        assert row.image_url == "https://img/old.jpg"
        assert row.duration_ms == 1000
        assert row.popularity == 55

@pytest.mark.asyncio
async def test_audio_features_merged_in_batches(identity, client, session_factory):
    engine = SyncEngine(identity, client, session_factory, feature_batch_size=2, feature_batch_pause=0)
    client.get_top_tracks.return_value = [make_track(f"t{i}") for i in range(5)]
    client.get_audio_features.side_effect = lambda ids: [
        AudioFeatures(track_id=t, energy=0.5, valence=0.25, danceability=0.75, tempo=128.0) for t in ids
    ]

    result = await engine.sync_top_tracks("medium_term")

    assert client.get_audio_features.await_count == 3
    assert [len(c.args[0]) for c in client.get_audio_features.await_args_list] == [2, 2, 1]
    assert result.audio_features_updated == 5
    row = (await track_rows(session_factory, "t3"))[0]
    assert (row.energy, row.valence, row.danceability, row.tempo) == (0.5, 0.25, 0.75, 128.0)

@pytest.mark.asyncio
async def test_failed_feature_batch_is_skipped(identity, client, session_factory):
    engine = SyncEngine(identity, client, session_factory, feature_batch_size=1, feature_batch_pause=0)
    client.get_top_tracks.return_value = [make_track("t1"), make_track("t2")]
    client.get_audio_features.side_effect = [
        UpstreamError("server error", status=502),
        [AudioFeatures(track_id="t2", energy=0.9)]
    ]

    result = await engine.sync_top_tracks("medium_term")

    assert result.synced == 2
    assert result.audio_features_updated == 1
    assert (await track_rows(session_factory, "t1"))[0].energy is None
    assert (await track_rows(session_factory, "t2"))[0].energy == 0.9

@pytest.mark.asyncio
async def test_sync_all_runs_every_step_and_builds_profile(engine_under_test, client, session_factory, identity, now):
    client.get_recently_played.return_value = [make_play("t1", now)]
    client.get_top_tracks.return_value = [make_track("t1"), make_track("t2")]
    client.get_top_artists.return_value = [make_artist("a1", genres=["pop", "rock"])]

    result = await engine_under_test.sync_all("short_term")

    assert result.recent.synced == 1
    assert result.tracks.synced == 2
    assert result.artists.synced == 1
    assert result.profile_updated is True
    client.get_top_tracks.assert_awaited_once_with("short_term", 50)
    client.get_top_artists.assert_awaited_once_with("short_term", 50)

    async with session_factory() as session:
        profile = await ListeningRepository(session).get_profile(identity.id)
    assert profile is not None
    assert profile.genre_dist == {"pop": 0.5, "rock": 0.5}
    assert await count_rows(session_factory, MusicProfile) == 1
