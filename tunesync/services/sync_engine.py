"""Incremental sync of upstream listening data into the store."""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional, Sequence

from sqlalchemy.ext.asyncio import async_sessionmaker

from tunesync.core.config import get_settings
from tunesync.core.exceptions import UpstreamError
from tunesync.db.async_session import get_session_factory
from tunesync.db.repository import ListeningRepository
from tunesync.models.identity import Identity
from tunesync.schemas.listening import (
    UNKNOWN_ID,
    ArtistSyncResult,
    FullSyncResult,
    PlayRecord,
    RecentSyncResult,
    TopTracksSyncResult
)
from tunesync.services.profile_aggregator import ProfileAggregator
from tunesync.services.spotify_client import SpotifyClient
from tunesync.utils.logging import setup_logger

logger = setup_logger(__name__)

# played_at given to tracks known only from top-track lists
SENTINEL_PLAYED_AT = datetime(2000, 1, 1, tzinfo=timezone.utc)

# Pause between audio-feature batches, in seconds
FEATURE_BATCH_PAUSE = 0.1

class SyncEngine:
    """Reconciles one identity's upstream listening data with the store.

    Writes go straight to the store; there is no cache variant of this path.
    """

    def __init__(
        self,
        identity: Identity,
        client: SpotifyClient,
        session_factory: Optional[async_sessionmaker] = None,
        aggregator: Optional[ProfileAggregator] = None,
        page_size: Optional[int] = None,
        feature_batch_size: Optional[int] = None,
        feature_batch_pause: float = FEATURE_BATCH_PAUSE
    ):
        settings = get_settings()
        self.identity = identity
        self.client = client
        self._session_factory = session_factory
        self.aggregator = aggregator or ProfileAggregator(session_factory)
        self.page_size = page_size or settings.SYNC_PAGE_SIZE
        self.feature_batch_size = feature_batch_size or settings.SYNC_FEATURE_BATCH_SIZE
        self.feature_batch_pause = feature_batch_pause
        self.default_time_range = settings.SYNC_TIME_RANGE

    @property
    def user_id(self) -> str:
        return self.identity.id

    @asynccontextmanager
    async def _repository(self) -> AsyncIterator[ListeningRepository]:
        factory = self._session_factory or get_session_factory()
        async with factory() as session:
            yield ListeningRepository(session)

    async def store_recent_plays(self, plays: Sequence[PlayRecord]) -> int:
        """Insert plays newer than the stored watermark; returns how many were new."""
        async with self._repository() as repo:
            watermark = await repo.latest_played_at(self.user_id)
            fresh = [p for p in plays if watermark is None or p.played_at > watermark]
            return await repo.insert_play_events(self.user_id, fresh)

    async def sync_recent_plays(self) -> RecentSyncResult:
        """Fetch plays after the watermark and insert the new ones."""
        async with self._repository() as repo:
            watermark = await repo.latest_played_at(self.user_id)

        plays = await self.client.get_recently_played(limit=self.page_size, after=watermark)
        synced = await self.store_recent_plays(plays)

        logger.info(f"Synced {synced} of {len(plays)} recent plays for {self.user_id}")
        return RecentSyncResult(synced=synced, total=len(plays))

    async def sync_top_artists(self, time_range: Optional[str] = None, limit: int = 50) -> ArtistSyncResult:
        """Upsert-increment every top artist."""
        artists = await self.client.get_top_artists(time_range or self.default_time_range, limit)
        async with self._repository() as repo:
            for artist in artists:
                await repo.upsert_artist_increment(self.user_id, artist)

        logger.info(f"Synced {len(artists)} top artists for {self.user_id}")
        return ArtistSyncResult(synced=len(artists))

    async def sync_top_tracks(self, time_range: Optional[str] = None, limit: int = 50) -> TopTracksSyncResult:
        """Back-fill known tracks, add unknown ones at the sentinel time, then merge audio features."""
        tracks = await self.client.get_top_tracks(time_range or self.default_time_range, limit)

        synced = 0
        async with self._repository() as repo:
            for track in tracks:
                if await repo.has_track(self.user_id, track.track_id):
                    await repo.backfill_track(self.user_id, track)
                else:
                    await repo.insert_sentinel_play(self.user_id, track, SENTINEL_PLAYED_AT)
                synced += 1

        updated = await self._sync_audio_features([t.track_id for t in tracks])

        logger.info(
            f"Synced {synced} top tracks for {self.user_id}, "
            f"audio features updated for {updated}"
        )
        return TopTracksSyncResult(synced=synced, total=len(tracks), audio_features_updated=updated)

    async def _sync_audio_features(self, track_ids: List[str]) -> int:
        track_ids = [t for t in dict.fromkeys(track_ids) if t and t != UNKNOWN_ID]
        batches = [
            track_ids[i:i + self.feature_batch_size]
            for i in range(0, len(track_ids), self.feature_batch_size)
        ]

        updated = 0
        for index, batch in enumerate(batches):
            if index > 0 and self.feature_batch_pause:
                await asyncio.sleep(self.feature_batch_pause)
            try:
                features = await self.client.get_audio_features(batch)
            except UpstreamError as e:
                logger.warning(f"Skipping audio features for {len(batch)} tracks: {str(e)}")
                continue

            async with self._repository() as repo:
                for item in features:
                    if await repo.update_audio_features(self.user_id, item):
                        updated += 1
        return updated

    async def sync_all(self, time_range: Optional[str] = None) -> FullSyncResult:
        """Recent plays, top tracks, top artists, then the profile, in that order."""
        time_range = time_range or self.default_time_range
        recent = await self.sync_recent_plays()
        tracks = await self.sync_top_tracks(time_range)
        artists = await self.sync_top_artists(time_range)
        await self.aggregator.build_profile(self.user_id)
        return FullSyncResult(recent=recent, tracks=tracks, artists=artists, profile_updated=True)
