"""Read paths over listening data, with cache fallback when the store is down."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import async_sessionmaker

from tunesync.core.exceptions import MissingCredentialsError, NotFoundError, StoreUnavailableError, UpstreamError
from tunesync.db.async_session import get_session_factory
from tunesync.db.repository import ListeningRepository
from tunesync.models.identity import Identity
from tunesync.models.listening import TrackStat
from tunesync.schemas.cache import DatasetLabel
from tunesync.schemas.listening import PlayRecord
from tunesync.schemas.profile import (
    CountedArtist,
    CountedTrack,
    Dashboard,
    DashboardArtist,
    ListeningStats,
    ListeningTime,
    ProfileDocument,
    dashboard_artist
)
from tunesync.services.cache_store import LocalCache
from tunesync.services.fallback import FallbackOrchestrator, FallbackResult
from tunesync.services.profile_aggregator import build_degraded_profile
from tunesync.services.spotify_client import SpotifyClient
from tunesync.services.sync_engine import SENTINEL_PLAYED_AT, SyncEngine
from tunesync.utils.dates import ensure_utc

logger = logging.getLogger(__name__)

STATS_WINDOWS: Dict[str, Optional[timedelta]] = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "all": None,
}

STATS_TOP_N = 10
DASHBOARD_ARTISTS = 10
DASHBOARD_RECENT = 20
DASHBOARD_TOP_TRACKS = 10

def play_record_from_row(row: TrackStat) -> PlayRecord:
    return PlayRecord(
        track_id=row.track_id,
        name=row.name,
        artist=row.artist,
        image_url=row.image_url,
        duration_ms=row.duration_ms,
        popularity=row.popularity,
        played_at=ensure_utc(row.played_at)
    )

def window_start(window: str, now: Optional[datetime] = None) -> Optional[datetime]:
    if window not in STATS_WINDOWS:
        raise ValueError(f"Invalid time range {window!r}, expected one of {', '.join(STATS_WINDOWS)}")
    delta = STATS_WINDOWS[window]
    if delta is None:
        return None
    return (now or datetime.now(timezone.utc)) - delta

def compute_listening_stats(plays: Sequence[PlayRecord], window: str) -> ListeningStats:
    """Summaries over plays ordered oldest first."""
    track_counts: Dict[str, int] = {}
    track_info: Dict[str, PlayRecord] = {}
    artist_counts: Dict[str, int] = {}
    hourly = [0] * 24
    total_ms = 0

    for play in plays:
        track_counts[play.track_id] = track_counts.get(play.track_id, 0) + 1
        track_info[play.track_id] = play
        artist_counts[play.artist] = artist_counts.get(play.artist, 0) + 1
        hourly[ensure_utc(play.played_at).hour] += 1
        total_ms += play.duration_ms or 0

    top_tracks = sorted(track_counts.items(), key=lambda item: item[1], reverse=True)[:STATS_TOP_N]
    top_artists = sorted(artist_counts.items(), key=lambda item: item[1], reverse=True)[:STATS_TOP_N]

    return ListeningStats(
        time_range=window,
        total_tracks=len(plays),
        unique_tracks=len(track_counts),
        unique_artists=len(artist_counts),
        total_listening_time=ListeningTime(
            hours=total_ms // 3_600_000,
            minutes=(total_ms % 3_600_000) // 60_000,
            total_ms=total_ms
        ),
        top_tracks=[
            CountedTrack(
                track_id=track_id,
                name=track_info[track_id].name,
                artist=track_info[track_id].artist,
                image_url=track_info[track_id].image_url,
                count=count
            )
            for track_id, count in top_tracks
        ],
        top_artists=[CountedArtist(name=name, count=count) for name, count in top_artists],
        hourly_activity=hourly,
        first_track=plays[0] if plays else None,
        last_track=plays[-1] if plays else None
    )

class AnalysisService:
    """Profile, dashboard, statistics and recent-track reads for one identity."""

    def __init__(
        self,
        identity: Identity,
        client: SpotifyClient,
        orchestrator: FallbackOrchestrator,
        session_factory: Optional[async_sessionmaker] = None,
        engine: Optional[SyncEngine] = None
    ):
        self.identity = identity
        self.client = client
        self.orchestrator = orchestrator
        self._session_factory = session_factory
        self.engine = engine or SyncEngine(identity, client, session_factory)

    @property
    def user_id(self) -> str:
        return self.identity.id

    @property
    def session_factory(self) -> async_sessionmaker:
        return self._session_factory or get_session_factory()

    async def _fetch_or_empty(self, fetch: Callable[..., Awaitable[List[Any]]], what: str, *args) -> List[Any]:
        try:
            return await fetch(*args)
        except (UpstreamError, MissingCredentialsError) as e:
            logger.warning(f"Could not fetch {what} for {self.user_id}: {str(e)}")
            return []

    # Profile

    async def _read_profile(self) -> Optional[ProfileDocument]:
        async with self.session_factory() as session:
            row = await ListeningRepository(session).get_profile(self.user_id)
        if row is None:
            return None
        profile = ProfileDocument.model_validate(row)
        profile.last_updated = ensure_utc(profile.last_updated)
        return profile

    async def get_profile(self) -> FallbackResult[ProfileDocument]:
        """Stored profile (synced on first request), or a degraded one while the store is down."""

        async def from_store() -> ProfileDocument:
            profile = await self._read_profile()
            if profile is None:
                logger.info(f"No profile stored for {self.user_id}, running a full sync")
                await self.engine.sync_all()
                profile = await self._read_profile()
            if profile is None:
                raise NotFoundError(f"Profile for {self.user_id} could not be built")
            return profile

        async def from_cache(cache: LocalCache) -> ProfileDocument:
            cached = await cache.load_typed(self.user_id, DatasetLabel.PROFILE)
            if cached is not None:
                return cached

            tracks = await self._fetch_or_empty(self.client.get_top_tracks, "top tracks")
            artists = await self._fetch_or_empty(self.client.get_top_artists, "top artists")
            recent = await self._fetch_or_empty(self.client.get_recently_played, "recent plays")
            await cache.save(self.user_id, DatasetLabel.TOP_TRACKS, tracks)
            await cache.save(self.user_id, DatasetLabel.TOP_ARTISTS, artists)
            await cache.save(self.user_id, DatasetLabel.RECENT_TRACKS, recent)

            profile = build_degraded_profile(tracks, artists, recent)
            if tracks or artists or recent:
                await cache.save(self.user_id, DatasetLabel.PROFILE, profile)
            else:
                logger.warning(f"No upstream data for {self.user_id}, degraded profile not cached")
            return profile

        return await self.orchestrator.try_primary_or_secondary(
            from_store,
            from_cache,
            identity_id=self.user_id,
            dataset_label=DatasetLabel.PROFILE.value
        )

    # Statistics

    async def get_listening_stats(self, window: str = "7d") -> ListeningStats:
        """Listening statistics over 24h, 7d, 30d or all of the stored history."""
        since = window_start(window)
        async with self.session_factory() as session:
            rows = await ListeningRepository(session).list_play_events(
                self.user_id,
                since=since,
                exclude_played_at=SENTINEL_PLAYED_AT
            )
        return compute_listening_stats([play_record_from_row(r) for r in rows], window)

    # Dashboard

    async def get_dashboard(self) -> FallbackResult[Dashboard]:

        async def from_store() -> Dashboard:
            stats = await self.get_listening_stats("30d")
            async with self.session_factory() as session:
                repo = ListeningRepository(session)
                artists = await repo.list_artists(self.user_id, limit=DASHBOARD_ARTISTS)
                recent = await repo.list_play_events(
                    self.user_id,
                    limit=DASHBOARD_RECENT,
                    newest_first=True,
                    exclude_played_at=SENTINEL_PLAYED_AT
                )
            top_tracks = await self._fetch_or_empty(
                self.client.get_top_tracks, "top tracks", "short_term", DASHBOARD_TOP_TRACKS
            )
            return Dashboard(
                stats=stats,
                top_artists=[
                    DashboardArtist(
                        artist_id=a.artist_id,
                        name=a.name,
                        genres=list(a.genres or []),
                        image_url=a.image_url,
                        play_count=a.play_count
                    )
                    for a in artists
                ],
                recent_tracks=[play_record_from_row(r) for r in recent],
                spotify_top_tracks=top_tracks
            )

        async def from_cache(cache: LocalCache) -> Dashboard:
            cached = await cache.load_typed(self.user_id, DatasetLabel.DASHBOARD)
            if cached is not None:
                return cached

            recent = await self._fetch_or_empty(self.client.get_recently_played, "recent plays")
            artists = await self._fetch_or_empty(
                self.client.get_top_artists, "top artists", "short_term", DASHBOARD_ARTISTS
            )
            top_tracks = await self._fetch_or_empty(
                self.client.get_top_tracks, "top tracks", "short_term", DASHBOARD_TOP_TRACKS
            )
            since = window_start("30d")
            in_window = sorted(
                (p for p in recent if p.played_at >= since),
                key=lambda p: p.played_at
            )
            dashboard = Dashboard(
                stats=compute_listening_stats(in_window, "30d"),
                top_artists=[dashboard_artist(a) for a in artists],
                recent_tracks=recent[:DASHBOARD_RECENT],
                spotify_top_tracks=top_tracks
            )
            await cache.save(self.user_id, DatasetLabel.DASHBOARD, dashboard)
            return dashboard

        return await self.orchestrator.try_primary_or_secondary(
            from_store,
            from_cache,
            identity_id=self.user_id,
            dataset_label=DatasetLabel.DASHBOARD.value
        )

    # Recent tracks

    async def get_recent_tracks(self, limit: int = 20) -> FallbackResult[List[PlayRecord]]:
        """Fresh recent plays, persisted to the store or the cache.

        When the upstream fetch fails the cached copy is returned instead, if any.
        """
        try:
            plays = await self.client.get_recently_played(limit=limit)
        except UpstreamError:
            cached = await self.orchestrator.cache.load_typed(self.user_id, DatasetLabel.RECENT_TRACKS)
            if cached is None:
                raise
            logger.warning(f"Serving cached recent tracks for {self.user_id}")
            return FallbackResult(value=cached[:limit], source="cache", degraded=True)

        async def to_store() -> List[PlayRecord]:
            await self.engine.store_recent_plays(plays)
            return plays

        async def to_cache(cache: LocalCache) -> List[PlayRecord]:
            await cache.save(self.user_id, DatasetLabel.RECENT_TRACKS, plays)
            return plays

        return await self.orchestrator.try_primary_or_secondary(
            to_store,
            to_cache,
            identity_id=self.user_id,
            dataset_label=DatasetLabel.RECENT_TRACKS.value
        )

    # Cache import

    async def import_cache(self) -> Dict[str, Dict[str, Any]]:
        """Replay cached profile and recent tracks into the store once it is back."""
        if not await self.orchestrator.gate.probe():
            raise StoreUnavailableError("Database unavailable, cannot import cached data")

        cache = self.orchestrator.cache
        imported: Dict[str, Any] = {}
        errors: Dict[str, str] = {}

        profile = await cache.load_typed(self.user_id, DatasetLabel.PROFILE)
        # Stored profiles have no degraded column
        if profile is not None and profile.degraded:
            logger.info(f"Skipping degraded cached profile for {self.user_id}")
        elif profile is not None:
            try:
                async with self.session_factory() as session:
                    await ListeningRepository(session).upsert_profile(self.user_id, profile)
                imported[DatasetLabel.PROFILE.value] = 1
            except Exception as e:
                logger.error(f"Failed to import cached profile for {self.user_id}: {str(e)}")
                errors[DatasetLabel.PROFILE.value] = str(e)

        recent = await cache.load_typed(self.user_id, DatasetLabel.RECENT_TRACKS)
        if recent:
            try:
                async with self.session_factory() as session:
                    count = await ListeningRepository(session).insert_play_events(self.user_id, recent)
                imported[DatasetLabel.RECENT_TRACKS.value] = count
            except Exception as e:
                logger.error(f"Failed to import cached recent tracks for {self.user_id}: {str(e)}")
                errors[DatasetLabel.RECENT_TRACKS.value] = str(e)

        logger.info(f"Cache import for {self.user_id}: imported={imported} errors={list(errors)}")
        return {"imported": imported, "errors": errors}
