"""
Taste profile aggregation.

The pure functions below work on anything shaped like a play event
(``track_id``, ``name``, ``artist``, ``image_url`` and optional audio
features) so the same ranking serves stored history and freshly fetched
upstream data.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
from sqlalchemy.ext.asyncio import async_sessionmaker

from tunesync.db.async_session import get_session_factory
from tunesync.db.repository import ListeningRepository
from tunesync.schemas.listening import ArtistRecord, PlayRecord, TrackRecord
from tunesync.schemas.profile import ProfileDocument, RankedArtist, RankedTrack

logger = logging.getLogger(__name__)

TOP_N = 20

def rank_tracks(events: Iterable, limit: int = TOP_N) -> List[RankedTrack]:
    """Group events by track, most played first; ties keep first-seen order."""
    counts: Dict[str, int] = {}
    latest: Dict[str, object] = {}
    for event in events:
        counts[event.track_id] = counts.get(event.track_id, 0) + 1
        latest[event.track_id] = event

    # dicts keep insertion order and sorted() is stable
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [
        RankedTrack(
            track_id=track_id,
            name=latest[track_id].name,
            artist=latest[track_id].artist,
            image_url=latest[track_id].image_url,
            plays=count
        )
        for track_id, count in ranked[:limit]
    ]

def rank_artists(artists: Iterable, limit: int = TOP_N) -> List[RankedArtist]:
    """Stored artist aggregates by play_count, highest first."""
    ranked = sorted(artists, key=lambda a: a.play_count or 0, reverse=True)
    return [
        RankedArtist(
            artist_id=a.artist_id,
            name=a.name,
            plays=a.play_count or 0,
            genres=list(a.genres or []),
            image_url=a.image_url
        )
        for a in ranked[:limit]
    ]

def genre_distribution(artists: Iterable[RankedArtist]) -> Dict[str, float]:
    """
    Normalized genre weights.

    Each genre of an artist receives the artist's full weight (its play
    count, 1 when missing or zero). Artists without genres do not count
    toward the total, so the result sums to 1.0 whenever it is non-empty.
    """
    weights: Dict[str, float] = {}
    total = 0.0
    for artist in artists:
        if not artist.genres:
            continue
        weight = artist.plays or 1
        for genre in artist.genres:
            weights[genre] = weights.get(genre, 0.0) + weight
        total += weight * len(artist.genres)

    if total <= 0:
        return {}
    normalized = ((genre, weight / total) for genre, weight in weights.items())
    return dict(sorted(normalized, key=lambda item: item[1], reverse=True))

def weighted_feature_average(events: Sequence, feature: str) -> Optional[float]:
    """Average a feature over distinct tracks, weighted by how often each was played."""
    counts: Dict[str, int] = {}
    values: Dict[str, float] = {}
    for event in events:
        counts[event.track_id] = counts.get(event.track_id, 0) + 1
        value = getattr(event, feature, None)
        if value is not None:
            values[event.track_id] = value

    if not values:
        return None
    track_ids = list(values)
    return float(np.average(
        np.array([values[t] for t in track_ids], dtype=float),
        weights=np.array([counts[t] for t in track_ids], dtype=float)
    ))

def compute_profile(events: Sequence, artists: Iterable, top_n: int = TOP_N) -> ProfileDocument:
    top_artists = rank_artists(artists, limit=top_n)
    return ProfileDocument(
        top_tracks=rank_tracks(events, limit=top_n),
        top_artists=top_artists,
        genre_dist=genre_distribution(top_artists),
        avg_energy=weighted_feature_average(events, "energy"),
        avg_valence=weighted_feature_average(events, "valence"),
        last_updated=datetime.now(timezone.utc)
    )

def build_degraded_profile(
    top_tracks: Sequence[TrackRecord],
    top_artists: Sequence[ArtistRecord],
    recent_plays: Sequence[PlayRecord],
    top_n: int = TOP_N
) -> ProfileDocument:
    """
    Lower-fidelity profile from upstream data alone, used while the store is down.

    Every fetched track and artist counts once; upstream top tracks keep their
    order and recent-only tracks follow. No audio features are available.
    """
    seen: Dict[str, RankedTrack] = {}
    for track in list(top_tracks) + list(recent_plays):
        if track.track_id not in seen:
            seen[track.track_id] = RankedTrack(
                track_id=track.track_id,
                name=track.name,
                artist=track.artist,
                image_url=track.image_url,
                plays=1
            )

    ranked_artists = [
        RankedArtist(
            artist_id=a.artist_id,
            name=a.name,
            plays=1,
            genres=list(a.genres),
            image_url=a.image_url
        )
        for a in list(top_artists)[:top_n]
    ]
    return ProfileDocument(
        top_tracks=list(seen.values())[:top_n],
        top_artists=ranked_artists,
        genre_dist=genre_distribution(ranked_artists),
        avg_energy=None,
        avg_valence=None,
        last_updated=datetime.now(timezone.utc),
        degraded=True
    )

class ProfileAggregator:
    """Rebuilds and stores a user's taste profile from their listening history."""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None, top_n: int = TOP_N):
        self._session_factory = session_factory
        self.top_n = top_n

    @property
    def session_factory(self) -> async_sessionmaker:
        return self._session_factory or get_session_factory()

    async def build_profile(self, user_id: str) -> ProfileDocument:
        """Recompute the profile from stored events and artists and replace the stored one."""
        async with self.session_factory() as session:
            repo = ListeningRepository(session)
            events = await repo.list_play_events(user_id)
            artists = await repo.list_artists(user_id, limit=self.top_n)
            profile = compute_profile(events, artists, top_n=self.top_n)
            await repo.upsert_profile(user_id, profile)

        logger.info(
            f"Built profile for {user_id}: {len(profile.top_tracks)} tracks, "
            f"{len(profile.top_artists)} artists, {len(profile.genre_dist)} genres"
        )
        return profile
