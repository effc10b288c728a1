"""Store access for listening history, artist aggregates and profiles."""
from datetime import datetime
from typing import Iterable, List, Optional
import logging

from sqlalchemy import select, update, func, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from tunesync.core.exceptions import NotFoundError
from tunesync.models.listening import User, TrackStat, ArtistStat, MusicProfile, utc_now
from tunesync.schemas.listening import ArtistRecord, AudioFeatures, PlayRecord, TrackRecord
from tunesync.schemas.profile import ProfileDocument
from tunesync.utils.dates import ensure_utc

logger = logging.getLogger(__name__)

class ListeningRepository:
    """Thin async repository over the listening tables.

    Every write commits before returning. Composite-key writes are single
    INSERT ... ON CONFLICT statements so concurrent syncs for the same user
    cannot produce duplicates or lost increments.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    def _insert(self, model):
        dialect = self.session.bind.dialect.name
        if dialect == "postgresql":
            return pg_insert(model)
        if dialect == "sqlite":
            return sqlite_insert(model)
        raise NotImplementedError(f"Atomic upserts are not supported on dialect {dialect}")

    async def ping(self) -> None:
        """Run a trivial query; raises when the store cannot be reached."""
        await self.session.execute(text("SELECT 1"))

    # Users

    async def get_user(self, user_id: str) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def list_syncable_users(self) -> List[User]:
        """Users holding a refresh token, in a stable order."""
        stmt = (
            select(User)
            .where(User.refresh_token.is_not(None), User.refresh_token != "")
            .order_by(User.created_at, User.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update_user_tokens(
        self,
        user_id: str,
        access_token: str,
        token_expires_at: datetime,
        refresh_token: Optional[str] = None
    ) -> None:
        values = {
            "access_token": access_token,
            "token_expires_at": token_expires_at,
            "updated_at": utc_now(),
        }
        if refresh_token:
            values["refresh_token"] = refresh_token
        result = await self.session.execute(
            update(User).where(User.id == user_id).values(**values)
        )
        if result.rowcount == 0:
            await self.session.rollback()
            raise NotFoundError(f"User {user_id} not found")
        await self.session.commit()

    # Play events

    async def latest_played_at(self, user_id: str) -> Optional[datetime]:
        """Watermark: the newest played_at stored for the user."""
        result = await self.session.execute(
            select(func.max(TrackStat.played_at)).where(TrackStat.user_id == user_id)
        )
        return ensure_utc(result.scalar_one_or_none())

    def _play_insert(self, user_id: str, track: TrackRecord, played_at: datetime):
        stmt = self._insert(TrackStat).values(
            user_id=user_id,
            track_id=track.track_id,
            name=track.name,
            artist=track.artist,
            image_url=track.image_url,
            played_at=ensure_utc(played_at),
            duration_ms=track.duration_ms,
            popularity=track.popularity,
            created_at=utc_now()
        )
        return stmt.on_conflict_do_nothing(index_elements=["user_id", "track_id", "played_at"])

    async def insert_play_events(self, user_id: str, plays: Iterable[PlayRecord]) -> int:
        """Insert plays, silently skipping ones already stored. Returns the inserted count."""
        inserted = 0
        for play in plays:
            result = await self.session.execute(self._play_insert(user_id, play, play.played_at))
            inserted += max(result.rowcount or 0, 0)
        await self.session.commit()
        return inserted

    async def insert_sentinel_play(self, user_id: str, track: TrackRecord, played_at: datetime) -> bool:
        """Insert a placeholder event so a top track without history still has a row."""
        result = await self.session.execute(self._play_insert(user_id, track, played_at))
        await self.session.commit()
        return (result.rowcount or 0) > 0

    async def has_track(self, user_id: str, track_id: str) -> bool:
        result = await self.session.execute(
            select(TrackStat.id)
            .where(TrackStat.user_id == user_id, TrackStat.track_id == track_id)
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def backfill_track(self, user_id: str, track: TrackRecord) -> int:
        """Refresh metadata on every stored event of a track.

        Image, duration and popularity keep their stored values when the
        upstream record lacks them.
        """
        values = {"name": track.name, "artist": track.artist}
        if track.image_url:
            values["image_url"] = track.image_url
        if track.duration_ms is not None:
            values["duration_ms"] = track.duration_ms
        if track.popularity is not None:
            values["popularity"] = track.popularity
        result = await self.session.execute(
            update(TrackStat)
            .where(TrackStat.user_id == user_id, TrackStat.track_id == track.track_id)
            .values(**values)
        )
        await self.session.commit()
        return result.rowcount

    async def update_audio_features(self, user_id: str, features: AudioFeatures) -> int:
        result = await self.session.execute(
            update(TrackStat)
            .where(TrackStat.user_id == user_id, TrackStat.track_id == features.track_id)
            .values(
                energy=features.energy,
                valence=features.valence,
                danceability=features.danceability,
                tempo=features.tempo
            )
        )
        await self.session.commit()
        return result.rowcount

    async def list_play_events(
        self,
        user_id: str,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
        newest_first: bool = False,
        exclude_played_at: Optional[datetime] = None
    ) -> List[TrackStat]:
        stmt = select(TrackStat).where(TrackStat.user_id == user_id)
        if since is not None:
            stmt = stmt.where(TrackStat.played_at >= since)
        if exclude_played_at is not None:
            stmt = stmt.where(TrackStat.played_at != exclude_played_at)
        if newest_first:
            stmt = stmt.order_by(TrackStat.played_at.desc(), TrackStat.id.desc())
        else:
            stmt = stmt.order_by(TrackStat.played_at, TrackStat.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # Artists

    async def upsert_artist_increment(self, user_id: str, artist: ArtistRecord) -> None:
        """Insert the artist with play_count 1, or bump play_count and refresh metadata."""
        now = utc_now()
        stmt = self._insert(ArtistStat).values(
            user_id=user_id,
            artist_id=artist.artist_id,
            name=artist.name,
            genres=list(artist.genres),
            image_url=artist.image_url,
            play_count=1,
            created_at=now,
            updated_at=now
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "artist_id"],
            set_={
                "play_count": ArtistStat.play_count + 1,
                "name": stmt.excluded.name,
                "genres": stmt.excluded.genres,
                "image_url": stmt.excluded.image_url,
                "updated_at": stmt.excluded.updated_at,
            }
        )
        await self.session.execute(stmt)
        await self.session.commit()

    async def list_artists(self, user_id: str, limit: Optional[int] = None) -> List[ArtistStat]:
        stmt = (
            select(ArtistStat)
            .where(ArtistStat.user_id == user_id)
            .order_by(ArtistStat.play_count.desc(), ArtistStat.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # Profiles

    async def get_profile(self, user_id: str) -> Optional[MusicProfile]:
        result = await self.session.execute(
            select(MusicProfile).where(MusicProfile.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def upsert_profile(self, user_id: str, document: ProfileDocument) -> None:
        """Replace the stored profile wholesale."""
        values = {
            "top_tracks": [t.model_dump(mode="json") for t in document.top_tracks],
            "top_artists": [a.model_dump(mode="json") for a in document.top_artists],
            "genre_dist": dict(document.genre_dist),
            "avg_energy": document.avg_energy,
            "avg_valence": document.avg_valence,
            "last_updated": ensure_utc(document.last_updated),
        }
        stmt = self._insert(MusicProfile).values(user_id=user_id, **values)
        stmt = stmt.on_conflict_do_update(index_elements=["user_id"], set_=values)
        await self.session.execute(stmt)
        await self.session.commit()
        logger.debug(f"Stored profile for user {user_id}")
