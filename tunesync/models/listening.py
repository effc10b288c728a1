from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, JSON, Integer, Float, UniqueConstraint, Index
from tunesync.db.base import Base

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

class User(Base):
    """SQLAlchemy model for a connected listener and their Spotify credentials"""
    __tablename__ = "users"

    id = Column(String(255), primary_key=True)
    spotify_id = Column(String(255), unique=True, nullable=False)
    display_name = Column(String(255))
    avatar_url = Column(String(1000))

    # Token data
    access_token = Column(String(2000))
    refresh_token = Column(String(2000))
    token_expires_at = Column(DateTime(timezone=True))

    # Metadata
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

class TrackStat(Base):
    """One listening event; unique per (user, track, played_at)"""
    __tablename__ = "track_stats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)
    track_id = Column(String(255), nullable=False)
    name = Column(String(500), nullable=False)
    artist = Column(String(1000), nullable=False)
    image_url = Column(String(1000))
    played_at = Column(DateTime(timezone=True), nullable=False)
    duration_ms = Column(Integer)
    popularity = Column(Integer)

    # Audio features, back-filled by top-track syncs
    energy = Column(Float)
    valence = Column(Float)
    danceability = Column(Float)
    tempo = Column(Float)

    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        UniqueConstraint("user_id", "track_id", "played_at", name="uq_track_stats_user_track_played"),
        Index("ix_track_stats_user_played", "user_id", "played_at"),
    )

class ArtistStat(Base):
    """Per-user artist aggregate; play_count counts sync observations"""
    __tablename__ = "artist_stats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)
    artist_id = Column(String(255), nullable=False)
    name = Column(String(500), nullable=False)
    genres = Column(JSON, nullable=False, default=list)
    image_url = Column(String(1000))
    play_count = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        UniqueConstraint("user_id", "artist_id", name="uq_artist_stats_user_artist"),
    )

class MusicProfile(Base):
    """Materialized taste profile, replaced wholesale on every rebuild"""
    __tablename__ = "music_profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), unique=True, nullable=False, index=True)
    top_tracks = Column(JSON, nullable=False, default=list)
    top_artists = Column(JSON, nullable=False, default=list)
    genre_dist = Column(JSON, nullable=False, default=dict)
    avg_energy = Column(Float)
    avg_valence = Column(Float)
    last_updated = Column(DateTime(timezone=True), default=utc_now)
