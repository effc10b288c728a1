"""Derived documents: taste profile, listening stats, dashboard."""
from datetime import datetime, timezone
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from tunesync.schemas.listening import ArtistRecord, PlayRecord, TrackRecord

class RankedTrack(BaseModel):
    track_id: str
    name: str
    artist: str
    image_url: Optional[str] = None
    plays: int

class RankedArtist(BaseModel):
    artist_id: str
    name: str
    plays: int
    genres: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None

class ProfileDocument(BaseModel):
    """Schema for a user's taste profile."""
    top_tracks: List[RankedTrack] = Field(default_factory=list)
    top_artists: List[RankedArtist] = Field(default_factory=list)
    genre_dist: Dict[str, float] = Field(default_factory=dict)
    avg_energy: Optional[float] = None
    avg_valence: Optional[float] = None
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    # True when assembled from upstream data instead of the stored history
    degraded: bool = False

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "top_tracks": [
                    {"track_id": "4uLU6hMCjMI75M1A2tKUQC", "name": "Track A",
                     "artist": "Artist A", "image_url": None, "plays": 3}
                ],
                "top_artists": [
                    {"artist_id": "0OdUWJ0sBjDrqHygGUXeCF", "name": "Artist A",
                     "plays": 10, "genres": ["pop", "rock"], "image_url": None}
                ],
                "genre_dist": {"pop": 0.6, "rock": 0.4},
                "avg_energy": 0.71,
                "avg_valence": 0.52,
                "last_updated": "2026-01-01T02:00:00Z",
                "degraded": False
            }
        }
    )

class ListeningTime(BaseModel):
    hours: int = 0
    minutes: int = 0
    total_ms: int = 0

class CountedTrack(BaseModel):
    track_id: str
    name: str
    artist: str
    image_url: Optional[str] = None
    count: int

class CountedArtist(BaseModel):
    name: str
    count: int

class ListeningStats(BaseModel):
    time_range: str
    total_tracks: int = 0
    unique_tracks: int = 0
    unique_artists: int = 0
    total_listening_time: ListeningTime = Field(default_factory=ListeningTime)
    top_tracks: List[CountedTrack] = Field(default_factory=list)
    top_artists: List[CountedArtist] = Field(default_factory=list)
    hourly_activity: List[int] = Field(default_factory=lambda: [0] * 24)
    first_track: Optional[PlayRecord] = None
    last_track: Optional[PlayRecord] = None

class DashboardArtist(BaseModel):
    artist_id: str
    name: str
    genres: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    play_count: int = 0

class Dashboard(BaseModel):
    stats: ListeningStats
    top_artists: List[DashboardArtist] = Field(default_factory=list)
    recent_tracks: List[PlayRecord] = Field(default_factory=list)
    spotify_top_tracks: List[TrackRecord] = Field(default_factory=list)

def dashboard_artist(artist: ArtistRecord, play_count: int = 0) -> DashboardArtist:
    return DashboardArtist(
        artist_id=artist.artist_id,
        name=artist.name,
        genres=artist.genres,
        image_url=artist.image_url,
        play_count=play_count
    )
