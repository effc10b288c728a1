"""Normalized upstream record shapes and sync results."""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

UNKNOWN_ID = "unknown"
UNKNOWN_TRACK = "Unknown Track"
UNKNOWN_ARTIST = "Unknown Artist"
UNTITLED_PLAYLIST = "Untitled Playlist"

class TrackRecord(BaseModel):
    """A track as returned by top-tracks or track detail."""
    track_id: str = UNKNOWN_ID
    name: str = UNKNOWN_TRACK
    artist: str = UNKNOWN_ARTIST
    artist_ids: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    duration_ms: Optional[int] = None
    popularity: Optional[int] = None

class PlayRecord(TrackRecord):
    """A recently-played event: a track plus the moment it was played."""
    played_at: datetime

class ArtistRecord(BaseModel):
    artist_id: str = UNKNOWN_ID
    name: str = UNKNOWN_ARTIST
    genres: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    popularity: Optional[int] = None
    followers: int = 0

class AudioFeatures(BaseModel):
    track_id: str
    energy: Optional[float] = None
    valence: Optional[float] = None
    danceability: Optional[float] = None
    tempo: Optional[float] = None

class PlaylistRecord(BaseModel):
    playlist_id: str = UNKNOWN_ID
    name: str = UNTITLED_PLAYLIST
    owner: Optional[str] = None
    image_url: Optional[str] = None
    track_count: int = 0
    public: bool = False
    collaborative: bool = False

class SpotifyUser(BaseModel):
    """The authenticated upstream account."""
    spotify_id: str = UNKNOWN_ID
    display_name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    followers: int = 0

class RecentSyncResult(BaseModel):
    synced: int
    total: int

class TopTracksSyncResult(BaseModel):
    synced: int
    total: int
    audio_features_updated: int = 0

class ArtistSyncResult(BaseModel):
    synced: int

class FullSyncResult(BaseModel):
    recent: RecentSyncResult
    tracks: TopTracksSyncResult
    artists: ArtistSyncResult
    profile_updated: bool = False
