"""Schema exports."""

from tunesync.schemas.listening import (
    TrackRecord,
    PlayRecord,
    ArtistRecord,
    AudioFeatures,
    PlaylistRecord,
    SpotifyUser,
    RecentSyncResult,
    TopTracksSyncResult,
    ArtistSyncResult,
    FullSyncResult
)
from tunesync.schemas.profile import (
    RankedTrack,
    RankedArtist,
    ProfileDocument,
    ListeningStats,
    Dashboard
)
from tunesync.schemas.cache import DatasetLabel, CacheSnapshot, TokenSnapshot, PAYLOAD_TYPES

__all__ = [
    'TrackRecord',
    'PlayRecord',
    'ArtistRecord',
    'AudioFeatures',
    'PlaylistRecord',
    'SpotifyUser',
    'RecentSyncResult',
    'TopTracksSyncResult',
    'ArtistSyncResult',
    'FullSyncResult',
    'RankedTrack',
    'RankedArtist',
    'ProfileDocument',
    'ListeningStats',
    'Dashboard',
    'DatasetLabel',
    'CacheSnapshot',
    'TokenSnapshot',
    'PAYLOAD_TYPES'
]
