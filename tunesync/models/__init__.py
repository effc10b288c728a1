"""Models package initialization."""

from tunesync.db.base import Base
from tunesync.models.listening import User, TrackStat, ArtistStat, MusicProfile
from tunesync.models.identity import (
    Identity,
    FullIdentity,
    MinimalIdentity,
    minimal_identity,
    identity_from_user
)

__all__ = [
    'Base',
    'User',
    'TrackStat',
    'ArtistStat',
    'MusicProfile',
    'Identity',
    'FullIdentity',
    'MinimalIdentity',
    'minimal_identity',
    'identity_from_user'
]
