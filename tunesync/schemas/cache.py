"""Cache snapshot envelope and the payload type registered per dataset label."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from tunesync.schemas.listening import ArtistRecord, PlayRecord, TrackRecord
from tunesync.schemas.profile import Dashboard, ProfileDocument

class DatasetLabel(str, Enum):
    PROFILE = "profile"
    DASHBOARD = "dashboard"
    RECENT_TRACKS = "recent_tracks"
    TOP_TRACKS = "top_tracks"
    TOP_ARTISTS = "top_artists"
    TOKENS = "tokens"

class TokenSnapshot(BaseModel):
    """Credentials of a provisional identity kept in the cache."""
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None

class CacheSnapshot(BaseModel):
    """On-disk envelope for one (identity, dataset label) snapshot."""
    identity_id: str
    dataset_label: str
    payload: Any = None
    cached_at: datetime

    # Written with camelCase keys: identityId, datasetLabel, payload, cachedAt
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

PAYLOAD_TYPES: Dict[DatasetLabel, Any] = {
    DatasetLabel.PROFILE: ProfileDocument,
    DatasetLabel.DASHBOARD: Dashboard,
    DatasetLabel.RECENT_TRACKS: List[PlayRecord],
    DatasetLabel.TOP_TRACKS: List[TrackRecord],
    DatasetLabel.TOP_ARTISTS: List[ArtistRecord],
    DatasetLabel.TOKENS: TokenSnapshot,
}
