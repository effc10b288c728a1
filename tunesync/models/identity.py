"""Identity variants resolved by the request layer before calling the pipeline."""
from datetime import datetime
from typing import Literal, Optional, Union
from pydantic import BaseModel, ConfigDict

PROVISIONAL_PREFIX = "temp_"

class MinimalIdentity(BaseModel):
    """Stand-in identity used when the store is down or the user is provisional."""
    kind: Literal["minimal"] = "minimal"
    id: str
    external_id: Optional[str] = None

    @property
    def is_provisional(self) -> bool:
        return self.id.startswith(PROVISIONAL_PREFIX)

class FullIdentity(BaseModel):
    """Store-backed identity carrying Spotify credentials."""
    kind: Literal["full"] = "full"
    id: str
    external_id: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, validate_assignment=True)

    @property
    def is_provisional(self) -> bool:
        return self.id.startswith(PROVISIONAL_PREFIX)

Identity = Union[FullIdentity, MinimalIdentity]

def minimal_identity(user_id: str) -> MinimalIdentity:
    """Build a minimal identity, recovering the Spotify id from provisional ids."""
    external_id = None
    if user_id.startswith(PROVISIONAL_PREFIX):
        external_id = user_id[len(PROVISIONAL_PREFIX):] or None
    return MinimalIdentity(id=user_id, external_id=external_id)

def identity_from_user(user) -> FullIdentity:
    """Build a full identity from a stored User row."""
    return FullIdentity(
        id=user.id,
        external_id=user.spotify_id,
        access_token=user.access_token,
        refresh_token=user.refresh_token,
        token_expires_at=user.token_expires_at
    )
