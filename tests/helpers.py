"""Record builders shared by the tests."""

from datetime import datetime

from tunesync.schemas.listening import ArtistRecord, PlayRecord, TrackRecord

def make_track(track_id: str, **kwargs) -> TrackRecord:
    data = {"name": f"Track {track_id}", "artist": "Artist", "image_url": f"https://img/{track_id}.jpg"}
    data.update(kwargs)
    return TrackRecord(track_id=track_id, **data)

def make_play(track_id: str, played_at: datetime, **kwargs) -> PlayRecord:
    data = {"name": f"Track {track_id}", "artist": "Artist", "duration_ms": 180000}
    data.update(kwargs)
    return PlayRecord(track_id=track_id, played_at=played_at, **data)

def make_artist(artist_id: str, **kwargs) -> ArtistRecord:
    data = {"name": f"Artist {artist_id}", "genres": ["pop"]}
    data.update(kwargs)
    return ArtistRecord(artist_id=artist_id, **data)
