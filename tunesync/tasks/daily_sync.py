"""Task for syncing every connected user's listening data."""

import asyncio
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from tunesync.core.config import get_settings
from tunesync.db.async_session import get_session_factory
from tunesync.db.repository import ListeningRepository
from tunesync.models.identity import identity_from_user
from tunesync.services.availability import AvailabilityGate, database_probe
from tunesync.services.cache_store import LocalCache
from tunesync.services.fallback import FallbackOrchestrator
from tunesync.services.spotify_auth import SpotifyAuthClient
from tunesync.services.spotify_client import SpotifyClient
from tunesync.services.sync_engine import SyncEngine
from tunesync.services.token_provider import TokenProvider
from tunesync.utils.logging import setup_logger

logger = setup_logger(__name__)

class DailySyncTask:
    """Runs a full sync for each user holding a refresh token, one at a time."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        gate: Optional[AvailabilityGate] = None,
        cache: Optional[LocalCache] = None,
        auth_client: Optional[SpotifyAuthClient] = None,
        inter_user_delay: Optional[float] = None
    ):
        """Initialize the daily sync task.

        Args:
            session_factory: Session factory for the store; defaults to the shared one
            gate: Availability gate; defaults to one probing ``session_factory``
            cache: Local cache used when token writes cannot reach the store
            auth_client: Client for the token endpoint; built from settings if omitted
            inter_user_delay: Seconds to wait between users
        """
        settings = get_settings()
        self._session_factory = session_factory
        self.gate = gate or AvailabilityGate(
            database_probe(session_factory),
            reprobe_interval=settings.AVAILABILITY_REPROBE_SECONDS
        )
        self.cache = cache or LocalCache()
        self.auth_client = auth_client
        self.inter_user_delay = (
            settings.SYNC_INTER_USER_DELAY if inter_user_delay is None else inter_user_delay
        )
        self.default_time_range = settings.SYNC_TIME_RANGE

    @property
    def session_factory(self) -> async_sessionmaker:
        return self._session_factory or get_session_factory()

    def _engine_for(self, user, token_provider: TokenProvider) -> SyncEngine:
        identity = identity_from_user(user)
        client = SpotifyClient(identity, token_provider)
        return SyncEngine(identity, client, self._session_factory)

    async def run_once(self, time_range: Optional[str] = None) -> Dict[str, Any]:
        """Sync all users sequentially; one user's failure does not stop the batch.

        Returns:
            {"synced": [user ids], "failed": {user id: error message}}
        """
        time_range = time_range or self.default_time_range
        synced: List[str] = []
        failed: Dict[str, str] = {}

        if not await self.gate.probe():
            logger.warning("Database unavailable, skipping daily sync")
            return {"synced": synced, "failed": failed}

        async with self.session_factory() as session:
            users = await ListeningRepository(session).list_syncable_users()
        logger.info(f"Starting daily sync for {len(users)} users")

        token_provider = TokenProvider(
            self.auth_client or SpotifyAuthClient(),
            FallbackOrchestrator(self.gate, self.cache),
            self._session_factory
        )

        for index, user in enumerate(users):
            if index > 0 and self.inter_user_delay:
                await asyncio.sleep(self.inter_user_delay)
            try:
                result = await self._engine_for(user, token_provider).sync_all(time_range)
                synced.append(user.id)
                logger.info(
                    f"Synced user {user.id}: {result.recent.synced} plays, "
                    f"{result.tracks.synced} tracks, {result.artists.synced} artists"
                )
            except Exception as e:
                logger.error(f"Daily sync failed for user {user.id}: {str(e)}")
                failed[user.id] = str(e)

        logger.info(f"Daily sync finished: {len(synced)} synced, {len(failed)} failed")
        return {"synced": synced, "failed": failed}
