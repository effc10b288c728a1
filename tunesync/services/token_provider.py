"""Access-token resolution and refresh for every identity variant."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from tunesync.core.exceptions import MissingCredentialsError
from tunesync.db.async_session import get_session_factory
from tunesync.db.repository import ListeningRepository
from tunesync.models.identity import FullIdentity, Identity
from tunesync.schemas.cache import DatasetLabel, TokenSnapshot
from tunesync.services.cache_store import LocalCache
from tunesync.services.fallback import FallbackOrchestrator
from tunesync.services.spotify_auth import SpotifyAuthClient
from tunesync.utils.dates import ensure_utc

logger = logging.getLogger(__name__)

# Tokens this close to expiry are treated as already expired
EXPIRY_MARGIN = timedelta(minutes=5)

def is_token_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if expires_at is None:
        return True
    now = now or datetime.now(timezone.utc)
    return ensure_utc(expires_at) - EXPIRY_MARGIN <= now

class TokenProvider:
    """
    Hands out valid access tokens.

    Persistent identities keep their credentials in the users table;
    provisional and minimal identities keep them in the cache under the
    ``tokens`` label.
    """

    def __init__(
        self,
        auth_client: SpotifyAuthClient,
        orchestrator: FallbackOrchestrator,
        session_factory: Optional[async_sessionmaker] = None
    ):
        self.auth_client = auth_client
        self.orchestrator = orchestrator
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker:
        return self._session_factory or get_session_factory()

    @property
    def cache(self) -> LocalCache:
        return self.orchestrator.cache

    @staticmethod
    def _is_persistent(identity: Identity) -> bool:
        return isinstance(identity, FullIdentity) and not identity.is_provisional

    def is_token_expired(self, expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
        return is_token_expired(expires_at, now)

    async def _credentials(self, identity: Identity) -> TokenSnapshot:
        if self._is_persistent(identity):
            return TokenSnapshot(
                access_token=identity.access_token,
                refresh_token=identity.refresh_token,
                token_expires_at=identity.token_expires_at
            )

        cached = await self.cache.load_typed(identity.id, DatasetLabel.TOKENS)
        if cached is not None:
            return cached
        if isinstance(identity, FullIdentity):
            return TokenSnapshot(
                access_token=identity.access_token,
                refresh_token=identity.refresh_token,
                token_expires_at=identity.token_expires_at
            )
        return TokenSnapshot()

    async def get_valid_token(self, identity: Identity) -> str:
        """Return a usable access token, refreshing it first when expired."""
        credentials = await self._credentials(identity)
        if credentials.access_token and not self.is_token_expired(credentials.token_expires_at):
            return credentials.access_token

        logger.info(f"Access token for {identity.id} expired or missing, refreshing")
        return await self._refresh(identity, credentials)

    async def force_refresh(self, identity: Identity) -> str:
        """Refresh unconditionally, e.g. after the API rejected the current token."""
        return await self._refresh(identity, await self._credentials(identity))

    async def _refresh(self, identity: Identity, credentials: TokenSnapshot) -> str:
        if not credentials.refresh_token:
            raise MissingCredentialsError(f"No refresh token available for {identity.id}")

        grant = await self.auth_client.refresh(credentials.refresh_token)
        snapshot = TokenSnapshot(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token or credentials.refresh_token,
            token_expires_at=datetime.now(timezone.utc) + timedelta(seconds=grant.expires_in)
        )
        await self._persist(identity, snapshot, rotated=grant.refresh_token is not None)

        if isinstance(identity, FullIdentity):
            identity.access_token = snapshot.access_token
            identity.refresh_token = snapshot.refresh_token
            identity.token_expires_at = snapshot.token_expires_at

        logger.info(f"Refreshed access token for {identity.id}, expires at {snapshot.token_expires_at}")
        return snapshot.access_token

    async def _persist(self, identity: Identity, snapshot: TokenSnapshot, rotated: bool) -> None:
        if not self._is_persistent(identity):
            await self.cache.save(identity.id, DatasetLabel.TOKENS, snapshot)
            return

        async def to_store():
            async with self.session_factory() as session:
                await ListeningRepository(session).update_user_tokens(
                    identity.id,
                    access_token=snapshot.access_token,
                    token_expires_at=snapshot.token_expires_at,
                    refresh_token=snapshot.refresh_token if rotated else None
                )

        async def to_cache(cache: LocalCache):
            await cache.save(identity.id, DatasetLabel.TOKENS, snapshot)

        await self.orchestrator.execute(
            to_store,
            to_cache,
            identity_id=identity.id,
            dataset_label=DatasetLabel.TOKENS.value
        )
