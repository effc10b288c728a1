"""Memoized liveness check for the persistent store."""

import time
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from tunesync.db.async_session import get_session_factory
from tunesync.db.repository import ListeningRepository

logger = logging.getLogger(__name__)

LivenessCheck = Callable[[], Awaitable[None]]

def database_probe(session_factory: Optional[async_sessionmaker] = None) -> LivenessCheck:
    """Build a check that runs one trivial query and raises if it cannot."""
    async def check() -> None:
        factory = session_factory or get_session_factory()
        async with factory() as session:
            await ListeningRepository(session).ping()
    return check

class AvailabilityGate:
    """Remembers whether the store answered the last liveness check.

    The first ``probe()`` runs the check; later calls reuse the result until
    ``invalidate()`` is called or, when ``reprobe_interval`` is set, the
    result is older than the interval.
    """

    def __init__(
        self,
        check: Optional[LivenessCheck] = None,
        reprobe_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.check = check or database_probe()
        self.reprobe_interval = reprobe_interval
        self._clock = clock
        self._available: Optional[bool] = None
        self._checked_at: Optional[float] = None
        self._lock: Optional[asyncio.Lock] = None

    @property
    def available(self) -> Optional[bool]:
        """Last memoized result, or None before the first probe."""
        return self._available

    def _is_fresh(self) -> bool:
        if self._available is None:
            return False
        if self.reprobe_interval is None:
            return True
        return (self._clock() - self._checked_at) < self.reprobe_interval

    async def probe(self) -> bool:
        """Return store availability, running the check only when needed. Never raises."""
        if self._is_fresh():
            return self._available

        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            if self._is_fresh():
                return self._available
            try:
                await self.check()
                available = True
            except Exception as e:
                logger.warning(f"Database unavailable, using cache fallback: {str(e)}")
                available = False

            if available and self._available is False:
                logger.info("Database reachable again")
            self._available = available
            self._checked_at = self._clock()
            return available

    def invalidate(self) -> None:
        """Forget the memoized result so the next probe re-checks."""
        self._available = None
        self._checked_at = None
