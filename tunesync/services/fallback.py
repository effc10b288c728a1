"""Route reads to the database or the local cache depending on store health."""

import socket
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Generic, TypeVar

import aiohttp
from sqlalchemy import exc as sa_exc

from tunesync.core.exceptions import (
    FallbackDisabledError,
    MissingCredentialsError,
    NotFoundError,
    StoreUnavailableError,
    UpstreamError,
    UpstreamNotFoundError
)
from tunesync.services.availability import AvailabilityGate
from tunesync.services.cache_store import LocalCache

logger = logging.getLogger(__name__)

T = TypeVar('T')

class ErrorClass(str, Enum):
    """Coarse classes used to decide whether a failure may be served from cache"""
    CONNECTIVITY = "connectivity"
    UPSTREAM = "upstream"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    OTHER = "other"

_STORE_CONNECTIVITY_ERRORS = (
    StoreUnavailableError,
    sa_exc.OperationalError,
    sa_exc.InterfaceError,
    sa_exc.DisconnectionError,
    sa_exc.TimeoutError,
    ConnectionError,
    socket.gaierror,
)

def classify_error(exc: BaseException) -> ErrorClass:
    """Classify an exception raised on the store path."""
    # aiohttp connection errors subclass OSError but concern the upstream API
    if isinstance(exc, (UpstreamError, aiohttp.ClientError)):
        if isinstance(exc, UpstreamNotFoundError):
            return ErrorClass.NOT_FOUND
        return ErrorClass.UPSTREAM
    if isinstance(exc, sa_exc.DBAPIError) and exc.connection_invalidated:
        return ErrorClass.CONNECTIVITY
    if isinstance(exc, _STORE_CONNECTIVITY_ERRORS):
        return ErrorClass.CONNECTIVITY
    if isinstance(exc, NotFoundError):
        return ErrorClass.NOT_FOUND
    if isinstance(exc, (ValueError, MissingCredentialsError)):
        return ErrorClass.VALIDATION
    return ErrorClass.OTHER

@dataclass
class FallbackResult(Generic[T]):
    value: T
    source: str  # "store" or "cache"
    degraded: bool = False

class FallbackOrchestrator:
    """Runs the store-backed implementation of a read, or its cache-backed twin."""

    def __init__(self, gate: AvailabilityGate, cache: LocalCache):
        self.gate = gate
        self.cache = cache

    async def try_primary_or_secondary(
        self,
        primary: Callable[[], Awaitable[T]],
        secondary: Callable[[LocalCache], Awaitable[T]],
        *,
        identity_id: str,
        dataset_label: str,
        allow_fallback: bool = True
    ) -> FallbackResult[T]:
        """
        Run ``primary`` when the store is available, ``secondary(cache)`` otherwise.

        Only connectivity failures of ``primary`` are replaced by the cache
        path; every other error propagates unchanged.

        Raises:
            FallbackDisabledError: store unavailable and ``allow_fallback`` is False
        """
        if await self.gate.probe():
            try:
                value = await primary()
                return FallbackResult(value=value, source="store", degraded=False)
            except Exception as e:
                if classify_error(e) is not ErrorClass.CONNECTIVITY:
                    raise
                self.gate.invalidate()
                if not allow_fallback:
                    raise
                logger.warning(
                    f"Database error while loading {dataset_label} for {identity_id}, "
                    f"falling back to cache: {str(e)}"
                )
        else:
            if not allow_fallback:
                raise FallbackDisabledError()
            logger.info(f"Database unavailable, serving {dataset_label} for {identity_id} from cache")

        value = await secondary(self.cache)
        return FallbackResult(value=value, source="cache", degraded=True)

    async def execute(
        self,
        primary: Callable[[], Awaitable[T]],
        secondary: Callable[[LocalCache], Awaitable[T]],
        *,
        identity_id: str,
        dataset_label: str,
        allow_fallback: bool = True
    ) -> T:
        """Same as ``try_primary_or_secondary`` but returns the bare value."""
        result = await self.try_primary_or_secondary(
            primary,
            secondary,
            identity_id=identity_id,
            dataset_label=dataset_label,
            allow_fallback=allow_fallback
        )
        return result.value
