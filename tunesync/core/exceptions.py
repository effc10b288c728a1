"""Error taxonomy for the sync pipeline."""

from typing import Any, Dict, Optional


class TuneSyncError(Exception):
    """Base exception for all pipeline errors"""
    pass


class StoreUnavailableError(TuneSyncError):
    """Raised when the persistent store cannot be reached"""
    pass


class FallbackDisabledError(StoreUnavailableError):
    """Raised when the store is down and the caller disallowed the cache path"""

    def __init__(self, message: str = "Database unavailable and cache fallback disabled"):
        super().__init__(message)


class NotFoundError(TuneSyncError):
    """Raised when a stored record does not exist"""
    pass


class MissingCredentialsError(TuneSyncError):
    """Raised when an identity has no refresh token to work with"""
    pass


class UpstreamError(TuneSyncError):
    """Raised when the upstream music API returns an error response"""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        payload: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.status = status
        self.payload = payload or {}


class RateLimitedError(UpstreamError):
    """Raised when the upstream API rate limit is exceeded"""

    def __init__(self, message: str, retry_after: Optional[float] = None, **kwargs):
        super().__init__(message, status=kwargs.pop('status', 429), **kwargs)
        self.retry_after = retry_after


class CredentialExpiredError(UpstreamError):
    """Raised when the upstream API rejects the access token"""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, status=kwargs.pop('status', 401), **kwargs)


class UpstreamNotFoundError(UpstreamError):
    """Raised when an upstream resource does not exist"""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, status=kwargs.pop('status', 404), **kwargs)


class UpstreamTimeoutError(UpstreamError):
    """Raised when an upstream call exceeds its timeout"""
    pass
