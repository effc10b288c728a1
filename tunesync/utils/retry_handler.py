"""
Retry handler for upstream API calls.

This module provides a RetryHandler class that implements the retry policy
used for every call to the music API:
- Rate-limit responses are retried, honoring the server's Retry-After delay
  or falling back to exponential backoff
- Expired credentials trigger a single refresh followed by one retry
- Any other error fails immediately
- Retry statistics for monitoring
"""

import logging
import random
import asyncio
from typing import TypeVar, Callable, Awaitable, Optional
from datetime import datetime, timezone

from tunesync.core.exceptions import CredentialExpiredError, RateLimitedError

logger = logging.getLogger(__name__)

T = TypeVar('T')

class RetryHandler:
    """Handler for retrying upstream operations with exponential backoff"""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        jitter: bool = False
    ):
        """
        Initialize the retry handler.

        Args:
            max_retries: Maximum number of rate-limit retry attempts
            base_delay: Base delay between retries in seconds
            max_delay: Maximum computed backoff delay in seconds
            jitter: Whether to add random jitter to computed delays
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter

        # Statistics
        self.total_retries = 0
        self.successful_retries = 0
        self.failed_retries = 0
        self.credential_refreshes = 0
        self.last_retry = None

    def reset(self) -> None:
        """Reset retry statistics"""
        self.total_retries = 0
        self.successful_retries = 0
        self.failed_retries = 0
        self.credential_refreshes = 0
        self.last_retry = None
        logger.debug("Retry handler statistics reset")

    def _calculate_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """
        Calculate delay for current retry attempt.

        Args:
            attempt: Zero-based retry attempt number
            retry_after: Server-provided delay in seconds, if any

        Returns:
            Delay in seconds
        """
        if retry_after is not None:
            # The server's delay is a floor; never shorten it
            return float(retry_after)

        delay = min(
            self.base_delay * (2 ** attempt),
            self.max_delay
        )

        if self.jitter:
            # Add random jitter between 0% and +25%
            delay = delay * (1 + random.uniform(0, 0.25))

        logger.debug(f"Calculated retry delay: {delay:.2f}s for attempt {attempt}")
        return delay

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        on_credential_expired: Optional[Callable[[], Awaitable[object]]] = None
    ) -> T:
        """
        Execute an operation with the upstream retry policy.

        Args:
            operation: Async operation to execute
            on_credential_expired: Async hook that refreshes credentials;
                called at most once per execution

        Returns:
            Result of successful operation

        Raises:
            The last error raised by the operation once retries are exhausted,
            or any non-retryable error immediately
        """
        start_time = datetime.now(timezone.utc)
        attempt = 0
        refreshed = False

        while True:
            try:
                result = await operation()
                if attempt > 0:
                    self.successful_retries += 1
                    self.last_retry = datetime.now(timezone.utc)
                    logger.info(
                        f"Operation succeeded after {attempt} "
                        f"retries in {(datetime.now(timezone.utc) - start_time).total_seconds():.1f}s"
                    )
                return result

            except RateLimitedError as e:
                if attempt >= self.max_retries:
                    self.failed_retries += 1
                    logger.error(
                        f"Operation still rate limited after {self.max_retries} retries\n"
                        f"Error: {str(e)}\n"
                        f"Total time: {(datetime.now(timezone.utc) - start_time).total_seconds():.1f}s"
                    )
                    raise

                delay = self._calculate_delay(attempt, e.retry_after)
                self.total_retries += 1
                logger.warning(
                    f"Rate limited (attempt {attempt + 1}/{self.max_retries}), "
                    f"retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
                attempt += 1

            except CredentialExpiredError as e:
                if refreshed or on_credential_expired is None:
                    logger.error(f"Credentials rejected after refresh: {str(e)}")
                    raise

                logger.info("Access token rejected, refreshing credentials and retrying once")
                await on_credential_expired()
                self.credential_refreshes += 1
                refreshed = True

    def get_stats(self) -> dict:
        """Get retry statistics"""
        return {
            'total_retries': self.total_retries,
            'successful_retries': self.successful_retries,
            'failed_retries': self.failed_retries,
            'credential_refreshes': self.credential_refreshes,
            'success_rate': (
                self.successful_retries / self.total_retries
                if self.total_retries > 0 else 0
            ),
            'last_retry': self.last_retry.isoformat() if self.last_retry else None,
            'jitter_enabled': self.jitter
        }
