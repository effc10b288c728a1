"""Tests for the upstream retry policy."""

import pytest
from unittest.mock import AsyncMock, patch

from tunesync.core.exceptions import CredentialExpiredError, RateLimitedError, UpstreamError
from tunesync.utils.retry_handler import RetryHandler

@pytest.fixture
def mock_sleep():
    with patch("tunesync.utils.retry_handler.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep

@pytest.mark.asyncio
async def test_success_without_retry(mock_sleep):
    handler = RetryHandler()
    operation = AsyncMock(return_value="ok")

    assert await handler.execute_with_retry(operation) == "ok"
    operation.assert_awaited_once()
    mock_sleep.assert_not_awaited()

@pytest.mark.asyncio
async def test_rate_limit_honors_retry_after(mock_sleep):
    handler = RetryHandler(max_retries=3, base_delay=1.0)
    operation = AsyncMock(side_effect=[RateLimitedError("slow down", retry_after=2), "ok"])

    assert await handler.execute_with_retry(operation) == "ok"
    mock_sleep.assert_awaited_once_with(2.0)
    assert handler.get_stats()["successful_retries"] == 1

@pytest.mark.asyncio
async def test_rate_limit_exponential_backoff(mock_sleep):
    handler = RetryHandler(max_retries=3, base_delay=1.0)
    operation = AsyncMock(side_effect=[
        RateLimitedError("slow down"),
        RateLimitedError("slow down"),
        RateLimitedError("slow down"),
        "ok"
    ])

    assert await handler.execute_with_retry(operation) == "ok"
    assert [c.args[0] for c in mock_sleep.await_args_list] == [1.0, 2.0, 4.0]

@pytest.mark.asyncio
async def test_rate_limit_reraises_last_error_after_max_retries(mock_sleep):
    handler = RetryHandler(max_retries=3, base_delay=1.0)
    errors = [RateLimitedError(f"attempt {i}") for i in range(4)]
    operation = AsyncMock(side_effect=errors)

    with pytest.raises(RateLimitedError) as exc_info:
        await handler.execute_with_retry(operation)

    assert exc_info.value is errors[-1]
    assert operation.await_count == 4
    assert mock_sleep.await_count == 3
    assert handler.get_stats()["failed_retries"] == 1

@pytest.mark.asyncio
async def test_expired_credentials_refresh_once_and_retry(mock_sleep):
    handler = RetryHandler()
    refresh = AsyncMock()
    operation = AsyncMock(side_effect=[CredentialExpiredError("expired"), "ok"])

    assert await handler.execute_with_retry(operation, on_credential_expired=refresh) == "ok"
    refresh.assert_awaited_once()
    assert operation.await_count == 2
    mock_sleep.assert_not_awaited()

@pytest.mark.asyncio
async def test_expired_credentials_after_refresh_are_raised(mock_sleep):
    handler = RetryHandler()
    refresh = AsyncMock()
    operation = AsyncMock(side_effect=[CredentialExpiredError("expired"), CredentialExpiredError("still expired")])

    with pytest.raises(CredentialExpiredError, match="still expired"):
        await handler.execute_with_retry(operation, on_credential_expired=refresh)
    refresh.assert_awaited_once()

@pytest.mark.asyncio
async def test_expired_credentials_without_hook_fail_immediately(mock_sleep):
    handler = RetryHandler()
    operation = AsyncMock(side_effect=CredentialExpiredError("expired"))

    with pytest.raises(CredentialExpiredError):
        await handler.execute_with_retry(operation)
    operation.assert_awaited_once()

@pytest.mark.asyncio
async def test_other_errors_are_not_retried(mock_sleep):
    handler = RetryHandler()
    operation = AsyncMock(side_effect=UpstreamError("server error", status=500))

    with pytest.raises(UpstreamError):
        await handler.execute_with_retry(operation)
    operation.assert_awaited_once()
    mock_sleep.assert_not_awaited()

def test_delay_is_capped():
    handler = RetryHandler(base_delay=1.0, max_delay=5.0)
    assert handler._calculate_delay(10) == 5.0
    assert handler._calculate_delay(10, retry_after=30) == 30.0

def test_reset_clears_statistics():
    handler = RetryHandler()
    handler.total_retries = 3
    handler.credential_refreshes = 1
    handler.reset()

    stats = handler.get_stats()
    assert stats["total_retries"] == 0
    assert stats["credential_refreshes"] == 0
    assert stats["last_retry"] is None
