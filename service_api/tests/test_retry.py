"""
Unit tests for the retry decorator.
"""

import pytest
from unittest.mock import AsyncMock

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.retry import RetryConfig, RetryError, calculate_delay, retry_on_exception

NO_WAIT = RetryConfig(max_attempts=3, base_delay=0, jitter=False)


class TestRetry:
    """Test cases for retry_on_exception."""

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        """Test transient failures are retried."""
        func = AsyncMock(side_effect=[ConnectionError("a"), ConnectionError("b"), "ok"])
        func.__name__ = "flaky"
        wrapped = retry_on_exception((ConnectionError,), NO_WAIT)(func)

        assert await wrapped() == "ok"
        assert func.call_count == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        """Test exhaustion raises RetryError carrying the last failure."""
        func = AsyncMock(side_effect=ConnectionError("down"))
        func.__name__ = "down"
        wrapped = retry_on_exception((ConnectionError,), NO_WAIT)(func)

        with pytest.raises(RetryError) as exc_info:
            await wrapped()
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_exception, ConnectionError)

    @pytest.mark.asyncio
    async def test_other_exceptions_propagate(self):
        """Test exceptions outside the retry set are not retried."""
        func = AsyncMock(side_effect=KeyError("x"))
        func.__name__ = "broken"
        wrapped = retry_on_exception((ConnectionError,), NO_WAIT)(func)

        with pytest.raises(KeyError):
            await wrapped()
        assert func.call_count == 1

    def test_delay_is_capped(self):
        """Test exponential backoff respects max_delay."""
        config = RetryConfig(base_delay=1, max_delay=5, jitter=False)
        assert [calculate_delay(attempt, config) for attempt in (1, 2, 3, 4)] == [1, 2, 4, 5]
