"""
Unit tests for resilience utilities.
"""

import pytest

from faultline.utils.resilience import compute_backoff_delay, retry_with_backoff


def test_compute_backoff_delay():
    assert compute_backoff_delay(0, base_delay=0.5) == 0.5
    assert compute_backoff_delay(3, base_delay=0.5) == 4.0
    assert compute_backoff_delay(10, base_delay=1.0, max_delay=30.0) == 30.0


class TestRetryWithBackoff:
    """Test the retry decorator."""

    async def test_succeeds_after_transient_failures(self):
        calls = []

        @retry_with_backoff(max_retries=3, base_delay=0.001, exceptions=(ConnectionError,))
        async def read_key():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("reset")
            return "value"

        assert await read_key() == "value"
        assert len(calls) == 3

    async def test_raises_after_max_retries(self):
        calls = []

        @retry_with_backoff(max_retries=2, base_delay=0.001, exceptions=(ConnectionError,))
        async def read_key():
            calls.append(1)
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            await read_key()
        assert len(calls) == 2

    async def test_other_exceptions_are_not_retried(self):
        calls = []

        @retry_with_backoff(max_retries=3, base_delay=0.001, exceptions=(ConnectionError,))
        async def read_key():
            calls.append(1)
            raise ValueError("bad key")

        with pytest.raises(ValueError):
            await read_key()
        assert len(calls) == 1

    async def test_preserves_function_metadata(self):
        @retry_with_backoff()
        async def read_key():
            """Read one key."""

        assert read_key.__name__ == "read_key"
        assert read_key.__doc__ == "Read one key."
