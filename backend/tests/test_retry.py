"""
Tests for the retry helper.
"""

import asyncio

import pytest

from scrapers.utils.retry import with_retry


class Flaky:
    """Fails a fixed number of times, then returns 'ok'."""

    def __init__(self, failures):
        self.failures = failures
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"failure {self.calls}")
        return "ok"


class TestWithRetry:
    """Test with_retry."""

    def test_succeeds_after_failures(self):
        """Two failures then success: the callback fires twice."""
        operation = Flaky(failures=2)
        seen = []

        result = asyncio.run(with_retry(
            operation,
            max_attempts=3,
            delay=0,
            on_retry=lambda attempt, error: seen.append(attempt),
        ))

        assert result == "ok"
        assert operation.calls == 3
        assert seen == [1, 2]

    def test_raises_last_error_when_exhausted(self):
        """Every attempt fails: the last error propagates after three callbacks."""
        operation = Flaky(failures=10)
        seen = []

        with pytest.raises(RuntimeError, match="failure 3"):
            asyncio.run(with_retry(
                operation,
                max_attempts=3,
                delay=0,
                on_retry=lambda attempt, error: seen.append(str(error)),
            ))

        assert operation.calls == 3
        assert seen == ["failure 1", "failure 2", "failure 3"]

    def test_first_success_is_not_retried(self):
        """Test that a successful operation runs once."""
        operation = Flaky(failures=0)

        assert asyncio.run(with_retry(operation, delay=0)) == "ok"
        assert operation.calls == 1

    def test_rejects_zero_attempts(self):
        """Test that at least one attempt is required."""
        with pytest.raises(ValueError):
            asyncio.run(with_retry(Flaky(failures=0), max_attempts=0))
