"""Tests for the retry executor."""

import asyncio
import logging
import pytest

from equity_insight.retry import execute, retry_delay


class StatusError(Exception):
    def __init__(self, code: int, message: str = "boom"):
        super().__init__(message)
        self.code = code


class FlakyOperation:
    """Raises the queued failures in order, then returns 'ok'."""

    def __init__(self, failures):
        self.failures = list(failures)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return "ok"


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def run(operation, **kwargs):
    sleep = RecordingSleep()
    result = asyncio.run(execute(operation, sleep=sleep, **kwargs))
    return result, sleep.delays


class TestRetryDelay:

    def test_rate_limit_uses_rate_limit_base(self):
        """Test that rate limits back off from the rate limit base."""
        assert retry_delay(StatusError(429), 0, base_delay=2, rate_limit_delay=5) == 5
        assert retry_delay(StatusError(429), 2, base_delay=2, rate_limit_delay=5) == 20

    def test_quota_message_counts_as_rate_limit(self):
        """Test that a quota message counts as a rate limit."""
        assert retry_delay(Exception("RESOURCE_EXHAUSTED: quota"), 0, rate_limit_delay=5) == 5

    def test_server_errors_use_base_delay(self):
        """Test that server errors back off from the base delay."""
        assert retry_delay(StatusError(503), 1, base_delay=2) == 4
        assert retry_delay(StatusError(500), 0, base_delay=2) == 2
        assert retry_delay(Exception("The model is overloaded"), 0, base_delay=2) == 2

    def test_embedded_status_is_unwrapped(self):
        """Test that an embedded status is used."""
        error = Exception('upstream: {"error": {"code": 429, "message": "Quota exceeded"}}')
        assert retry_delay(error, 0, rate_limit_delay=5) == 5

    def test_other_failures_not_retried(self):
        """Test that client errors are not retried."""
        assert retry_delay(StatusError(400), 0) is None
        assert retry_delay(StatusError(401), 0) is None
        assert retry_delay(ValueError("bad json"), 0) is None


class TestExecute:

    def test_success_first_try(self):
        """Test that a success needs no waiting."""
        operation = FlakyOperation([])
        result, delays = run(operation)
        assert result == "ok"
        assert operation.calls == 1
        assert delays == []

    def test_two_rate_limits_then_success(self):
        """Three invocations; the second wait is at least double the first."""
        operation = FlakyOperation([StatusError(429), StatusError(429)])
        result, delays = run(operation, base_delay=2, rate_limit_delay=5)
        assert result == "ok"
        assert operation.calls == 3
        assert delays == [5, 10]
        assert delays[1] >= 2 * delays[0]

    def test_bad_request_propagates_after_one_call(self):
        """Test that a bad request propagates unchanged."""
        error = StatusError(400, "invalid argument")
        operation = FlakyOperation([error])
        with pytest.raises(StatusError) as exc_info:
            run(operation)
        assert exc_info.value is error
        assert operation.calls == 1

    def test_exhausted_attempts_raise_last_failure(self):
        """Test that the last failure propagates after all attempts."""
        last = StatusError(503, "still overloaded")
        operation = FlakyOperation([StatusError(503), StatusError(503), last])
        sleep = RecordingSleep()
        with pytest.raises(StatusError) as exc_info:
            asyncio.run(execute(operation, max_attempts=3, base_delay=1, sleep=sleep))
        assert exc_info.value is last
        assert operation.calls == 3
        assert sleep.delays == [1, 2]

    def test_single_attempt_never_sleeps(self):
        """Test that one attempt never sleeps."""
        operation = FlakyOperation([StatusError(429)])
        sleep = RecordingSleep()
        with pytest.raises(StatusError):
            asyncio.run(execute(operation, max_attempts=1, sleep=sleep))
        assert sleep.delays == []

    def test_retry_logged_before_each_wait(self, caplog):
        """Each backoff is announced at WARNING with the delay about to be slept."""
        operation = FlakyOperation([StatusError(503), StatusError(429)])
        with caplog.at_level(logging.WARNING, logger="equity_insight.retry"):
            result, delays = run(operation, base_delay=2, rate_limit_delay=5)

        assert result == "ok"
        assert delays == [2, 10]
        retries = [r for r in caplog.records if "Retrying" in r.getMessage()]
        assert len(retries) == 2
        assert all(r.levelno == logging.WARNING for r in retries)

    def test_invalid_max_attempts(self):
        """Test that zero attempts raises error."""
        with pytest.raises(ValueError, match="max_attempts"):
            asyncio.run(execute(FlakyOperation([]), max_attempts=0))
