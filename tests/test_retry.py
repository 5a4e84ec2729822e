"""Tests for the bounded retry combinator."""

import pytest

from trustsync.utils.retry import RetryCancelled, RetryExhausted, retry


class Recorder:
    def __init__(self, results, stop_after=None):
        self.results = list(results)
        self.calls = []
        self.sleeps = []
        self.stop_after = stop_after

    def operation(self, attempt):
        self.calls.append(attempt)
        result = self.results[min(attempt - 1, len(self.results) - 1)]
        if isinstance(result, Exception):
            raise result
        return result

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        return self.stop_after is not None and len(self.sleeps) >= self.stop_after


@pytest.mark.unit
class TestRetry:
    """Test retry semantics."""

    def test_first_success_returns_immediately(self):
        """Test no sleep happens on first success."""
        recorder = Recorder([True])
        result, attempts = retry(recorder.operation, interval=5, max_attempts=3, sleep=recorder.sleep)
        assert result is True
        assert attempts == 1
        assert recorder.sleeps == []

    def test_success_on_fourth_attempt(self):
        """Test attempts are counted and slept between."""
        recorder = Recorder([False, False, False, True])
        _, attempts = retry(recorder.operation, interval=5, max_attempts=60, sleep=recorder.sleep)
        assert attempts == 4
        assert recorder.sleeps == [5, 5, 5]

    def test_exhaustion_raises_without_trailing_sleep(self):
        """Test the final failed attempt is not followed by a sleep."""
        recorder = Recorder([False])
        with pytest.raises(RetryExhausted) as exc_info:
            retry(recorder.operation, interval=2, max_attempts=3, sleep=recorder.sleep)
        assert exc_info.value.attempts == 3
        assert recorder.calls == [1, 2, 3]
        assert len(recorder.sleeps) == 2

    def test_custom_predicate(self):
        """Test the predicate decides success."""
        recorder = Recorder([1, 2, 3])
        result, attempts = retry(
            recorder.operation, interval=1, max_attempts=5, predicate=lambda v: v >= 2, sleep=recorder.sleep
        )
        assert (result, attempts) == (2, 2)

    def test_listed_exceptions_count_as_failures(self):
        """Test retry_on exceptions are retried and recorded."""
        recorder = Recorder([ConnectionError("refused"), True])
        _, attempts = retry(
            recorder.operation, interval=1, max_attempts=3, sleep=recorder.sleep, retry_on=(ConnectionError,)
        )
        assert attempts == 2

    def test_unlisted_exceptions_propagate(self):
        """Test other exceptions are not swallowed."""
        recorder = Recorder([KeyError("boom")])
        with pytest.raises(KeyError):
            retry(recorder.operation, interval=1, max_attempts=3, sleep=recorder.sleep)

    def test_stop_request_cancels(self):
        """Test a sleep reporting stop raises RetryCancelled."""
        recorder = Recorder([False], stop_after=1)
        with pytest.raises(RetryCancelled) as exc_info:
            retry(recorder.operation, interval=1, max_attempts=10, sleep=recorder.sleep)
        assert exc_info.value.attempts == 1

    def test_invalid_attempt_count(self):
        with pytest.raises(ValueError):
            retry(lambda attempt: True, interval=1, max_attempts=0)
