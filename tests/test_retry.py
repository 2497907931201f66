"""Tests for retry classification and backoff."""

import httpx
import pytest

from faceswap_api.services.retry import (
    CredentialError,
    NonRetryableError,
    ProviderError,
    RetryableError,
    RetryPolicy,
    UpstreamHTTPError,
    backoff_delay,
    classify,
)


class TestClassify:

    @pytest.mark.parametrize("status,expected", [
        (404, False),
        (400, False),
        (401, False),
        (429, True),
        (500, True),
        (503, True),
    ])
    def test_http_status(self, status: int, expected: bool) -> None:
        assert classify(UpstreamHTTPError("Vertex AI", status), status) is expected

    def test_status_from_error(self) -> None:
        assert classify(UpstreamHTTPError("RapidAPI", 503)) is True
        assert classify(UpstreamHTTPError("RapidAPI", 404)) is False

    def test_credential_errors_are_fatal(self) -> None:
        assert classify(CredentialError("bad key", status_code=503)) is False

    def test_explicit_intent_wins(self) -> None:
        assert classify(NonRetryableError("not configured", status_code=500)) is False
        assert classify(RetryableError("bad json", status_code=400)) is True

    def test_transport_timeouts(self) -> None:
        assert classify(httpx.ReadTimeout("slow")) is True
        assert classify(httpx.ConnectError("refused")) is True
        assert classify(TimeoutError()) is True

    def test_message_markers(self) -> None:
        assert classify(ProviderError("Rate limit exceeded, try later")) is True
        assert classify(ProviderError("request timed out")) is True
        assert classify(ProviderError("invalid argument")) is False


class TestBackoff:

    def test_delay_bounds(self) -> None:
        policy = RetryPolicy()
        for _ in range(50):
            delay = policy.delay(3, 2000, 30000)
            assert 16000 <= delay <= 16000 + 0.3 * 2000

    def test_delay_is_capped(self) -> None:
        assert backoff_delay(10, 2000, 30000, uniform=lambda a, b: 0) == 30000

    def test_jitter_upper_bound(self) -> None:
        assert backoff_delay(0, 500, 5000, uniform=lambda a, b: b) == 650

    def test_fast_mode_uses_fast_pair(self) -> None:
        policy = RetryPolicy.for_mode(fast=True, uniform=lambda a, b: 0)
        assert policy.delay(0) == 500
        assert policy.delay(10) == 5000


class TestDecide:

    def test_retry_until_cap(self) -> None:
        policy = RetryPolicy(max_attempts=3, uniform=lambda a, b: 0)
        error = UpstreamHTTPError("RapidAPI", 500)

        first = policy.decide(error, 0)
        assert first.should_retry is True
        assert first.delay_ms == 2000
        assert policy.decide(error, 1).should_retry is True
        assert policy.decide(error, 2).should_retry is False

    def test_fatal_error_is_not_retried(self) -> None:
        policy = RetryPolicy(max_attempts=15)
        decision = policy.decide(UpstreamHTTPError("RapidAPI", 404), 0)

        assert decision.should_retry is False
        assert decision.delay_ms == 0

    def test_at_least_one_attempt(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
