"""
Retry Policy
Exception hierarchy for upstream calls, retryable/fatal classification and
capped exponential backoff with jitter.
"""

import random
from typing import Callable, Optional

import httpx

from faceswap_api.core.config import Settings, settings
from faceswap_api.schemas.generation import RetryDecision


# Upstreams sometimes report these only in free-text bodies
RETRYABLE_MESSAGE_MARKERS = (
    "timeout",
    "timed out",
    "rate limit",
    "rate-limit",
    "ratelimit",
    "rate_limit",
    "too many requests",
)

JITTER_FRACTION = 0.3


class ProviderError(Exception):
    """Base exception for upstream provider errors."""

    def __init__(
        self,
        message: str,
        retryable: Optional[bool] = None,
        status_code: Optional[int] = None,
        details: Optional[dict] = None
    ):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code
        self.details = details or {}


class NonRetryableError(ProviderError):
    """Error that should NOT be retried (e.g., invalid input)."""

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[dict] = None):
        super().__init__(message, retryable=False, status_code=status_code, details=details)


class RetryableError(ProviderError):
    """Error that SHOULD be retried (e.g., API timeout)."""

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[dict] = None):
        super().__init__(message, retryable=True, status_code=status_code, details=details)


class UpstreamHTTPError(ProviderError):
    """Non-2xx response from a provider; retryability follows the status code."""

    def __init__(self, provider: str, status_code: int, body: str = ""):
        super().__init__(
            f"{provider} API error: {status_code}",
            status_code=status_code,
            details={"body": body[:2000]}
        )
        self.body = body


class CredentialError(NonRetryableError):
    """Token endpoint rejected the assertion, or the assertion could not be signed."""


class FetchError(ProviderError):
    """Image bytes could not be fetched."""


def classify(error: BaseException, http_status: Optional[int] = None) -> bool:
    """
    Decide whether an error is worth another attempt.

    Fatal: any 4xx except 429. Retryable: 429, any 5xx, transport timeouts,
    and messages mentioning a timeout or rate limit. Errors raised with an
    explicit retry intent keep it.
    """
    if isinstance(error, CredentialError):
        return False

    if isinstance(error, ProviderError) and error.retryable is not None:
        return error.retryable

    status = http_status if http_status is not None else getattr(error, "status_code", None)
    if isinstance(status, int):
        if status == 429 or 500 <= status < 600:
            return True
        if 400 <= status < 500:
            return False

    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError, TimeoutError)):
        return True

    message = str(error).lower()
    return any(marker in message for marker in RETRYABLE_MESSAGE_MARKERS)


def backoff_delay(
    attempt_index: int,
    base_delay_ms: int,
    max_delay_ms: int,
    uniform: Callable[[float, float], float] = random.uniform
) -> int:
    """min(max, base * 2^attempt) plus uniform jitter in [0, 0.3 * base]."""
    exponential = min(max_delay_ms, base_delay_ms * (2 ** attempt_index))
    jitter = uniform(0, JITTER_FRACTION * base_delay_ms)
    return int(exponential + jitter)


class RetryPolicy:
    """
    Stateless retry configuration.

    The policy does not know about fast/normal modes; callers pass the
    delay pair they want (see for_mode).
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay_ms: int = 2000,
        max_delay_ms: int = 30000,
        uniform: Callable[[float, float], float] = random.uniform
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self._uniform = uniform

    @classmethod
    def for_mode(
        cls,
        fast: bool = False,
        max_attempts: Optional[int] = None,
        config: Optional[Settings] = None,
        **kwargs
    ) -> "RetryPolicy":
        """Build a policy with the configured fast or normal delay pair."""
        config = config or settings
        if fast:
            base, cap = config.RETRY_FAST_BASE_MS, config.RETRY_FAST_MAX_MS
        else:
            base, cap = config.RETRY_NORMAL_BASE_MS, config.RETRY_NORMAL_MAX_MS
        return cls(
            max_attempts=max_attempts or config.PROVIDER_MAX_ATTEMPTS,
            base_delay_ms=base,
            max_delay_ms=cap,
            **kwargs
        )

    def classify(self, error: BaseException, http_status: Optional[int] = None) -> bool:
        return classify(error, http_status)

    def delay(
        self,
        attempt_index: int,
        base_delay_ms: Optional[int] = None,
        max_delay_ms: Optional[int] = None
    ) -> int:
        return backoff_delay(
            attempt_index,
            self.base_delay_ms if base_delay_ms is None else base_delay_ms,
            self.max_delay_ms if max_delay_ms is None else max_delay_ms,
            self._uniform
        )

    def decide(
        self,
        error: BaseException,
        attempt_index: int,
        http_status: Optional[int] = None
    ) -> RetryDecision:
        """
        Decide what to do after attempt `attempt_index` (0-based) failed.
        """
        if not self.classify(error, http_status):
            return RetryDecision(should_retry=False)
        if attempt_index + 1 >= self.max_attempts:
            return RetryDecision(should_retry=False)
        return RetryDecision(should_retry=True, delay_ms=self.delay(attempt_index))


__all__ = [
    "ProviderError",
    "NonRetryableError",
    "RetryableError",
    "UpstreamHTTPError",
    "CredentialError",
    "FetchError",
    "classify",
    "backoff_delay",
    "RetryPolicy",
]
