"""Bounded retry with exponential backoff, jitter and rate-limit waits.

The executor knows nothing about Help Scout payloads.  It only looks at
transport-level failure signals: whether a response arrived, its status
code and the ``Retry-After`` header on 429s.

Delay computation and the retry decision are plain functions so they can be
tested without any transport:

>>> decide(exc_503, attempt_index=0, policy=RetryPolicy(), rng=lambda: 0.5)
RetryDecision(outcome=<Outcome.RETRY: 'retry'>, delay=1.05, reason='status 503')
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeVar

import httpx

from helpscout_mcp.services.errors import AuthenticationError, parse_retry_after
from helpscout_mcp.services.tracing import RequestTrace

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ── Retry configuration ─────────────────────────────────────────────
MAX_ATTEMPTS = 4
BASE_DELAY_SECONDS = 1.0
MAX_DELAY_SECONDS = 10.0
JITTER_RATIO = 0.1


def default_retry_predicate(exc: BaseException) -> bool:
    """Retry when no response arrived, on timeouts, 5xx and 429."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or 500 <= status <= 599
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, AuthenticationError):
        # A 4xx from the token endpoint means bad credentials, not a blip.
        return exc.status_code is None or not 400 <= exc.status_code < 500
    return False


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = MAX_ATTEMPTS
    base_delay: float = BASE_DELAY_SECONDS
    max_delay: float = MAX_DELAY_SECONDS
    retry_predicate: Callable[[BaseException], bool] = field(default=default_retry_predicate)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")


class Outcome(str, Enum):
    RETRY = "retry"
    GIVE_UP = "give_up"


@dataclass(frozen=True)
class RetryDecision:
    outcome: Outcome
    delay: float = 0.0
    reason: str = ""

    @property
    def should_retry(self) -> bool:
        return self.outcome is Outcome.RETRY


def backoff_delay(
    attempt_index: int,
    policy: RetryPolicy,
    rng: Callable[[], float] = random.random,
) -> float:
    """``base * 2**attempt_index`` plus up to 10% jitter, capped at ``max_delay``."""
    delay = policy.base_delay * (2 ** attempt_index)
    jitter = rng() * JITTER_RATIO * delay
    return min(delay + jitter, policy.max_delay)


def rate_limit_delay(retry_after: str | None, policy: RetryPolicy) -> float:
    """Seconds to wait after a 429, from ``Retry-After`` (default 60s), capped."""
    return min(float(parse_retry_after(retry_after)), policy.max_delay)


def _status_of(exc: BaseException) -> int | None:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


def decide(
    exc: BaseException,
    attempt_index: int,
    policy: RetryPolicy,
    rng: Callable[[], float] = random.random,
) -> RetryDecision:
    """Decide what to do after attempt number ``attempt_index`` (0-based) failed."""
    if attempt_index + 1 >= policy.max_attempts:
        return RetryDecision(Outcome.GIVE_UP, reason="attempts exhausted")
    if not policy.retry_predicate(exc):
        return RetryDecision(Outcome.GIVE_UP, reason="not retryable")

    status = _status_of(exc)
    if status == 429:
        response = exc.response  # type: ignore[attr-defined]
        return RetryDecision(
            Outcome.RETRY,
            delay=rate_limit_delay(response.headers.get("retry-after"), policy),
            reason="rate limited",
        )
    reason = f"status {status}" if status is not None else type(exc).__name__
    return RetryDecision(Outcome.RETRY, delay=backoff_delay(attempt_index, policy, rng), reason=reason)


class RetryExecutor:
    """Runs one operation with sequential, delayed retries."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
        *,
        trace: RequestTrace | None = None,
    ) -> T:
        """Await ``operation()`` until it succeeds or the policy gives up.

        The last failure is re-raised unchanged; turning it into an API
        error is the normalizer's job.
        """
        policy = policy or self.policy
        request_id = trace.id if trace else "-"
        attempt_index = 0
        while True:
            try:
                return await operation()
            except Exception as exc:
                decision = decide(exc, attempt_index, policy, self._rng)
                if not decision.should_retry:
                    if attempt_index > 0:
                        logger.warning(
                            "[%s] Giving up after %d/%d attempts (%s)",
                            request_id, attempt_index + 1, policy.max_attempts, decision.reason,
                        )
                    raise

                if decision.reason == "rate limited":
                    logger.warning(
                        "[%s] Rate limit hit, waiting %.1fs before retry (attempt %d/%d)",
                        request_id, decision.delay, attempt_index + 1, policy.max_attempts,
                    )
                else:
                    logger.warning(
                        "[%s] Request failed (%s), retrying in %.2fs (attempt %d/%d)",
                        request_id, decision.reason, decision.delay,
                        attempt_index + 1, policy.max_attempts,
                    )
                await self._sleep(decision.delay)
                attempt_index += 1
