"""Tests for backoff computation, retry decisions and the executor loop."""

from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import pytest

from helpscout_mcp.services.errors import AuthenticationError, ConfigurationError
from helpscout_mcp.services.retry import (
    Outcome,
    RetryExecutor,
    RetryPolicy,
    backoff_delay,
    decide,
    default_retry_predicate,
    rate_limit_delay,
)


def status_error(status: int, headers: dict[str, str] | None = None) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://api.helpscout.test/v2/conversations")
    response = httpx.Response(status, headers=headers, request=request)
    return httpx.HTTPStatusError(f"status {status}", request=request, response=response)


# ── Delay computation ───────────────────────────────────────────────


class TestBackoffDelay:
    @pytest.mark.parametrize("attempt_index, base", [(0, 1.0), (1, 2.0), (2, 4.0), (3, 8.0)])
    def test_exponential_with_bounded_jitter(self, attempt_index, base):
        policy = RetryPolicy()
        assert backoff_delay(attempt_index, policy, rng=lambda: 0.0) == base
        assert backoff_delay(attempt_index, policy, rng=lambda: 0.999) <= min(base * 1.1, 10.0)

    def test_capped_at_max_delay(self):
        assert backoff_delay(10, RetryPolicy(), rng=lambda: 0.5) == 10.0

    def test_custom_base_delay(self):
        policy = RetryPolicy(base_delay=0.5, max_delay=100)
        assert backoff_delay(2, policy, rng=lambda: 0.0) == 2.0


class TestRateLimitDelay:
    def test_uses_retry_after_seconds(self):
        assert rate_limit_delay("5", RetryPolicy()) == 5.0
        assert rate_limit_delay("5.0", RetryPolicy()) == 5.0

    def test_missing_header_defaults_to_sixty_then_capped(self):
        assert rate_limit_delay(None, RetryPolicy()) == 10.0

    def test_unparseable_header_uses_default(self):
        assert rate_limit_delay("soon", RetryPolicy(max_delay=120)) == 60.0

    def test_large_retry_after_is_capped(self):
        assert rate_limit_delay("300", RetryPolicy()) == 10.0


# ── Retry predicate ─────────────────────────────────────────────────


class TestDefaultRetryPredicate:
    @pytest.mark.parametrize("status", [429, 500, 502, 503, 599])
    def test_retryable_statuses(self, status):
        assert default_retry_predicate(status_error(status)) is True

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 422])
    def test_client_errors_are_final(self, status):
        assert default_retry_predicate(status_error(status)) is False

    @pytest.mark.parametrize(
        "exc",
        [httpx.ConnectError("refused"), httpx.ReadTimeout("slow"), httpx.RemoteProtocolError("eof")],
    )
    def test_transport_failures_are_retryable(self, exc):
        assert default_retry_predicate(exc) is True

    def test_token_endpoint_rejection_is_final(self):
        assert default_retry_predicate(AuthenticationError("bad", status_code=401)) is False

    def test_token_endpoint_outage_is_retryable(self):
        assert default_retry_predicate(AuthenticationError("down", status_code=503)) is True
        assert default_retry_predicate(AuthenticationError("offline")) is True

    def test_other_exceptions_are_final(self):
        assert default_retry_predicate(ConfigurationError("missing")) is False
        assert default_retry_predicate(ValueError("bug")) is False


# ── Decisions ───────────────────────────────────────────────────────


class TestDecide:
    def test_retry_on_5xx_with_backoff(self):
        decision = decide(status_error(503), 0, RetryPolicy(), rng=lambda: 0.5)
        assert decision.outcome is Outcome.RETRY
        assert decision.delay == pytest.approx(1.05)
        assert decision.reason == "status 503"

    def test_rate_limit_uses_header(self):
        decision = decide(status_error(429, {"Retry-After": "3"}), 1, RetryPolicy())
        assert decision.should_retry
        assert decision.delay == 3.0
        assert decision.reason == "rate limited"

    def test_gives_up_when_attempts_exhausted(self):
        decision = decide(status_error(503), 3, RetryPolicy())
        assert decision.outcome is Outcome.GIVE_UP
        assert decision.reason == "attempts exhausted"

    def test_gives_up_on_non_retryable(self):
        decision = decide(status_error(404), 0, RetryPolicy())
        assert decision.outcome is Outcome.GIVE_UP
        assert decision.reason == "not retryable"

    def test_transport_error_reason_is_class_name(self):
        decision = decide(httpx.ConnectError("refused"), 0, RetryPolicy(), rng=lambda: 0.0)
        assert decision.reason == "ConnectError"
        assert decision.delay == 1.0

    def test_invalid_policy_is_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


# ── Executor ────────────────────────────────────────────────────────


class TestRetryExecutor:
    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self):
        sleep = AsyncMock()
        operation = AsyncMock(return_value="ok")

        result = await RetryExecutor(sleep=sleep).execute(operation)
        assert result == "ok"
        assert operation.await_count == 1
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        sleep = AsyncMock()
        operation = AsyncMock(
            side_effect=[status_error(500), status_error(502), status_error(503), "ok"],
        )

        executor = RetryExecutor(sleep=sleep, rng=lambda: 0.0)
        assert await executor.execute(operation) == "ok"
        assert operation.await_count == 4
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_reraises_last_failure_unchanged(self):
        sleep = AsyncMock()
        last = status_error(503)
        operation = AsyncMock(
            side_effect=[status_error(500), status_error(500), status_error(500), last],
        )

        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            await RetryExecutor(sleep=sleep).execute(operation)
        assert exc_info.value is last
        assert operation.await_count == 4
        assert sleep.await_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_fails_fast(self):
        sleep = AsyncMock()
        operation = AsyncMock(side_effect=status_error(404))

        with pytest.raises(httpx.HTTPStatusError):
            await RetryExecutor(sleep=sleep).execute(operation)
        assert operation.await_count == 1
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_rate_limit_waits_for_retry_after(self):
        sleep = AsyncMock()
        operation = AsyncMock(side_effect=[status_error(429, {"Retry-After": "5"}), "ok"])

        assert await RetryExecutor(sleep=sleep).execute(operation) == "ok"
        sleep.assert_awaited_once_with(5.0)

    @pytest.mark.asyncio
    async def test_per_call_policy_overrides_default(self):
        sleep = AsyncMock()
        operation = AsyncMock(side_effect=status_error(500))

        with pytest.raises(httpx.HTTPStatusError):
            await RetryExecutor(sleep=sleep).execute(operation, RetryPolicy(max_attempts=2))
        assert operation.await_count == 2

    @pytest.mark.asyncio
    async def test_custom_predicate(self):
        sleep = AsyncMock()
        operation = AsyncMock(side_effect=[ValueError("flaky"), "ok"])
        policy = RetryPolicy(retry_predicate=lambda exc: isinstance(exc, ValueError))

        assert await RetryExecutor(policy, sleep=sleep).execute(operation) == "ok"
