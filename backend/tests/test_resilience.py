"""
容错工具测试：重试、熔断、限流
"""
import asyncio
import pytest
from unittest.mock import AsyncMock, patch
from cvplus.services import resilience
from cvplus.services.llm_service import LLMAuthError, LLMServerError
from cvplus.services.resilience import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    OperationTimeoutError,
    RateLimiter,
    ResilienceConfig,
    RetryConfig,
    with_full_resilience,
    with_retry,
)

FAST_RETRY = RetryConfig(max_attempts=3, initial_delay=0.0, jitter_factor=0.0)


class TestRetryConfig:
    """重试判定测试"""

    def test_delay_backoff(self):
        config = RetryConfig(initial_delay=1.0, backoff_multiplier=2.0, max_delay=5.0, jitter_factor=0.0)
        assert [config.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]

    def test_retryable_errors(self):
        config = RetryConfig()
        assert config.is_retryable(LLMServerError("down", 502)) is True
        assert config.is_retryable(LLMAuthError("bad key", 401)) is False
        assert config.is_retryable(asyncio.TimeoutError()) is True
        assert config.is_retryable(ValueError("service unavailable")) is True
        assert config.is_retryable(ValueError("bad input")) is False
        assert config.is_retryable(CircuitOpenError("anthropic")) is False


class TestWithRetry:
    """重试执行测试"""

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        operation = AsyncMock(side_effect=[LLMServerError("down", 502), "ok"])
        assert await with_retry(operation, FAST_RETRY, "test") == "ok"
        assert operation.await_count == 2

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self):
        operation = AsyncMock(side_effect=LLMAuthError("bad key", 401))
        with pytest.raises(LLMAuthError):
            await with_retry(operation, FAST_RETRY, "test")
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        operation = AsyncMock(side_effect=LLMServerError("down", 502))
        with pytest.raises(LLMServerError):
            await with_retry(operation, FAST_RETRY, "test")
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_attempt_timeout(self):
        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(OperationTimeoutError):
            await with_retry(slow, RetryConfig(max_attempts=1), "slow", timeout=0.01)


class TestCircuitBreaker:
    """熔断器测试"""

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self):
        breaker = CircuitBreaker("test", failure_threshold=2, reset_timeout=60)
        failing = AsyncMock(side_effect=RuntimeError("boom"))

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call(failing)

        assert breaker.current_state() == CircuitState.OPEN
        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.call(AsyncMock(return_value="ok"))
        assert exc_info.value.retry_after > 0

    @pytest.mark.asyncio
    async def test_fallback_when_open(self):
        breaker = CircuitBreaker("test", failure_threshold=1)
        with pytest.raises(RuntimeError):
            await breaker.call(AsyncMock(side_effect=RuntimeError("boom")))

        result = await breaker.call(AsyncMock(return_value="live"), fallback=AsyncMock(return_value="cached"))
        assert result == "cached"

    @pytest.mark.asyncio
    async def test_half_open_trial(self):
        """测试半开状态：试探成功后关闭"""
        breaker = CircuitBreaker("test", failure_threshold=1, reset_timeout=0)
        with pytest.raises(RuntimeError):
            await breaker.call(AsyncMock(side_effect=RuntimeError("boom")))

        assert breaker.current_state() == CircuitState.HALF_OPEN
        assert await breaker.call(AsyncMock(return_value="ok")) == "ok"
        assert breaker.current_state() == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self):
        breaker = CircuitBreaker("test", failure_threshold=1, reset_timeout=0)
        with pytest.raises(RuntimeError):
            await breaker.call(AsyncMock(side_effect=RuntimeError("boom")))
        breaker.current_state()

        breaker.reset_timeout = 60
        with pytest.raises(RuntimeError):
            await breaker.call(AsyncMock(side_effect=RuntimeError("again")))
        assert breaker.current_state() == CircuitState.OPEN

    def test_minimum_request_count(self):
        breaker = CircuitBreaker("test", failure_threshold=1, minimum_request_count=3)
        breaker.record_failure()
        assert breaker.current_state() == CircuitState.CLOSED
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.current_state() == CircuitState.OPEN


class TestRateLimiter:
    """限流测试"""

    def test_try_acquire(self):
        limiter = RateLimiter(max_requests=2, window=60)
        assert limiter.try_acquire() is True
        assert limiter.try_acquire() is True
        assert limiter.try_acquire() is False

    @pytest.mark.asyncio
    async def test_acquire_waits_for_window(self):
        limiter = RateLimiter(max_requests=1, window=0.05)
        await limiter.acquire()
        loop = asyncio.get_running_loop()
        start = loop.time()
        await limiter.acquire()
        assert loop.time() - start >= 0.03


class TestFullResilience:
    """组合容错测试"""

    @pytest.mark.asyncio
    async def test_shared_breaker_per_name(self):
        config = ResilienceConfig(name="unit", retry=RetryConfig(max_attempts=1), failure_threshold=1)
        with pytest.raises(RuntimeError):
            await with_full_resilience(AsyncMock(side_effect=RuntimeError("boom")), config)

        with pytest.raises(CircuitOpenError):
            await with_full_resilience(AsyncMock(return_value="ok"), config)

        metrics = resilience.get_metrics()
        assert metrics["unit"]["state"] == "open"
        assert metrics["unit"]["total_failures"] == 1

    @pytest.mark.asyncio
    async def test_success_with_rate_limit(self):
        config = ResilienceConfig(name="unit-ok", retry=FAST_RETRY, requests_per_minute=10)
        operation = AsyncMock(side_effect=[LLMServerError("down", 502), {"ok": True}])

        assert await with_full_resilience(operation, config) == {"ok": True}
        assert resilience.get_metrics()["unit-ok"]["total_successes"] == 1
