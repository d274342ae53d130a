"""
外部服务调用的容错工具

限流 -> 熔断 -> 重试 -> 单次超时，按provider提供预设配置。
"""
import asyncio
import logging
import random
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Tuple, Type
import httpx

logger = logging.getLogger(__name__)

RETRYABLE_MESSAGE_MARKERS = ("rate", "quota", "overload", "unavailable", "timeout")


class CircuitOpenError(Exception):
    """熔断器打开时拒绝调用"""

    def __init__(self, name: str, retry_after: float = 0.0):
        super().__init__(f"{name} 熔断器已打开，请稍后重试")
        self.name = name
        self.retry_after = retry_after


class OperationTimeoutError(Exception):
    pass


@dataclass
class RetryConfig:
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.1
    retryable_status_codes: Tuple[int, ...] = (408, 429, 500, 502, 503, 504)
    retryable_errors: Tuple[Type[BaseException], ...] = (
        httpx.TimeoutException,
        httpx.NetworkError,
        asyncio.TimeoutError,
        OperationTimeoutError,
    )

    def delay_for(self, attempt: int) -> float:
        """第 attempt 次失败后的等待时间（attempt 从1开始）"""
        base = min(self.max_delay, self.initial_delay * (self.backoff_multiplier ** (attempt - 1)))
        jitter = base * self.jitter_factor
        return max(0.0, base + random.uniform(-jitter, jitter))

    def is_retryable(self, error: BaseException) -> bool:
        if isinstance(error, CircuitOpenError):
            return False
        if isinstance(error, self.retryable_errors):
            return True
        status_code = getattr(error, "status_code", None)
        if status_code is not None:
            return status_code in self.retryable_status_codes
        message = str(error).lower()
        return any(marker in message for marker in RETRYABLE_MESSAGE_MARKERS)


class CircuitState:
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    熔断器

    窗口内失败次数达到阈值且请求数达到最小值时打开；
    打开状态经过 reset_timeout 后进入半开，放行一次试探调用，成功则关闭，失败则重新打开。
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        failure_window: float = 60.0,
        minimum_request_count: int = 1
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failure_window = failure_window
        self.minimum_request_count = minimum_request_count
        self.state = CircuitState.CLOSED
        self.opened_at: Optional[float] = None
        self._failures: Deque[float] = deque()
        self._requests: Deque[float] = deque()
        self._trial_in_progress = False
        self.total_failures = 0
        self.total_successes = 0

    def _prune(self, now: float):
        cutoff = now - self.failure_window
        while self._failures and self._failures[0] < cutoff:
            self._failures.popleft()
        while self._requests and self._requests[0] < cutoff:
            self._requests.popleft()

    def current_state(self) -> str:
        if self.state == CircuitState.OPEN and self.opened_at is not None:
            if time.monotonic() - self.opened_at >= self.reset_timeout:
                self.state = CircuitState.HALF_OPEN
                self._trial_in_progress = False
                logger.info(f"[熔断] {self.name} 进入半开状态")
        return self.state

    def is_open(self) -> bool:
        return self.current_state() == CircuitState.OPEN

    def _retry_after(self) -> float:
        if self.opened_at is None:
            return 0.0
        return max(0.0, self.reset_timeout - (time.monotonic() - self.opened_at))

    def record_success(self):
        self.total_successes += 1
        self._requests.append(time.monotonic())
        if self.state == CircuitState.HALF_OPEN:
            logger.info(f"[熔断] {self.name} 试探调用成功，熔断器关闭")
            self.state = CircuitState.CLOSED
            self._failures.clear()
            self.opened_at = None
        self._trial_in_progress = False

    def record_failure(self):
        now = time.monotonic()
        self.total_failures += 1
        self._failures.append(now)
        self._requests.append(now)
        self._prune(now)
        self._trial_in_progress = False

        if self.state == CircuitState.HALF_OPEN:
            self._open(now)
            return
        if len(self._failures) >= self.failure_threshold and len(self._requests) >= self.minimum_request_count:
            self._open(now)

    def _open(self, now: float):
        self.state = CircuitState.OPEN
        self.opened_at = now
        logger.warning(f"[熔断] {self.name} 熔断器打开，{self.reset_timeout}秒后重试")

    async def call(
        self,
        operation: Callable[[], Awaitable[Any]],
        fallback: Optional[Callable[[], Awaitable[Any]]] = None
    ) -> Any:
        state = self.current_state()
        if state == CircuitState.OPEN or (state == CircuitState.HALF_OPEN and self._trial_in_progress):
            if fallback is not None:
                logger.info(f"[熔断] {self.name} 熔断中，使用降级方案")
                return await fallback()
            raise CircuitOpenError(self.name, self._retry_after())

        if state == CircuitState.HALF_OPEN:
            self._trial_in_progress = True
        try:
            result = await operation()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def reset(self):
        self.state = CircuitState.CLOSED
        self.opened_at = None
        self._failures.clear()
        self._requests.clear()
        self._trial_in_progress = False

    def get_metrics(self) -> Dict[str, Any]:
        self._prune(time.monotonic())
        return {
            "state": self.current_state(),
            "recent_failures": len(self._failures),
            "recent_requests": len(self._requests),
            "total_failures": self.total_failures,
            "total_successes": self.total_successes,
        }


class RateLimiter:
    """滑动窗口限流，调用方等待空闲名额"""

    def __init__(self, max_requests: int, window: float = 60.0):
        self.max_requests = max_requests
        self.window = window
        self._timestamps: Deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float):
        while self._timestamps and self._timestamps[0] <= now - self.window:
            self._timestamps.popleft()

    def try_acquire(self) -> bool:
        now = time.monotonic()
        self._prune(now)
        if len(self._timestamps) < self.max_requests:
            self._timestamps.append(now)
            return True
        return False

    async def acquire(self):
        async with self._lock:
            while True:
                now = time.monotonic()
                self._prune(now)
                if len(self._timestamps) < self.max_requests:
                    self._timestamps.append(now)
                    return
                wait = self._timestamps[0] + self.window - now
                logger.info(f"[限流] 达到上限，等待 {wait:.1f} 秒")
                await asyncio.sleep(max(wait, 0.01))


async def with_timeout(coro: Awaitable[Any], seconds: float, message: Optional[str] = None) -> Any:
    try:
        return await asyncio.wait_for(coro, timeout=seconds)
    except asyncio.TimeoutError:
        raise OperationTimeoutError(message or f"操作超时（{seconds}秒）")


async def with_retry(
    operation: Callable[[], Awaitable[Any]],
    config: RetryConfig,
    name: str = "operation",
    timeout: Optional[float] = None
) -> Any:
    last_error: Optional[BaseException] = None
    for attempt in range(1, config.max_attempts + 1):
        try:
            if timeout:
                return await with_timeout(operation(), timeout, f"{name} 调用超时（{timeout}秒）")
            return await operation()
        except Exception as e:
            last_error = e
            if not config.is_retryable(e) or attempt >= config.max_attempts:
                raise
            delay = config.delay_for(attempt)
            logger.warning(f"[重试] {name} 第{attempt}次失败: {e}，{delay:.1f}秒后重试 ({attempt + 1}/{config.max_attempts})")
            await asyncio.sleep(delay)
    raise last_error


@dataclass
class ResilienceConfig:
    name: str
    retry: RetryConfig = field(default_factory=RetryConfig)
    failure_threshold: int = 5
    reset_timeout: float = 60.0
    failure_window: float = 60.0
    minimum_request_count: int = 1
    requests_per_minute: Optional[int] = None
    timeout: Optional[float] = 60.0


RESILIENCE_PRESETS: Dict[str, ResilienceConfig] = {
    "anthropic": ResilienceConfig(
        name="anthropic",
        retry=RetryConfig(max_attempts=3, initial_delay=2.0, max_delay=30.0),
        failure_threshold=4, requests_per_minute=15, timeout=120.0,
    ),
    "openai": ResilienceConfig(
        name="openai",
        retry=RetryConfig(max_attempts=4, initial_delay=1.0, max_delay=20.0),
        failure_threshold=5, requests_per_minute=20, timeout=60.0,
    ),
    "heygen": ResilienceConfig(
        name="heygen",
        retry=RetryConfig(max_attempts=3, initial_delay=5.0, max_delay=60.0),
        failure_threshold=3, reset_timeout=120.0, requests_per_minute=5, timeout=60.0,
    ),
    "runwayml": ResilienceConfig(
        name="runwayml",
        retry=RetryConfig(max_attempts=3, initial_delay=5.0, max_delay=60.0),
        failure_threshold=3, reset_timeout=120.0, requests_per_minute=5, timeout=60.0,
    ),
}

_breakers: Dict[str, CircuitBreaker] = {}
_limiters: Dict[str, RateLimiter] = {}


def get_circuit_breaker(config: ResilienceConfig) -> CircuitBreaker:
    breaker = _breakers.get(config.name)
    if breaker is None:
        breaker = CircuitBreaker(
            config.name,
            failure_threshold=config.failure_threshold,
            reset_timeout=config.reset_timeout,
            failure_window=config.failure_window,
            minimum_request_count=config.minimum_request_count,
        )
        _breakers[config.name] = breaker
    return breaker


def get_rate_limiter(config: ResilienceConfig) -> Optional[RateLimiter]:
    if not config.requests_per_minute:
        return None
    limiter = _limiters.get(config.name)
    if limiter is None:
        limiter = RateLimiter(config.requests_per_minute, 60.0)
        _limiters[config.name] = limiter
    return limiter


async def with_full_resilience(
    operation: Callable[[], Awaitable[Any]],
    config: ResilienceConfig,
    fallback: Optional[Callable[[], Awaitable[Any]]] = None
) -> Any:
    """限流 -> 熔断 -> 重试（每次尝试带超时）"""
    limiter = get_rate_limiter(config)
    if limiter is not None:
        await limiter.acquire()

    breaker = get_circuit_breaker(config)

    async def guarded():
        return await with_retry(operation, config.retry, config.name, config.timeout)

    return await breaker.call(guarded, fallback)


def get_metrics() -> Dict[str, Any]:
    return {name: breaker.get_metrics() for name, breaker in _breakers.items()}


def reset_all():
    """重置所有熔断器和限流器（用于测试）"""
    _breakers.clear()
    _limiters.clear()
