"""
Retry utilities for handling transient failures
"""
import random
import time
from typing import Callable, Any, Optional, List
import logging

logger = logging.getLogger(__name__)

class RetryConfig:
    """Configuration for retry behavior"""
    def __init__(
        self,
        max_attempts: int = 5,
        base_delay: float = 0.05,
        max_delay: float = 1.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: Optional[List[type]] = None
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = tuple(retryable_exceptions or ())

    def with_attempts(self, max_attempts: int) -> "RetryConfig":
        """Copy of this policy with a different attempt cap"""
        return RetryConfig(
            max_attempts=max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            exponential_base=self.exponential_base,
            jitter=self.jitter,
            retryable_exceptions=list(self.retryable_exceptions),
        )

    def is_retryable(self, error: BaseException) -> bool:
        return isinstance(error, self.retryable_exceptions)

class RetryExhausted(Exception):
    """Raised when every attempt failed with a retryable error"""
    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"gave up after {attempts} attempts: {last_error}")

def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay for exponential backoff with jitter"""
    delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    delay = min(delay, config.max_delay)

    if config.jitter:
        # Spread out callers that conflicted on the same rows
        delay *= (0.5 + random.random() * 0.5)

    return delay

def retry_call(func: Callable[..., Any], config: RetryConfig, *args, sleep: Callable[[float], None] = time.sleep, **kwargs) -> Any:
    """Call func until it succeeds, raises a non-retryable error, or attempts run out.

    Non-retryable errors propagate untouched after the first attempt. When the
    last attempt fails with a retryable error, RetryExhausted is raised with
    that error attached.
    """
    name = getattr(func, "__name__", repr(func))

    for attempt in range(1, config.max_attempts + 1):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            if not config.is_retryable(e):
                raise

            if attempt == config.max_attempts:
                logger.error(f"Max retry attempts ({config.max_attempts}) reached for {name}: {e}")
                raise RetryExhausted(attempt, e) from e

            delay = calculate_delay(attempt, config)
            logger.warning(f"Attempt {attempt}/{config.max_attempts} failed for {name}: {e}. Retrying in {delay:.3f}s")
            if delay > 0:
                sleep(delay)
