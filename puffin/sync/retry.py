"""
Retry policy for remote calls.

Only errors carrying a retryable numeric ``status_code`` are retried. Delays
grow geometrically and are capped; there is no jitter.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, FrozenSet, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES: FrozenSet[int] = frozenset({429, 500, 502, 503, 504})


def status_code_of(error: BaseException) -> Optional[int]:
    """Numeric status code attached to an error, if any."""
    code = getattr(error, "status_code", None)
    if isinstance(code, int) and not isinstance(code, bool):
        return code
    response = getattr(error, "response", None)
    code = getattr(response, "status_code", None)
    return code if isinstance(code, int) else None


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff."""
    max_attempts: int = 3
    initial_delay_ms: int = 1000
    multiplier: float = 2
    max_delay_ms: int = 10000
    retryable_status_codes: FrozenSet[int] = RETRYABLE_STATUS_CODES
    retry_on: Optional[Callable[[BaseException], bool]] = field(default=None, compare=False)

    def delay_ms(self, attempt: int) -> int:
        """Delay to wait after failed attempt number ``attempt`` (1-based)."""
        delay = self.initial_delay_ms * (self.multiplier ** (attempt - 1))
        return int(min(delay, self.max_delay_ms))

    def should_retry(self, error: BaseException) -> bool:
        if self.retry_on is not None:
            return self.retry_on(error)
        return status_code_of(error) in self.retryable_status_codes


DEFAULT_RETRY_POLICY = RetryPolicy()


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    context: str = "",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run an async operation under a retry policy.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt
        policy: Retry policy to apply
        context: Label used in log messages
        sleep: Awaitable sleep, injectable for tests

    Returns:
        The operation's result

    Raises:
        The last error, unchanged, once it is not retryable or attempts run out
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= policy.max_attempts or not policy.should_retry(e):
                raise

            delay = policy.delay_ms(attempt)
            logger.warning(
                f"{context or 'Remote call'} failed with status {status_code_of(e)} "
                f"(attempt {attempt}/{policy.max_attempts}), retrying in {delay}ms"
            )
            await sleep(delay / 1000)
            attempt += 1
