"""
Retry wrapper for calls to unreliable upstream services.

Policy: up to ``max_attempts`` calls; before retry ``i`` (0-indexed) wait
``base_delay * 2**i`` (exponential) or ``base_delay`` (fixed). Only transient
errors are retried: HTTP 5xx, HTTP 429, or failures without any status code.

There is no jitter, no circuit breaker and no cap on total elapsed time, so
the worst-case latency of one call is the sum of all delays plus every
attempt's own transport timeout.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional, TypeVar

from arovia.domain.errors import InvalidModelOutput, MissingInput, NonTransientUpstreamError


logger = logging.getLogger(__name__)

T = TypeVar("T")

_NEVER_RETRIED = (NonTransientUpstreamError, InvalidModelOutput, MissingInput)


class Backoff(str, Enum):
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to call and how long to wait in between."""
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    backoff: Backoff = Backoff.EXPONENTIAL

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.base_delay_seconds < 0:
            raise ValueError(f"base_delay_seconds must not be negative, got {self.base_delay_seconds}")

    def delay_for(self, retry_index: int) -> float:
        """Delay before retry ``retry_index`` (0 = the first retry)."""
        if self.backoff is Backoff.FIXED:
            return self.base_delay_seconds
        return self.base_delay_seconds * (2 ** retry_index)


@dataclass
class RetryState:
    """Progress of one retry loop."""
    attempts: int = 0
    last_error: Optional[BaseException] = None
    delays: List[float] = field(default_factory=list)

    @property
    def total_delay(self) -> float:
        return sum(self.delays)


def is_transient(error: BaseException) -> bool:
    """Classify an error as worth retrying."""
    if isinstance(error, _NEVER_RETRIED):
        return False
    status = getattr(error, "status_code", None)
    if status is None:
        return True
    return status >= 500 or status == 429


async def with_retries(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy = RetryPolicy(),
    *,
    classify: Callable[[BaseException], bool] = is_transient,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    state: Optional[RetryState] = None,
    label: str = "upstream call",
) -> T:
    """
    Await ``operation()`` until it succeeds, retrying transient failures.

    Non-transient errors are re-raised immediately. When every attempt fails
    the last error is raised. Pass a ``RetryState`` to observe the attempt
    count and the delays taken.
    """
    state = state if state is not None else RetryState()

    for retry_index in range(policy.max_attempts):
        state.attempts += 1
        try:
            return await operation()
        except Exception as e:
            state.last_error = e
            if not classify(e):
                logger.info(f"{label}: non-transient failure on attempt {state.attempts}, not retrying: {e}")
                raise
            if state.attempts >= policy.max_attempts:
                break
            delay = policy.delay_for(retry_index)
            logger.warning(
                f"{label}: attempt {state.attempts}/{policy.max_attempts} failed ({e}), "
                f"retrying in {delay:.2f}s"
            )
            state.delays.append(delay)
            await sleep(delay)

    logger.error(
        f"{label}: giving up after {state.attempts} attempts "
        f"({state.total_delay:.2f}s spent waiting): {state.last_error}"
    )
    raise state.last_error
