"""
Corrective retry loop around a parse attempt.

Two kinds of retry share one tenacity policy:

- blind retry: any failure other than a structural mismatch (transport
  errors, filtered/truncated/empty completions) repeats the identical request;
- corrective retry: after a ResponseDeserializationError the next attempt's
  considerations carry the previous raw output and an instruction to return
  complete, corrected JSON.

The only state carried between attempts is CorrectionState. Cancelling the
calling task aborts the loop, whether it is waiting on the transport or
sleeping between attempts.
"""

import logging
import math
import random
import weakref
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_all,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from ...exceptions import (
    ConfigurationError,
    InvalidInputError,
    ResponseDeserializationError,
    SchemaGenerationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_COUNT = 3
DEFAULT_MEDIAN_FIRST_RETRY_DELAY = 1.0

CORRECTION_DIRECTIVE = """Your previous response could not be converted into the requested JSON structure.
Previous response:
---Begin previous response---
{invalid_output}
---End previous response---
Return a complete and correct JSON object that matches the schema. Include every required
property, use the correct value types and do not add properties that are not in the schema."""


# =============================================================================
# Backoff
# =============================================================================


class wait_decorrelated_jitter(wait_base):
    """
    Decorrelated jitter backoff with an exponentially growing median delay.

    Delay n is ``(f(t_n) - f(t_{n-1})) * median / 1.4`` where
    ``t_n = n + U[0, 1)`` and ``f(t) = 2**t * tanh(sqrt(4 * t))``, so the
    median of the first delay is ``median_first_retry_delay`` and consecutive
    delays do not cluster.
    """

    _P_FACTOR = 4.0
    _RP_SCALING_FACTOR = 1 / 1.4

    def __init__(self, median_first_retry_delay: float = DEFAULT_MEDIAN_FIRST_RETRY_DELAY, max_delay: float | None = None):
        if median_first_retry_delay < 0:
            raise ValueError("median_first_retry_delay must be non-negative")
        self.median_first_retry_delay = median_first_retry_delay
        self.max_delay = max_delay
        # Previous f(t) per retry run.
        self._previous: weakref.WeakKeyDictionary = weakref.WeakKeyDictionary()

    def __call__(self, retry_state: RetryCallState) -> float:
        t = (retry_state.attempt_number - 1) + random.random()
        current = 2**t * math.tanh(math.sqrt(self._P_FACTOR * t))
        previous = self._previous.get(retry_state, 0.0)
        self._previous[retry_state] = current

        delay = (current - previous) * self._RP_SCALING_FACTOR * self.median_first_retry_delay
        delay = max(0.0, delay)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay


def is_retryable_error(error: BaseException) -> bool:
    """Everything but cancellation and fatal setup errors is retried."""
    if not isinstance(error, Exception):
        return False
    return not isinstance(error, (ConfigurationError, SchemaGenerationError, InvalidInputError))


def default_retry_policy(
    retry_count: int = DEFAULT_RETRY_COUNT,
    median_first_retry_delay: float = DEFAULT_MEDIAN_FIRST_RETRY_DELAY,
) -> AsyncRetrying:
    """Default policy: ``retry_count`` retries with decorrelated jitter, last error re-raised."""
    return AsyncRetrying(
        stop=stop_after_attempt(retry_count + 1),
        wait=wait_decorrelated_jitter(median_first_retry_delay),
        retry=retry_if_exception(is_retryable_error),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


# =============================================================================
# Corrective Retry
# =============================================================================


@dataclass
class CorrectionState:
    """State threaded across attempts of one retry loop."""

    invalid_output: str | None = None

    def record_failure(self, error: BaseException) -> None:
        """Keep the raw output of a structural mismatch, forget it on any other failure."""
        if isinstance(error, ResponseDeserializationError):
            self.invalid_output = error.completion_content
        else:
            self.invalid_output = None


def build_corrective_considerations(
    considerations: str | None,
    state: CorrectionState,
) -> str | None:
    """
    Considerations for the next attempt.

    Unchanged unless the previous attempt failed with a structural mismatch,
    in which case the previous output and the correction directive are appended.
    """
    if state.invalid_output is None:
        return considerations

    directive = CORRECTION_DIRECTIVE.format(invalid_output=state.invalid_output)
    if considerations and considerations.strip():
        return f"{considerations}\n\n{directive}"
    return directive


async def run_with_corrective_retry(
    attempt: Callable[[str | None], Awaitable[T]],
    considerations: str | None = None,
    retry_policy: AsyncRetrying | None = None,
) -> T:
    """
    Run ``attempt`` under a retry policy, switching to corrective prompts on mismatch.

    Args:
        attempt: Coroutine function performing one full parse with the given
            considerations.
        considerations: The caller's original considerations.
        retry_policy: tenacity policy; ``default_retry_policy()`` when omitted.
            The policy is copied per call so it can be shared safely. Its
            stop and wait strategies are used as given; fatal errors are never
            retried and the last error is always re-raised.

    Returns:
        The first successful attempt's result.

    Raises:
        The last attempt's error once the retry budget is exhausted, or
        immediately for non-retryable errors.
    """
    base_policy = retry_policy or default_retry_policy()
    policy = base_policy.copy(
        retry=retry_all(retry_if_exception(is_retryable_error), base_policy.retry),
        reraise=True,
    )
    state = CorrectionState()

    async for retry_attempt in policy:
        with retry_attempt:
            effective_considerations = build_corrective_considerations(considerations, state)
            attempt_number = retry_attempt.retry_state.attempt_number
            if state.invalid_output is not None:
                logger.warning(
                    "Attempt %d: corrective retry with previous invalid output (%d chars)",
                    attempt_number,
                    len(state.invalid_output),
                )
            try:
                return await attempt(effective_considerations)
            except Exception as e:
                state.record_failure(e)
                logger.info("Attempt %d failed: %s: %s", attempt_number, type(e).__name__, e)
                raise

    raise RuntimeError("Retry policy stopped without producing a result")
