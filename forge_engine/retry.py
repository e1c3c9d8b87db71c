# forge_engine/retry.py
"""
Retry-With-Notify — bounded, strictly sequential retries.

Pending → Attempting → Success
                     ↘ AttemptFailed → Attempting (budget left)
                                     ↘ Exhausted (raises RetryExhaustedError)

No backoff between attempts: the collaborator's own latency dominates.
``ContractDefectError`` is never retried because a second attempt would
reproduce the same defect.
"""
import logging
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_none,
)

from forge_engine.exceptions import ContractDefectError, RetryExhaustedError, error_message

logger = logging.getLogger("forge.engine.retry")

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3

RetryCallback = Callable[[int, BaseException], None]


async def with_retry(
    attempt: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    on_retry: RetryCallback | None = None,
    label: str = "operation",
) -> T:
    """
    Run ``attempt`` up to ``max_attempts`` times.

    Args:
        attempt: Zero-argument coroutine factory; called once per attempt.
        max_attempts: Total attempt budget (>= 1).
        on_retry: Called as ``on_retry(attempt_number, error)`` after every
            non-final failure. Best-effort: its own errors are logged and
            ignored.
        label: Name used in log lines.

    Returns:
        The first successful result.

    Raises:
        RetryExhaustedError: every attempt failed; ``last_error`` holds the
            final underlying exception (also chained as ``__cause__``).
        ContractDefectError: raised by ``attempt``; propagated immediately.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    def _before_sleep(state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        logger.warning(
            "%s attempt %d/%d failed: %s",
            label, state.attempt_number, max_attempts, error_message(error),
        )
        if on_retry is None or error is None:
            return
        try:
            on_retry(state.attempt_number, error)
        except Exception as e:  # noqa: BLE001
            logger.debug("on_retry callback failed for %s: %s", label, e)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_none(),
        retry=retry_if_exception_type(Exception) & retry_if_not_exception_type(ContractDefectError),
        before_sleep=_before_sleep,
        reraise=True,
    )

    attempt_number = 0
    try:
        async for state in retrying:
            with state:
                attempt_number = state.retry_state.attempt_number
                result = await attempt()
    except ContractDefectError:
        raise
    except Exception as e:
        logger.error("%s failed after %d attempt(s): %s", label, attempt_number, error_message(e))
        raise RetryExhaustedError(
            f"{label} failed after {attempt_number} attempt(s): {error_message(e)}",
            attempts=attempt_number,
            last_error=e,
        ) from e

    if attempt_number > 1:
        logger.info("%s succeeded after retry (attempt %d)", label, attempt_number)
    return result
