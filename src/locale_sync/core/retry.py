"""
Retry logic with exponential backoff for collaborator calls.

Transport failures against the content repository or the translation
service are retried here; validation failures are not (the orchestrator
handles those by tightening the request instead).
"""

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of attempts (including first try)
        initial_delay_ms: Initial delay in milliseconds
        max_delay_ms: Maximum delay in milliseconds
        backoff_multiplier: Multiplier for exponential backoff
        jitter: Whether to add random jitter to delay
    """

    max_attempts: int = 3
    initial_delay_ms: float = 500.0
    max_delay_ms: float = 8000.0
    backoff_multiplier: float = 2.0
    jitter: bool = True


@dataclass
class RetryResult:
    """
    Result of a retry operation.

    Attributes:
        success: Whether the operation succeeded
        result: The result value if successful
        attempts: Number of attempts made
        error: The final error if failed
        error_history: Errors from each failed attempt
    """

    success: bool
    result: Any = None
    attempts: int = 0
    error: Exception | None = None
    error_history: list[Exception] = field(default_factory=list)


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Calculate delay for a given attempt with exponential backoff.

    Args:
        attempt: Attempt number (0-based)
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    delay_ms = min(
        config.initial_delay_ms * (config.backoff_multiplier**attempt),
        config.max_delay_ms,
    )

    # +/-25% so parallel links do not retry in lockstep
    if config.jitter:
        delay_ms *= 0.75 + (random.random() * 0.5)

    return delay_ms / 1000.0


def retry_with_backoff(
    operation: Callable[[], Any],
    config: RetryConfig,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    operation_name: str = "operation",
    should_retry: Callable[[Exception], bool] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RetryResult:
    """
    Execute an operation with retry and exponential backoff.

    Exceptions outside ``retry_on`` propagate immediately. An exception
    inside ``retry_on`` for which ``should_retry`` returns ``False`` ends
    the loop without further attempts.

    Args:
        operation: Callable to execute (takes no arguments)
        config: Retry configuration
        retry_on: Exception types that count as failed attempts
        operation_name: Name for logging
        should_retry: Optional per-error veto
        sleep: Sleep function (injectable for tests)

    Returns:
        RetryResult with success/failure info

    Example:
        >>> result = retry_with_backoff(lambda: repo.get_document(7, "fa"),
        ...                             RetryConfig(max_attempts=3),
        ...                             retry_on=(TransportError,))
        >>> if result.success:
        ...     document = result.result
    """
    error_history: list[Exception] = []

    for attempt in range(config.max_attempts):
        try:
            logger.debug(
                "%s: attempt %d/%d",
                operation_name,
                attempt + 1,
                config.max_attempts,
            )
            result = operation()
            if attempt > 0:
                logger.info(
                    "%s succeeded after %d attempts",
                    operation_name,
                    attempt + 1,
                )
            return RetryResult(
                success=True,
                result=result,
                attempts=attempt + 1,
                error_history=error_history,
            )
        except retry_on as exc:
            error_history.append(exc)
            if should_retry is not None and not should_retry(exc):
                logger.warning(
                    "%s failed with non-retryable error: %s",
                    operation_name,
                    exc,
                )
                return RetryResult(
                    success=False,
                    attempts=attempt + 1,
                    error=exc,
                    error_history=error_history,
                )
            if attempt + 1 >= config.max_attempts:
                break
            delay = calculate_delay(attempt, config)
            logger.warning(
                "%s failed (attempt %d/%d): %s -- retrying in %.2fs",
                operation_name,
                attempt + 1,
                config.max_attempts,
                exc,
                delay,
            )
            sleep(delay)

    logger.error(
        "%s failed after %d attempts",
        operation_name,
        len(error_history),
    )
    return RetryResult(
        success=False,
        attempts=len(error_history),
        error=error_history[-1] if error_history else None,
        error_history=error_history,
    )
