"""
Retry manager with exponential backoff.

Every outbound network call (model dispatch, quality scoring, image
generation, artifact download, storage upload, notifications) goes through
``RetryManager.execute_with_retry``. Only transient failures are retried:
network errors, rate limiting and 5xx responses. Everything else is raised
on the first attempt.
"""

import asyncio
import logging
import random
from typing import Optional, Callable, Any, Dict, Type
from dataclasses import dataclass

import httpx

from .exceptions import (
    TranslationError,
    LLMRateLimitError,
    RetryExhaustedError,
)
from adlingo import config

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of attempts, first call included
        initial_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        backoff_factor: Multiplier for exponential backoff
        jitter: Add random jitter to delays (0.0-1.0)
    """
    max_attempts: int = config.RETRY_MAX_ATTEMPTS
    initial_delay: float = config.RETRY_INITIAL_DELAY
    max_delay: float = config.RETRY_MAX_DELAY
    backoff_factor: float = config.RETRY_BACKOFF_FACTOR
    jitter: float = 0.1


# Default retry configurations for specific error types
DEFAULT_RETRY_CONFIGS: Dict[Type[Exception], RetryConfig] = {
    # Rate limit - wait longer
    LLMRateLimitError: RetryConfig(
        max_attempts=config.RETRY_MAX_ATTEMPTS,
        initial_delay=5.0,
        max_delay=30.0,
    ),
}

RETRYABLE_STATUS_CODES = {408, 429}


def is_transient_error(error: BaseException) -> bool:
    """Classify an error as transient (worth retrying) or fatal."""
    if isinstance(error, TranslationError):
        return error.recoverable
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status in RETRYABLE_STATUS_CODES or status >= 500
    if isinstance(error, (httpx.TransportError, asyncio.TimeoutError, ConnectionError)):
        return True
    return False


class RetryManager:
    """Manages retry logic with exponential backoff."""

    def __init__(
        self,
        default_config: Optional[RetryConfig] = None,
        custom_configs: Optional[Dict[Type[Exception], RetryConfig]] = None,
    ):
        """
        Args:
            default_config: Default retry configuration
            custom_configs: Custom configs for specific error types
        """
        self.default_config = default_config or RetryConfig()
        self.custom_configs = {**DEFAULT_RETRY_CONFIGS, **(custom_configs or {})}

    def _get_config(self, error: Exception) -> RetryConfig:
        """Get retry configuration for an error type."""
        error_type = type(error)

        if error_type in self.custom_configs:
            return self.custom_configs[error_type]

        for exc_type, retry_config in self.custom_configs.items():
            if isinstance(error, exc_type):
                return retry_config

        return self.default_config

    def _calculate_delay(self, attempt: int, retry_config: RetryConfig,
                         error: Optional[Exception] = None) -> float:
        """Calculate delay before the next attempt."""
        delay = retry_config.initial_delay * (retry_config.backoff_factor ** (attempt - 1))

        retry_after = getattr(error, 'retry_after', None)
        if retry_after:
            delay = max(delay, float(retry_after))

        delay = min(delay, retry_config.max_delay)

        if retry_config.jitter > 0 and delay > 0:
            delay += delay * retry_config.jitter * random.random()

        return delay

    async def execute_with_retry(
        self,
        func: Callable[..., Any],
        *args,
        operation_id: Optional[str] = None,
        on_retry: Optional[Callable[[Exception, int], None]] = None,
        **kwargs
    ) -> Any:
        """Execute an async function with retry logic.

        Args:
            func: Async function to execute
            *args: Positional arguments for func
            operation_id: Identifier used in log messages
            on_retry: Callback called before each retry (error, attempt_number)
            **kwargs: Keyword arguments for func

        Returns:
            Result of func

        Raises:
            RetryExhaustedError: If a transient error persisted on every attempt
            Exception: The original error if it is not transient
        """
        attempt = 0
        op_id = operation_id or getattr(func, '__qualname__', f"op_{id(func)}")

        while True:
            attempt += 1
            try:
                result = await func(*args, **kwargs)
                if attempt > 1:
                    logger.info(f"Operation {op_id} succeeded after {attempt} attempts")
                return result

            except Exception as error:
                if not is_transient_error(error):
                    logger.debug(f"Non-transient error in {op_id}: {error}")
                    raise

                retry_config = self._get_config(error)

                if attempt >= retry_config.max_attempts:
                    logger.error(f"Retry exhausted for {op_id} after {attempt} attempts: {error}")
                    raise RetryExhaustedError(
                        f"Maximum retry attempts ({retry_config.max_attempts}) exceeded for {op_id}",
                        original_error=error,
                        attempts=attempt
                    ) from error

                delay = self._calculate_delay(attempt, retry_config, error)
                logger.warning(
                    f"Attempt {attempt}/{retry_config.max_attempts} failed for {op_id}: "
                    f"{type(error).__name__}: {error}. Retrying in {delay:.2f}s..."
                )

                if on_retry:
                    try:
                        on_retry(error, attempt)
                    except Exception as callback_error:
                        logger.warning(f"Error in on_retry callback: {callback_error}")

                if delay > 0:
                    await asyncio.sleep(delay)
