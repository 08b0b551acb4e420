"""
Retry logic with exponential backoff for idempotent client requests.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Backoff settings for idempotent API reads."""

    max_retries: int = 3
    initial_delay: float = 0.5
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_status_codes: set[int] = field(
        default_factory=lambda: {408, 429, 500, 502, 503, 504}
    )


class ApiError(Exception):
    """Non-2xx response (or transport failure) from the threadsync API."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"HTTP {self.status_code}: {self.message}"


class RetryableError(ApiError):
    """Error that may succeed on a later attempt."""


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Exponential backoff delay before the next read attempt.

    Args:
        attempt: Zero-based attempt that just failed
        config: Backoff settings

    Returns:
        Delay in seconds
    """
    delay = config.initial_delay * (config.exponential_base**attempt)
    delay = min(delay, config.max_delay)

    if config.jitter:
        # Up to 25% jitter
        delay += delay * 0.25 * random.random()

    return delay


def with_async_retry(
    config: Optional[RetryConfig] = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Wrap an async request function so transient failures are retried.

    Retries on RetryableError and transport errors; any other ApiError is
    raised immediately.
    """
    if config is None:
        config = RetryConfig()

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            last_exception: Optional[ApiError] = None

            for attempt in range(config.max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except RetryableError as e:
                    last_exception = e
                except httpx.RequestError as e:
                    last_exception = RetryableError(f"Network error: {e}")

                if attempt < config.max_retries:
                    delay = calculate_delay(attempt, config)
                    logger.warning(
                        f"Retry {attempt + 1}/{config.max_retries} for {func.__name__}: "
                        f"{last_exception}, waiting {delay:.2f}s"
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(
                        f"Max retries ({config.max_retries}) exceeded for "
                        f"{func.__name__}: {last_exception}"
                    )

            raise last_exception or RuntimeError("Unexpected retry loop exit")

        return wrapper

    return decorator


def check_response(response: httpx.Response, config: RetryConfig) -> None:
    """
    Raise ApiError (or RetryableError) for a non-2xx response.

    The message and code come from the API's ``{"detail", "error"}`` body
    when present.
    """
    if response.is_success:
        return

    message = response.text[:200]
    code = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        detail = body.get("detail")
        if isinstance(detail, str):
            message = detail
        elif detail is not None:
            message = str(detail)[:200]
        code = body.get("error")

    error_cls = (
        RetryableError
        if response.status_code in config.retryable_status_codes
        else ApiError
    )
    raise error_cls(message, status_code=response.status_code, code=code)
