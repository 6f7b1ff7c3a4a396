"""Retry with exponential backoff, plus provider error classification."""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

import httpx

from gravity_claw.exceptions import (
    LLMAPIError,
    ProviderAuthError,
    ProviderOverloadedError,
    ProviderTransientError,
)
from gravity_claw.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_SECONDS = 1.0
DEFAULT_RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})

_NETWORK_MARKERS = ("ECONNRESET", "ETIMEDOUT", "Connection reset", "timed out")


def get_status_code(error: BaseException) -> int | None:
    """Return an HTTP-style status carried by an exception, if any."""
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int):
        return value
    return None


def is_network_error(error: BaseException) -> bool:
    """Connection resets, timeouts and other transport-level failures."""
    if isinstance(error, (httpx.TransportError, ConnectionError, TimeoutError)):
        return True
    if get_status_code(error) is not None:
        # A status means the server answered; its body text is not a transport signal.
        return False
    if isinstance(error, ProviderTransientError):
        return True
    message = str(error)
    return any(marker in message for marker in _NETWORK_MARKERS)


def is_retryable(error: BaseException, retryable_statuses: Iterable[int] = DEFAULT_RETRYABLE_STATUSES) -> bool:
    """Only network errors and listed statuses are worth another attempt."""
    if is_network_error(error):
        return True
    status = get_status_code(error)
    return status is not None and status in set(retryable_statuses)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS,
    retryable_statuses: Iterable[int] = DEFAULT_RETRYABLE_STATUSES,
    label: str = "API call",
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    """Await ``fn()``, retrying retryable failures with ``base * 2**attempt`` delays.

    Non-retryable failures propagate immediately. After ``max_retries`` retries
    the last failure is re-raised.
    """
    statuses = frozenset(retryable_statuses)
    attempt = 0
    while True:
        try:
            return await fn()
        except asyncio.CancelledError:
            raise
        except Exception as error:
            if not is_retryable(error, statuses):
                raise
            if attempt >= max_retries:
                log.warning("Retries exhausted", label=label, attempts=attempt + 1, error=str(error))
                raise
            delay = base_delay_seconds * (2 ** attempt)
            log.warning(
                "Retrying API call",
                label=label,
                status=get_status_code(error),
                delay_seconds=delay,
                attempt=attempt + 1,
                max_retries=max_retries,
            )
            await sleep(delay)
            attempt += 1


def classify_provider_error(error: BaseException) -> LLMAPIError:
    """Normalize any provider failure into the provider error taxonomy."""
    if isinstance(error, (ProviderAuthError, ProviderTransientError)):
        return error
    status = get_status_code(error)
    message = str(error) or error.__class__.__name__
    if status in (401, 403):
        return ProviderAuthError(message, status_code=status)
    if status in (503, 529):
        return ProviderOverloadedError(message, status_code=status)
    if is_network_error(error) or status in DEFAULT_RETRYABLE_STATUSES:
        return ProviderTransientError(message, status_code=status)
    if isinstance(error, LLMAPIError):
        return error
    return LLMAPIError(message, status_code=status)


def build_user_error_message(error: BaseException, max_chars: int = 150) -> str:
    """Short, specific message shown to the user once retries and fallback are spent."""
    classified = classify_provider_error(error)
    status = classified.status_code

    if status == 429:
        return "Rate limit hit - too many requests. Try again in a minute."
    if isinstance(classified, ProviderOverloadedError) or status == 502:
        return "The AI service is temporarily down. Give it a minute and try again."
    if isinstance(classified, ProviderAuthError):
        return "Authentication failed. The API key may be invalid or expired."
    if is_network_error(error):
        return "Network connection failed. Check your internet and try again."

    detail = str(error) or error.__class__.__name__
    return f"Something went wrong: {detail[:max(0, int(max_chars))]}"
