"""Retry helpers for upstream HTTP calls."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, FrozenSet, Optional

import httpx
from loguru import logger

RETRYABLE_STATUS: FrozenSet[int] = frozenset({408, 425, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how long to retry a single request.

    Backoff is linear: ``backoff_seconds * (attempt + 1)`` after the
    zero-based ``attempt`` that failed.
    """

    max_retries: int = 2
    backoff_seconds: float = 0.2
    retryable_status: FrozenSet[int] = field(default_factory=lambda: RETRYABLE_STATUS)

    def delay_for(self, attempt: int) -> float:
        return self.backoff_seconds * (attempt + 1)


@dataclass
class RetryResult:
    """Outcome of a retried request.

    ``ok`` is True only when ``value`` holds a successful response.
    """

    ok: bool
    value: Optional[httpx.Response] = None
    attempts: int = 0
    status_code: Optional[int] = None
    error: Optional[str] = None


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    policy: RetryPolicy = RetryPolicy(),
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    timeout: Optional[float] = None,
    **kwargs: Any,
) -> RetryResult:
    """Issue a request, retrying transient failures.

    Retryable statuses and transport errors (timeouts included) are retried
    up to ``policy.max_retries`` extra times. Any other non-2xx status or
    request error (undecodable body, redirect loop) ends the loop at once.
    Never raises for HTTP or transport failures.

    Args:
        client: HTTP client to send the request with
        method: HTTP method
        url: Request URL
        policy: Retry policy
        sleep: Awaitable sleep used between attempts
        timeout: Hard limit in seconds on each attempt as a whole; an attempt
            that runs over is retried like a transport timeout
        **kwargs: Forwarded to ``client.request``

    Returns:
        RetryResult describing the final attempt
    """
    result = RetryResult(ok=False)

    for attempt in range(policy.max_retries + 1):
        result.attempts = attempt + 1

        try:
            response = await asyncio.wait_for(client.request(method, url, **kwargs), timeout)
        except asyncio.TimeoutError:
            result.status_code = None
            result.error = f"Timeout: no response within {timeout}s"
        except httpx.TransportError as e:
            result.status_code = None
            result.error = f"{type(e).__name__}: {e}"
        except httpx.HTTPError as e:
            result.status_code = None
            result.error = f"{type(e).__name__}: {e}"
            return result
        else:
            result.status_code = response.status_code
            if response.is_success:
                result.ok = True
                result.value = response
                result.error = None
                return result

            result.error = f"HTTP {response.status_code}"
            if response.status_code not in policy.retryable_status:
                return result

        if attempt >= policy.max_retries:
            break

        delay = policy.delay_for(attempt)
        logger.warning(
            f"Attempt {attempt + 1}/{policy.max_retries + 1} failed: {result.error}. "
            f"Retrying in {delay:.1f}s..."
        )
        await sleep(delay)

    return result
