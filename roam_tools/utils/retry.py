"""Backoff policy for reconnecting to Roam Desktop."""

import re
from dataclasses import dataclass
from typing import Iterator

import httpx


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for connection retry behavior."""

    max_attempts: int = 8
    initial_delay_ms: int = 500
    max_delay_ms: int = 15000  # 15 seconds


def backoff_delay(policy: RetryPolicy, attempt: int) -> float:
    """Delay in seconds before retry number ``attempt`` (0-based).

    Doubles from ``initial_delay_ms`` and never exceeds ``max_delay_ms``.
    """
    delay_ms = min(policy.initial_delay_ms * (2**attempt), policy.max_delay_ms)
    return delay_ms / 1000


def backoff_schedule(policy: RetryPolicy) -> Iterator[float]:
    """Every delay the policy allows, in order."""
    for attempt in range(policy.max_attempts):
        yield backoff_delay(policy, attempt)


# Errno names that show up in OSError text when the socket never got an answer
_CONNECTION_PATTERN = re.compile(
    r"ECONNREFUSED|ECONNRESET|ENOTFOUND|ETIMEDOUT|connection refused|connection reset",
    re.IGNORECASE,
)


def is_connection_error(error: BaseException) -> bool:
    """Whether ``error`` means the Local API could not be reached at all.

    Transport-level failures only: refused, reset, unreachable or timed out.
    HTTP responses, even 5xx ones, are never connection errors.
    """
    if isinstance(error, (httpx.NetworkError, httpx.TimeoutException, httpx.RemoteProtocolError)):
        return True
    if isinstance(error, ConnectionError):
        return True
    if isinstance(error, OSError) and _CONNECTION_PATTERN.search(str(error)):
        return True
    return False
