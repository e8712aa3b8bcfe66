from __future__ import annotations

from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from typing import Any, Mapping

from .outcomes import ClientError, Outcome, RateLimited, Success, TransientError


def parse_retry_after(
    headers: Mapping[str, Any] | None, *, now: datetime | None = None
) -> float | None:
    """
    Read a Retry-After hint in seconds.

    Accepts delta-seconds or an HTTP date; returns None when the header is absent
    or unreadable.
    """
    if not headers:
        return None

    val: Any = None
    for key in ("retry-after", "Retry-After", "RETRY-AFTER"):
        val = headers.get(key)
        if val is not None:
            break

    if val is None:
        return None

    if isinstance(val, (list, tuple)):
        if not val:
            return None
        val = val[0]

    text = str(val).strip()
    if not text:
        return None

    try:
        seconds = float(text)
    except ValueError:
        seconds = None

    if seconds is not None:
        return seconds if seconds >= 0 else None

    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)

    ref = now or datetime.now(timezone.utc)
    return max(0.0, (when - ref).total_seconds())


def is_retryable_outcome(outcome: Outcome) -> tuple[bool, float | None, str | None]:
    """
    Upstream retry policy:
    - HTTP 429, honoring the Retry-After hint when present
    - network/timeout errors and HTTP 5xx
    Client errors (including 402) and successes are final.
    """
    if isinstance(outcome, Success):
        return False, None, None

    if isinstance(outcome, RateLimited):
        return True, outcome.retry_after, "http_429"

    if isinstance(outcome, TransientError):
        if outcome.status_code is not None:
            return True, None, f"http_{outcome.status_code}"
        return True, None, "network_error"

    if isinstance(outcome, ClientError):
        return False, None, f"http_{outcome.status_code}"

    return False, None, None
