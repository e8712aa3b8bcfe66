from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from .config_schema import RetrySettings

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """
    Exponential backoff retry policy.

    - max_attempts counts the initial attempt (max_attempts=3 => 1 try + 2 retries).
    - base_delay_seconds is the first delay after the first failure.
    - retry_after_cap_seconds caps any Retry-After override (0 disables the cap).
    """

    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 4.0
    retry_after_cap_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must be >= 0")
        if self.max_delay_seconds < 0:
            raise ValueError("max_delay_seconds must be >= 0")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")
        if self.retry_after_cap_seconds < 0:
            raise ValueError("retry_after_cap_seconds must be >= 0")

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryConfig":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay_seconds=settings.base_delay_seconds,
            max_delay_seconds=settings.max_delay_seconds,
            retry_after_cap_seconds=settings.retry_after_cap_seconds,
        )


@dataclass(frozen=True)
class RetryEvent:
    operation: str
    failure_attempt: int
    next_attempt: int
    max_attempts: int

    delay_seconds: float
    retry_after_seconds: float | None
    reason: str | None

    context_url: str | None


ClassifyFn = Callable[[T], tuple[bool, float | None, str | None]]
OnRetryFn = Callable[[RetryEvent], None]
SleepFn = Callable[[float], Awaitable[None]]


def _compute_backoff_seconds(failure_attempt: int, cfg: RetryConfig) -> float:
    # failure_attempt=1 => base delay.
    exponent = max(0, int(failure_attempt) - 1)
    delay = cfg.base_delay_seconds * (2**exponent)
    return min(cfg.max_delay_seconds, max(0.0, float(delay)))


def _normalize_retry_after(value: float | None, cfg: RetryConfig) -> float | None:
    if value is None:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    if seconds != seconds or seconds < 0:
        return None
    if cfg.retry_after_cap_seconds > 0:
        seconds = min(seconds, float(cfg.retry_after_cap_seconds))
    return seconds


def next_retry_delay(
    failure_attempt: int,
    retry_after: float | None,
    cfg: RetryConfig,
) -> float | None:
    """
    Decide how long to wait after a failed attempt, or None to stop retrying.

    An upstream wait hint replaces the exponential schedule (capped by
    retry_after_cap_seconds); otherwise the delay doubles per failure from
    base_delay_seconds up to max_delay_seconds.
    """
    if int(failure_attempt) >= int(cfg.max_attempts):
        return None

    hinted = _normalize_retry_after(retry_after, cfg)
    if hinted is not None:
        return hinted

    return _compute_backoff_seconds(failure_attempt, cfg)


async def call_with_retries(
    fn: Callable[[], Awaitable[T]],
    *,
    cfg: RetryConfig,
    classify: ClassifyFn[T],
    operation: str,
    on_retry: OnRetryFn | None = None,
    sleep_fn: SleepFn | None = None,
    context_url: str | None = None,
) -> T:
    """
    Await fn() until classify() reports a non-retryable outcome or attempts run out.

    Outcomes are values, not exceptions: the last observed outcome is returned
    when retries are exhausted so callers can treat it as "no data".
    """
    op = (operation or "").strip() or "operation"
    sleeper = sleep_fn or asyncio.sleep

    outcome = await fn()
    for attempt in range(1, int(cfg.max_attempts)):
        retryable, retry_after, reason = classify(outcome)
        if not retryable:
            return outcome

        delay = next_retry_delay(attempt, retry_after, cfg)
        if delay is None:
            return outcome

        if on_retry is not None:
            on_retry(
                RetryEvent(
                    operation=op,
                    failure_attempt=int(attempt),
                    next_attempt=int(attempt) + 1,
                    max_attempts=int(cfg.max_attempts),
                    delay_seconds=float(delay),
                    retry_after_seconds=_normalize_retry_after(retry_after, cfg),
                    reason=reason,
                    context_url=context_url,
                )
            )

        if delay > 0:
            await sleeper(float(delay))

        outcome = await fn()

    return outcome
