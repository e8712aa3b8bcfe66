from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class Success:
    body: Any
    status_code: int = 200


@dataclass(frozen=True)
class RateLimited:
    retry_after: float | None = None
    status_code: int = 429


@dataclass(frozen=True)
class ClientError:
    """A 4xx response other than 429. Non-retryable; the call yields no data."""

    status_code: int
    message: str = ""

    @property
    def requires_payment(self) -> bool:
        return self.status_code == 402


@dataclass(frozen=True)
class TransientError:
    """A network failure, timeout, 5xx, or unreadable body. Retryable."""

    message: str
    status_code: int | None = None


Outcome = Union[Success, RateLimited, ClientError, TransientError]


def describe_outcome(outcome: Outcome) -> str:
    if isinstance(outcome, Success):
        return f"ok ({outcome.status_code})"
    if isinstance(outcome, RateLimited):
        return "rate limited (429)"
    if isinstance(outcome, ClientError):
        if outcome.requires_payment:
            return "payment required (402)"
        return f"client error ({outcome.status_code})"
    code = f" ({outcome.status_code})" if outcome.status_code is not None else ""
    return f"transient error{code}: {outcome.message}"


@dataclass(frozen=True)
class PageResult:
    """One page of raw upstream cast records, consumed by the normalizer and discarded."""

    casts: list[dict[str, Any]] = field(default_factory=list)
    next_cursor: str | None = None
    outcome: Outcome = field(default_factory=lambda: Success(body=None))

    @property
    def ok(self) -> bool:
        return isinstance(self.outcome, Success)
