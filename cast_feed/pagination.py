from __future__ import annotations

import asyncio
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Iterator, Literal, Protocol, Sequence

from .cast import Cast
from .config_schema import PaginationConfig
from .dedupe import SeenKeys
from .normalize import MissingTimestampPolicy, cast_from_upstream_item
from .outcomes import ClientError, Outcome, PageResult, describe_outcome
from .retry import SleepFn
from .run_log import EventLogger

MS_PER_DAY = 86_400_000

StopReason = Literal[
    "empty_page",
    "end_of_feed",
    "max_pages",
    "candidate_cap",
    "reached_past",
    "upstream_error",
    "deadline",
    "authors_exhausted",
]


class CastSource(Protocol):
    async def lookup_user_fid(self, username: str) -> tuple[int | None, Outcome]: ...

    async def fetch_user_casts(
        self, fid: int, *, cursor: str | None = None, limit: int = 25
    ) -> PageResult: ...

    async def fetch_trending_casts(
        self, *, cursor: str | None = None, limit: int = 10
    ) -> PageResult: ...


@dataclass(frozen=True)
class DateWindow:
    """Inclusive [start_ms, end_ms] range of publication times to keep."""

    start_ms: int
    end_ms: int

    @classmethod
    def today_utc(cls, now_ms: int) -> "DateWindow":
        now = int(now_ms)
        return cls(start_ms=now - now % MS_PER_DAY, end_ms=now)

    def position(self, published_at: int) -> Literal["past", "in", "future"]:
        if published_at < self.start_ms:
            return "past"
        if published_at > self.end_ms:
            return "future"
        return "in"


@dataclass
class CollectionStats:
    pages: int = 0
    raw_records: int = 0
    kept: int = 0
    duplicates: int = 0
    missing_timestamp: int = 0
    past: int = 0
    future: int = 0
    failed_calls: int = 0
    requires_payment: bool = False
    stop_reason: str = ""
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Collection:
    casts: tuple[Cast, ...]
    stats: CollectionStats

    @property
    def cut_short(self) -> bool:
        """A failure ended a cursor walk after some casts had been kept."""
        return self.stats.stop_reason == "upstream_error" and self.stats.kept > 0

    @property
    def failed_outright(self) -> bool:
        """Nothing was kept and the failures, not an empty feed, are why."""
        s = self.stats
        if s.failed_calls == 0 or s.kept > 0:
            return False
        return s.stop_reason == "upstream_error" or s.failed_calls >= s.pages


def _chunked(values: Sequence[Any], size: int) -> Iterator[list[Any]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")

    batch: list[Any] = []
    for item in values:
        batch.append(item)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch


class _Accumulator:
    def __init__(
        self,
        *,
        now_ms: int,
        window: DateWindow | None,
        max_candidates: int,
        missing_timestamp: MissingTimestampPolicy,
    ) -> None:
        self.now_ms = int(now_ms)
        self.window = window
        self.max_candidates = int(max_candidates)
        self.missing_timestamp = missing_timestamp
        self.casts: list[Cast] = []
        self.seen = SeenKeys()
        self.stats = CollectionStats()
        self.saw_past = False

    @property
    def full(self) -> bool:
        return len(self.casts) >= self.max_candidates

    def ingest(self, records: Sequence[Any]) -> None:
        for raw in records:
            if self.full:
                break
            self.stats.raw_records += 1

            cast = cast_from_upstream_item(
                raw,
                now_ms=self.now_ms,
                missing_timestamp=self.missing_timestamp,
            )
            if cast is None:
                self.stats.missing_timestamp += 1
                continue

            if self.window is not None:
                pos = self.window.position(cast.published_at)
                if pos == "past":
                    self.stats.past += 1
                    self.saw_past = True
                    continue
                if pos == "future":
                    self.stats.future += 1
                    continue

            if not self.seen.add_cast(cast):
                self.stats.duplicates += 1
                continue

            self.casts.append(cast)
            self.stats.kept += 1

    def record_failure(self, label: str, message: str, *, requires_payment: bool = False) -> None:
        self.stats.failed_calls += 1
        self.stats.requires_payment = self.stats.requires_payment or requires_payment
        self.stats.errors.append(f"{label}: {message}")

    def finish(self, reason: str) -> Collection:
        self.stats.stop_reason = reason
        return Collection(casts=tuple(self.casts), stats=self.stats)


class PaginationDriver:
    """
    Builds a candidate set of casts from repeated upstream calls.

    Three drive modes share one accumulator: the trending feed by cursor, a
    fixed list of well-known authors (one bounded page each, in small batches
    with a delay between batches), and a single author's feed by cursor.
    Failures of a single call are recorded and absorbed; the casts gathered so
    far are always returned.
    """

    def __init__(
        self,
        source: CastSource,
        *,
        limits: PaginationConfig,
        authors: Sequence[str | int] = (),
        logger: EventLogger | None = None,
        sleep_fn: SleepFn | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._source = source
        self._limits = limits
        self._authors = list(authors)
        self._logger = logger
        self._sleep = sleep_fn or asyncio.sleep
        self._clock = clock or time.monotonic
        self._deadline: float | None = None

    def _start_budget(self) -> None:
        budget = float(self._limits.request_budget_seconds)
        self._deadline = self._clock() + budget if budget > 0 else None

    def _deadline_passed(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    async def _guarded(
        self,
        acc: _Accumulator,
        label: str,
        call: Callable[[], Awaitable[PageResult]],
    ) -> PageResult | None:
        try:
            page = await call()
        except Exception as e:
            acc.record_failure(label, f"{type(e).__name__}: {e}")
            if self._logger is not None:
                self._logger.exception("upstream_call_crashed", exc=e, label=label)
            return None

        if not page.ok:
            outcome = page.outcome
            acc.record_failure(
                label,
                describe_outcome(outcome),
                requires_payment=isinstance(outcome, ClientError) and outcome.requires_payment,
            )
            if self._logger is not None:
                self._logger.warning(
                    "upstream_call_failed",
                    label=label,
                    outcome=describe_outcome(outcome),
                )
            return None

        return page

    async def _drive_cursor(
        self,
        acc: _Accumulator,
        *,
        label: str,
        fetch_page: Callable[[str | None], Awaitable[PageResult]],
        max_pages: int,
        early_stop_on_past: bool,
    ) -> StopReason:
        cursor: str | None = None

        for _ in range(int(max_pages)):
            if self._deadline_passed():
                return "deadline"

            page = await self._guarded(acc, label, lambda: fetch_page(cursor))
            acc.stats.pages += 1
            if page is None:
                return "upstream_error"

            if not page.casts:
                return "empty_page"

            acc.ingest(page.casts)

            if acc.full:
                return "candidate_cap"
            # Feeds are newest-first, so one record before the window means the rest are too.
            if early_stop_on_past and acc.saw_past:
                return "reached_past"
            if not page.next_cursor or page.next_cursor == cursor:
                return "end_of_feed"

            cursor = page.next_cursor

        return "max_pages"

    def _log_finished(self, mode: str, collection: Collection) -> None:
        if self._logger is not None:
            self._logger.info("collection_finished", mode=mode, **collection.stats.as_dict())

    async def collect_trending(self, *, now_ms: int, window: DateWindow | None) -> Collection:
        """Page through the trending feed, keeping casts inside the window."""
        self._start_budget()
        acc = _Accumulator(
            now_ms=now_ms,
            window=window,
            max_candidates=self._limits.max_candidates,
            missing_timestamp="skip" if window is not None else "now",
        )

        def _fetch(cursor: str | None) -> Awaitable[PageResult]:
            return self._source.fetch_trending_casts(cursor=cursor, limit=self._limits.page_limit)

        reason = await self._drive_cursor(
            acc,
            label="trending",
            fetch_page=_fetch,
            max_pages=self._limits.max_pages,
            early_stop_on_past=window is not None and self._limits.stop_on_past_timestamp,
        )
        collection = acc.finish(reason)
        self._log_finished("trending", collection)
        return collection

    async def collect_author(self, fid: int, *, now_ms: int) -> Collection:
        """Page through one author's casts by cursor, without a date window."""
        self._start_budget()
        acc = _Accumulator(
            now_ms=now_ms,
            window=None,
            max_candidates=self._limits.max_candidates,
            missing_timestamp="now",
        )

        def _fetch(cursor: str | None) -> Awaitable[PageResult]:
            return self._source.fetch_user_casts(
                int(fid), cursor=cursor, limit=self._limits.page_limit
            )

        reason = await self._drive_cursor(
            acc,
            label=f"fid:{int(fid)}",
            fetch_page=_fetch,
            max_pages=self._limits.author_max_pages,
            early_stop_on_past=False,
        )
        collection = acc.finish(reason)
        self._log_finished("author", collection)
        return collection

    async def _author_page(self, acc: _Accumulator, author: str | int) -> PageResult | None:
        if isinstance(author, int):
            fid: int | None = author
            label = f"fid:{author}"
        else:
            label = f"@{author}"
            try:
                fid, outcome = await self._source.lookup_user_fid(author)
            except Exception as e:
                acc.record_failure(label, f"{type(e).__name__}: {e}")
                if self._logger is not None:
                    self._logger.exception("upstream_call_crashed", exc=e, label=label)
                return None
            if fid is None:
                acc.record_failure(
                    label,
                    describe_outcome(outcome),
                    requires_payment=isinstance(outcome, ClientError) and outcome.requires_payment,
                )
                if self._logger is not None:
                    self._logger.warning(
                        "author_lookup_failed", label=label, outcome=describe_outcome(outcome)
                    )
                return None

        resolved = int(fid)
        return await self._guarded(
            acc,
            label,
            lambda: self._source.fetch_user_casts(resolved, limit=self._limits.page_limit),
        )

    async def collect_popular_authors(
        self, *, now_ms: int, window: DateWindow | None
    ) -> Collection:
        """Fetch one bounded page per configured author, in small delayed batches."""
        self._start_budget()
        acc = _Accumulator(
            now_ms=now_ms,
            window=window,
            max_candidates=self._limits.max_candidates,
            missing_timestamp="skip" if window is not None else "now",
        )

        reason: StopReason = "authors_exhausted"
        for index, batch in enumerate(_chunked(self._authors, self._limits.author_batch_size)):
            remaining = int(self._limits.max_pages) - acc.stats.pages
            if remaining <= 0:
                reason = "max_pages"
                break
            if self._deadline_passed():
                reason = "deadline"
                break
            if index > 0 and self._limits.inter_request_delay_seconds > 0:
                await self._sleep(float(self._limits.inter_request_delay_seconds))

            batch = batch[:remaining]
            pages = await asyncio.gather(*(self._author_page(acc, a) for a in batch))

            for page in pages:
                acc.stats.pages += 1
                if page is None or not page.casts:
                    continue
                acc.ingest(page.casts)
                if acc.full:
                    break

            if acc.full:
                reason = "candidate_cap"
                break

        collection = acc.finish(reason)
        self._log_finished("authors", collection)
        return collection
