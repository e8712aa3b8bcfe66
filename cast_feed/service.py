from __future__ import annotations

import re
import time
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Mapping

import httpx

from .cast import Cast
from .config import RuntimeSecrets, config_sha256, resolve_runtime_secrets
from .config_schema import AppConfig
from .errors import ConfigError, InvalidParameterError
from .neynar_client import NeynarClient
from .pagination import Collection, DateWindow, PaginationDriver
from .retry import RetryEvent, SleepFn
from .run_log import EventLogger
from .scoring import ENGAGEMENT, ENGAGEMENT_RECENCY, rank_casts

_INT_RE = re.compile(r"^[+-]?\d+$")

PAYMENT_REQUIRED_MESSAGE = (
    "The upstream API requires a paid plan for this request. "
    "Upgrade the API key or use a different data source."
)


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


def parse_author_id(value: Any) -> int:
    """Validate an author id request parameter into a positive integer FID."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidParameterError("id parameter is required")
    if isinstance(value, bool):
        raise InvalidParameterError("Invalid id parameter: must be an integer")
    if isinstance(value, int):
        fid = value
    else:
        text = str(value).strip()
        if not _INT_RE.fullmatch(text):
            raise InvalidParameterError("Invalid id parameter: must be an integer")
        fid = int(text)
    if fid < 1:
        raise InvalidParameterError("Invalid id parameter: must be a positive integer")
    return fid


@dataclass(frozen=True)
class RankedResult:
    casts: tuple[Cast, ...] = ()
    total: int = 0
    partial: bool = False
    error: str | None = None
    requires_payment: bool = False

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "casts": [c.to_dict() for c in self.casts],
            "total": self.total,
        }
        if self.partial:
            payload["partial"] = True
        if self.error:
            payload["error"] = self.error
        if self.requires_payment:
            payload["requiresPayment"] = True
        return payload


CollectFn = Callable[[PaginationDriver, int], Awaitable[Collection]]


class CastFeedService:
    """
    The two public aggregation operations: today's top casts and an author's top casts.

    Every call opens its own upstream client and shares nothing with other
    calls. Apart from parameter validation, failures never raise: they come
    back as an empty or partial RankedResult carrying an error descriptor.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        api_key: str | None,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: EventLogger | None = None,
        sleep_fn: SleepFn | None = None,
        clock_ms: Callable[[], int] | None = None,
        monotonic: Callable[[], float] | None = None,
    ) -> None:
        self._config = config
        self._api_key = (api_key or "").strip()
        self._transport = transport
        self._logger = logger or EventLogger()
        self._sleep_fn = sleep_fn
        self._clock_ms = clock_ms or _wall_clock_ms
        self._monotonic = monotonic

        self._logger.info(
            "service_configured",
            config_hash=config_sha256(config),
            today_source=config.feed.today_source,
            api_key_present=bool(self._api_key),
        )

    @classmethod
    def from_environment(
        cls,
        config: AppConfig,
        *,
        environ: Mapping[str, str] | None = None,
        **kwargs: Any,
    ) -> "CastFeedService":
        # A missing key is not fatal here; each request reports it as a degraded result.
        try:
            api_key: str | None = resolve_runtime_secrets(config, environ=environ).neynar_api_key
        except ConfigError:
            api_key = None
        return cls(config, api_key=api_key, **kwargs)

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def api_key_present(self) -> bool:
        return bool(self._api_key)

    def _open_client(self, log: EventLogger) -> NeynarClient:
        if not self._api_key:
            raise ConfigError(
                f"Missing required environment variable: {self._config.neynar.api_key_env}"
            )

        def _on_retry(event: RetryEvent) -> None:
            log.warning("upstream_retry", **asdict(event))

        return NeynarClient.from_config(
            self._config,
            RuntimeSecrets(neynar_api_key=self._api_key),
            transport=self._transport,
            on_retry=_on_retry,
            sleep_fn=self._sleep_fn,
        )

    async def get_today_top_casts(self) -> RankedResult:
        feed = self._config.feed
        if feed.today_source == "trending":

            async def _collect(driver: PaginationDriver, now_ms: int) -> Collection:
                return await driver.collect_trending(
                    now_ms=now_ms, window=DateWindow.today_utc(now_ms)
                )

        else:

            async def _collect(driver: PaginationDriver, now_ms: int) -> Collection:
                return await driver.collect_popular_authors(
                    now_ms=now_ms, window=DateWindow.today_utc(now_ms)
                )

        return await self._aggregate(
            "today",
            _collect,
            strategy=ENGAGEMENT,
            top_n=feed.today_top_n,
        )

    async def get_author_top_casts(self, author_id: Any) -> RankedResult:
        """Raises InvalidParameterError for a missing or non-integer author id."""
        fid = parse_author_id(author_id)

        async def _collect(driver: PaginationDriver, now_ms: int) -> Collection:
            return await driver.collect_author(fid, now_ms=now_ms)

        return await self._aggregate(
            f"author:{fid}",
            _collect,
            strategy=ENGAGEMENT_RECENCY,
            top_n=self._config.feed.author_top_n,
        )

    async def _aggregate(
        self,
        operation: str,
        collect: CollectFn,
        *,
        strategy: str,
        top_n: int,
    ) -> RankedResult:
        log = self._logger.for_request()
        started = time.monotonic()
        now_ms = int(self._clock_ms())
        log.info("aggregation_started", operation=operation, now_ms=now_ms)

        try:
            client = self._open_client(log)
        except ConfigError as e:
            log.error("aggregation_config_error", operation=operation, message=str(e))
            return RankedResult(error=str(e))

        try:
            async with client:
                driver = PaginationDriver(
                    client,
                    limits=self._config.pagination,
                    authors=self._config.feed.popular_authors,
                    logger=log,
                    sleep_fn=self._sleep_fn,
                    clock=self._monotonic,
                )
                collection = await collect(driver, now_ms)
        except Exception as e:
            log.exception("aggregation_failed", exc=e, operation=operation)
            return RankedResult(error=f"Failed to fetch casts: {e}")

        ranked = rank_casts(collection.casts, strategy=strategy, top_n=top_n, now_ms=now_ms)
        stats = collection.stats

        error: str | None = None
        partial = False
        # Failed sub-calls that other calls made up for stay in the diagnostics only.
        if collection.cut_short:
            partial = True
            error = f"{stats.failed_calls} upstream call(s) failed; results may be incomplete"
        elif collection.failed_outright:
            if stats.requires_payment:
                error = PAYMENT_REQUIRED_MESSAGE
            else:
                error = f"Failed to fetch casts: {stats.errors[0]}"

        log.info(
            "aggregation_finished",
            operation=operation,
            total=ranked.total,
            returned=len(ranked.casts),
            partial=partial,
            error=error,
            elapsed_ms=int((time.monotonic() - started) * 1000),
        )

        return RankedResult(
            casts=ranked.casts,
            total=ranked.total,
            partial=partial,
            error=error,
            requires_payment=stats.requires_payment,
        )
