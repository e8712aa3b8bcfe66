from __future__ import annotations

from typing import Any, Mapping

import httpx

from .config import RuntimeSecrets
from .config_schema import AppConfig
from .errors import ConfigError
from .outcomes import ClientError, Outcome, PageResult, RateLimited, Success, TransientError
from .retry import OnRetryFn, RetryConfig, SleepFn, call_with_retries
from .upstream_retry import is_retryable_outcome, parse_retry_after

DEFAULT_BASE_URL = "https://api.neynar.com/v2"

_USER_BY_USERNAME_PATH = "/farcaster/user/by_username"
_USER_CASTS_PATH = "/farcaster/feed/user/casts"
_TRENDING_PATH = "/farcaster/feed/trending"

_USER_CASTS_MAX_LIMIT = 25
_TRENDING_MAX_LIMIT = 10
_ERROR_TEXT_LIMIT = 300


def _dig(obj: Any, *path: str) -> Any:
    cur = obj
    for key in path:
        if not isinstance(cur, Mapping):
            return None
        cur = cur.get(key)
    return cur


def _coerce_cursor(value: Any) -> str | None:
    if isinstance(value, str):
        s = value.strip()
        return s or None
    return None


def _page_from_body(body: Any) -> tuple[list[dict[str, Any]], str | None]:
    raw = _dig(body, "result", "casts")
    if not isinstance(raw, list):
        raw = _dig(body, "casts")
    if not isinstance(raw, list):
        raw = []

    casts = [item for item in raw if isinstance(item, dict)]
    cursor = _coerce_cursor(_dig(body, "result", "next", "cursor")) or _coerce_cursor(
        _dig(body, "next", "cursor")
    )
    return casts, cursor


def _fid_from_body(body: Any) -> int | None:
    for path in (("result", "fid"), ("result", "user", "fid"), ("user", "fid"), ("fid",)):
        value = _dig(body, *path)
        if isinstance(value, bool):
            continue
        if isinstance(value, int) and value > 0:
            return value
        if isinstance(value, str) and value.strip().isdigit():
            fid = int(value.strip())
            if fid > 0:
                return fid
    return None


def _error_text(response: httpx.Response) -> str:
    text = (response.text or "").strip()
    if len(text) > _ERROR_TEXT_LIMIT:
        return text[: _ERROR_TEXT_LIMIT - 1] + "…"
    return text


class NeynarClient:
    """
    Thin async wrapper around the Neynar v2 REST API.

    Every call yields an Outcome value instead of raising; rate limits and
    transient failures are retried per the RetryConfig and the last outcome is
    returned once attempts are exhausted. The only exception raised is
    ConfigError, at construction, when no API key is available.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        user_agent: str = "cast-feed/1.0",
        timeout_seconds: float = 15.0,
        retry: RetryConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        on_retry: OnRetryFn | None = None,
        sleep_fn: SleepFn | None = None,
    ) -> None:
        key = (api_key or "").strip()
        if not key:
            raise ConfigError("Upstream API key is not configured")

        self._retry = retry or RetryConfig()
        self._on_retry = on_retry
        self._sleep_fn = sleep_fn
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Accept": "application/json",
                "x-api-key": key,
                "User-Agent": user_agent,
            },
            timeout=timeout_seconds,
            transport=transport,
            follow_redirects=True,
        )

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        secrets: RuntimeSecrets,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        on_retry: OnRetryFn | None = None,
        sleep_fn: SleepFn | None = None,
    ) -> "NeynarClient":
        return cls(
            secrets.neynar_api_key,
            base_url=config.neynar.base_url,
            user_agent=config.neynar.user_agent,
            timeout_seconds=config.neynar.timeout_seconds,
            retry=RetryConfig.from_settings(config.retry),
            transport=transport,
            on_retry=on_retry,
            sleep_fn=sleep_fn,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "NeynarClient":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> None:
        await self.aclose()

    async def _get_once(self, path: str, params: Mapping[str, Any]) -> Outcome:
        try:
            response = await self._client.get(path, params=dict(params))
        except httpx.TimeoutException as e:
            return TransientError(f"timeout: {e}")
        except httpx.TransportError as e:
            return TransientError(f"{type(e).__name__}: {e}")

        status = response.status_code
        if status == 429:
            return RateLimited(retry_after=parse_retry_after(response.headers))
        if status >= 500:
            return TransientError(_error_text(response) or response.reason_phrase, status_code=status)
        if not 200 <= status < 300:
            return ClientError(status_code=status, message=_error_text(response))

        try:
            body = response.json()
        except ValueError:
            return TransientError("response body is not valid JSON", status_code=status)

        return Success(body=body, status_code=status)

    async def get(self, path: str, params: Mapping[str, Any] | None = None) -> Outcome:
        query = {k: v for k, v in (params or {}).items() if v is not None}

        async def _do_get() -> Outcome:
            return await self._get_once(path, query)

        return await call_with_retries(
            _do_get,
            cfg=self._retry,
            classify=is_retryable_outcome,
            operation=f"neynar.get:{path}",
            on_retry=self._on_retry,
            sleep_fn=self._sleep_fn,
            context_url=path,
        )

    async def lookup_user_fid(self, username: str) -> tuple[int | None, Outcome]:
        handle = (username or "").strip()
        if handle.startswith("@"):
            handle = handle[1:].strip()
        if not handle:
            return None, ClientError(status_code=400, message="username must be non-empty")

        outcome = await self.get(_USER_BY_USERNAME_PATH, {"username": handle})
        if not isinstance(outcome, Success):
            return None, outcome

        fid = _fid_from_body(outcome.body)
        if fid is None:
            return None, ClientError(status_code=404, message=f"no fid in lookup for @{handle}")
        return fid, outcome

    async def fetch_user_casts(
        self,
        fid: int,
        *,
        cursor: str | None = None,
        limit: int = _USER_CASTS_MAX_LIMIT,
    ) -> PageResult:
        params = {
            "fid": str(int(fid)),
            "limit": str(max(1, min(int(limit), _USER_CASTS_MAX_LIMIT))),
            "cursor": cursor,
        }
        return await self._fetch_page(_USER_CASTS_PATH, params)

    async def fetch_trending_casts(
        self,
        *,
        cursor: str | None = None,
        limit: int = _TRENDING_MAX_LIMIT,
    ) -> PageResult:
        params = {
            "limit": str(max(1, min(int(limit), _TRENDING_MAX_LIMIT))),
            "cursor": cursor,
        }
        return await self._fetch_page(_TRENDING_PATH, params)

    async def _fetch_page(self, path: str, params: Mapping[str, Any]) -> PageResult:
        outcome = await self.get(path, params)
        if not isinstance(outcome, Success):
            return PageResult(casts=[], next_cursor=None, outcome=outcome)

        casts, next_cursor = _page_from_body(outcome.body)
        return PageResult(casts=casts, next_cursor=next_cursor, outcome=outcome)
