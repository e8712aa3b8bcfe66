from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Callable

import httpx

from .pagination import MS_PER_DAY

_OFFLINE_USERS: dict[str, int] = {
    "dwr": 3,
    "v": 2,
    "farcaster": 1,
    "base": 12142,
}

_OFFLINE_TEXTS = (
    "Shipping a small fix to frames today, thanks for the reports.",
    "What is the most underrated client feature right now?",
    "Hub sync is looking healthy after the upgrade.",
    "gm. Reading through the latest FIP discussion.",
    "New channel moderation tools are rolling out this week.",
)


def _synthetic_fid(username: str) -> int:
    return 100_000 + sum(ord(ch) for ch in username)


def _iso(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def _offline_casts(fid: int, username: str, now_ms: int) -> list[dict[str, Any]]:
    """
    A handful of deterministic casts for one author, published earlier today.

    Shapes alternate between nested and flattened author/reaction fields and
    between ISO, seconds, and milliseconds timestamps.
    """
    day_start = now_ms - now_ms % MS_PER_DAY
    elapsed = max(0, now_ms - day_start)

    casts: list[dict[str, Any]] = []
    for i, text in enumerate(_OFFLINE_TEXTS):
        published = day_start + (elapsed * (i + 1)) // (len(_OFFLINE_TEXTS) + 1)
        likes = (fid * 7 + i * 13) % 90
        recasts = (fid + i * 5) % 20
        replies = (fid * 3 + i) % 15
        cast_hash = f"0x{fid:04x}{i:02x}offline"

        if i % 2 == 0:
            casts.append(
                {
                    "hash": cast_hash,
                    "text": text,
                    "timestamp": _iso(published),
                    "author": {
                        "fid": fid,
                        "username": username,
                        "display_name": username.title(),
                        "pfp_url": f"https://example.com/pfp/{fid}.png",
                    },
                    "reactions": {"likes_count": likes, "recasts_count": recasts},
                    "replies": {"count": replies},
                    "embeds": [{"url": f"https://example.com/embed/{fid}/{i}"}],
                }
            )
        else:
            casts.append(
                {
                    "id": cast_hash,
                    "content": text,
                    "published_at": published // 1000 if i % 4 == 1 else published,
                    "fid": fid,
                    "username": username,
                    "displayName": username.title(),
                    "pfp": {"url": f"https://example.com/pfp/{fid}.png"},
                    "likes": likes,
                    "recasts": recasts,
                    "replies": replies,
                }
            )

    casts.sort(key=lambda c: str(c.get("hash") or c.get("id")), reverse=True)
    return casts


def offline_transport(*, clock_ms: Callable[[], int] | None = None) -> httpx.MockTransport:
    """
    Network-free stand-in for the upstream API, used by `--offline` CLI runs.

    Serves user lookup, a two-page user feed, and a trending feed. Handles
    outside the fixture table resolve to a stable synthetic FID.
    """
    now = clock_ms or (lambda: int(time.time() * 1000))
    fid_to_user = {fid: name for name, fid in _OFFLINE_USERS.items()}

    def _handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        params = request.url.params

        if path.endswith("/farcaster/user/by_username"):
            username = (params.get("username") or "").strip().casefold()
            if not username:
                return httpx.Response(404, json={"message": "user not found"})
            fid = _OFFLINE_USERS.get(username) or _synthetic_fid(username)
            return httpx.Response(200, json={"user": {"fid": fid, "username": username}})

        if path.endswith("/farcaster/feed/user/casts"):
            raw_fid = (params.get("fid") or "").strip()
            fid = int(raw_fid) if raw_fid.isdigit() else 0
            username = fid_to_user.get(fid, f"fid{fid}")
            casts = _offline_casts(fid, username, now())
            if params.get("cursor") == "page-2":
                return httpx.Response(200, json={"casts": casts[3:], "next": {"cursor": None}})
            return httpx.Response(
                200, json={"result": {"casts": casts[:3], "next": {"cursor": "page-2"}}}
            )

        if path.endswith("/farcaster/feed/trending"):
            ts = now()
            casts: list[dict[str, Any]] = []
            for name, fid in _OFFLINE_USERS.items():
                casts.extend(_offline_casts(fid, name, ts))
            return httpx.Response(200, json={"casts": casts, "next": {"cursor": None}})

        return httpx.Response(404, json={"message": "not found"})

    return httpx.MockTransport(_handler)
