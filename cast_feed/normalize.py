from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Literal, Mapping, Sequence

from .cast import Cast, CastAuthor, CastLink, Engagement

# Numeric timestamps below this are taken to be seconds, not milliseconds.
SECONDS_THRESHOLD = 10_000_000_000

TIMESTAMP_FIELDS: tuple[str, ...] = ("timestamp", "published_at", "publishedAt", "created_at")

MissingTimestampPolicy = Literal["skip", "now"]

# Each rule is a key path into the raw record; the first usable value wins.
Rule = Sequence[str]

ID_RULES: tuple[Rule, ...] = (("hash",), ("id",))
TEXT_RULES: tuple[Rule, ...] = (("text",), ("content",))

AUTHOR_FID_RULES: tuple[Rule, ...] = (("author", "fid"), ("fid",))
AUTHOR_USERNAME_RULES: tuple[Rule, ...] = (("author", "username"), ("username",))
AUTHOR_DISPLAY_NAME_RULES: tuple[Rule, ...] = (
    ("author", "displayName"),
    ("author", "display_name"),
    ("displayName",),
    ("display_name",),
)
AUTHOR_AVATAR_RULES: tuple[Rule, ...] = (
    ("author", "pfp", "url"),
    ("author", "pfp_url"),
    ("pfp", "url"),
    ("pfp_url",),
)

LIKES_RULES: tuple[Rule, ...] = (
    ("reactions", "likes"),
    ("reactions", "likes_count"),
    ("likes",),
    ("likes_count",),
)
RECASTS_RULES: tuple[Rule, ...] = (
    ("reactions", "recasts"),
    ("reactions", "recasts_count"),
    ("recasts",),
    ("recasts_count",),
)
REPLIES_RULES: tuple[Rule, ...] = (
    ("reactions", "replies"),
    ("replies", "count"),
    ("replies",),
    ("replies_count",),
)

LINKS_RULES: tuple[Rule, ...] = (("embeds",), ("links",))


def _dig(item: Mapping[str, Any], path: Rule) -> Any:
    cur: Any = item
    for key in path:
        if not isinstance(cur, Mapping):
            return None
        cur = cur.get(key)
    return cur


def _coerce_str(value: Any) -> str | None:
    if isinstance(value, str):
        s = value.strip()
        return s if s else None
    return None


def _coerce_text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _coerce_id(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        v = value.strip()
        return v if v else None
    if isinstance(value, int):
        return str(value)
    return None


def _coerce_fid(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _coerce_count(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float) and math.isfinite(value) and value >= 0:
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _first(item: Mapping[str, Any], rules: Sequence[Rule], coerce: Any) -> Any:
    for rule in rules:
        value = coerce(_dig(item, rule))
        if value is not None:
            return value
    return None


def _parse_datetime_ms(text: str) -> int | None:
    s = text.strip()
    if not s:
        return None
    if s.endswith(("Z", "z")):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(round(dt.timestamp() * 1000))


def timestamp_to_ms(value: Any) -> int | None:
    """
    Convert a raw upstream timestamp to epoch milliseconds.

    Strings are parsed as ISO-8601 date/times; numbers are used as-is. Either way,
    a result below SECONDS_THRESHOLD is read as seconds and scaled by 1000.
    Returns None when the value cannot be interpreted.
    """
    if isinstance(value, bool) or value is None:
        return None

    number: int | float | None
    if isinstance(value, str):
        number = _parse_datetime_ms(value)
    elif isinstance(value, (int, float)):
        number = value if math.isfinite(value) else None
    else:
        return None

    if number is None:
        return None
    # Scale before truncating so fractional seconds survive.
    if number < SECONDS_THRESHOLD:
        return int(number * 1000)
    return int(number)


def extract_timestamp_ms(item: Mapping[str, Any]) -> int | None:
    """Read the first present timestamp field, in priority order."""
    for name in TIMESTAMP_FIELDS:
        raw = item.get(name)
        if raw is None:
            continue
        return timestamp_to_ms(raw)
    return None


def _links(item: Mapping[str, Any]) -> tuple[CastLink, ...]:
    for rule in LINKS_RULES:
        raw = _dig(item, rule)
        if not isinstance(raw, list):
            continue
        out: list[CastLink] = []
        for entry in raw:
            if isinstance(entry, Mapping):
                out.append(CastLink(url=_coerce_str(entry.get("url"))))
            elif isinstance(entry, str):
                out.append(CastLink(url=_coerce_str(entry)))
        return tuple(out)
    return ()


def cast_from_upstream_item(
    item: Any,
    *,
    now_ms: int,
    missing_timestamp: MissingTimestampPolicy = "now",
) -> Cast | None:
    """
    Best-effort extraction of a canonical Cast from one raw upstream record.

    Tolerates the nested and flattened author/reaction shapes and the alternate
    id/text field names. Malformed input yields defaults rather than an error.
    Returns None only when the record has no usable timestamp and the policy is
    "skip".
    """
    record: Mapping[str, Any] = item if isinstance(item, Mapping) else {}

    published_at = extract_timestamp_ms(record)
    if published_at is None:
        if missing_timestamp == "skip":
            return None
        published_at = int(now_ms)

    author = CastAuthor(
        fid=_first(record, AUTHOR_FID_RULES, _coerce_fid) or 0,
        username=_first(record, AUTHOR_USERNAME_RULES, _coerce_str) or "unknown",
        display_name=_first(record, AUTHOR_DISPLAY_NAME_RULES, _coerce_str) or "Unknown",
        avatar_url=_first(record, AUTHOR_AVATAR_RULES, _coerce_str) or "",
    )

    engagement = Engagement(
        likes=_first(record, LIKES_RULES, _coerce_count) or 0,
        recasts=_first(record, RECASTS_RULES, _coerce_count) or 0,
        replies=_first(record, REPLIES_RULES, _coerce_count) or 0,
    )

    return Cast(
        id=_first(record, ID_RULES, _coerce_id) or "",
        text=_first(record, TEXT_RULES, _coerce_text) or "",
        author=author,
        engagement=engagement,
        published_at=published_at,
        links=_links(record),
    )
