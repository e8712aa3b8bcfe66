from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Mapping

from .cast import Cast, Engagement

LIKE_WEIGHT = 1.0
RECAST_WEIGHT = 2.0
REPLY_WEIGHT = 1.5

RECENCY_WINDOW_HOURS = 24.0
RECENCY_BONUS_WEIGHT = 0.5

_MS_PER_HOUR = 3_600_000

ENGAGEMENT = "engagement"
ENGAGEMENT_RECENCY = "engagement_recency"

ScoreFn = Callable[[Cast, int], float]


def engagement_score(engagement: Engagement) -> float:
    return (
        LIKE_WEIGHT * engagement.likes
        + RECAST_WEIGHT * engagement.recasts
        + REPLY_WEIGHT * engagement.replies
    )


def recency_bonus(published_at: int, now_ms: int) -> float:
    """
    Linear decay from 1.0 at publication to 0.0 at 24 hours old.

    Age is clamped at zero, so a cast dated in the future gets at most 1.0.
    """
    age_hours = max(0.0, (int(now_ms) - int(published_at)) / _MS_PER_HOUR)
    return max(0.0, RECENCY_WINDOW_HOURS - age_hours) / RECENCY_WINDOW_HOURS


def score_engagement(cast: Cast, now_ms: int) -> float:
    return engagement_score(cast.engagement)


def score_engagement_recency(cast: Cast, now_ms: int) -> float:
    bonus = recency_bonus(cast.published_at, now_ms)
    return engagement_score(cast.engagement) * (1.0 + bonus * RECENCY_BONUS_WEIGHT)


STRATEGIES: Mapping[str, ScoreFn] = {
    ENGAGEMENT: score_engagement,
    ENGAGEMENT_RECENCY: score_engagement_recency,
}


@dataclass(frozen=True)
class RankedCasts:
    casts: tuple[Cast, ...]
    total: int


def rank_casts(
    casts: Iterable[Cast],
    *,
    strategy: str,
    top_n: int,
    now_ms: int,
) -> RankedCasts:
    """
    Score every cast, sort descending, and keep the first top_n.

    The sort is stable, so equal scores keep their encounter order. `total`
    counts the candidates before truncation.
    """
    try:
        score_fn = STRATEGIES[strategy]
    except KeyError:
        raise ValueError(f"unknown scoring strategy: {strategy!r}") from None
    if top_n < 0:
        raise ValueError("top_n must be >= 0")

    scored = [c.with_score(score_fn(c, now_ms)) for c in casts]
    scored.sort(key=lambda c: c.score, reverse=True)

    return RankedCasts(casts=tuple(scored[:top_n]), total=len(scored))
