# tests/test_scoring.py
from __future__ import annotations

import unittest

from cast_feed.cast import Cast, Engagement
from cast_feed.scoring import (
    ENGAGEMENT,
    ENGAGEMENT_RECENCY,
    engagement_score,
    rank_casts,
    recency_bonus,
)

_HOUR = 3_600_000
_NOW_MS = 1_700_049_600_000


def _cast(cast_id: str, likes: int = 0, recasts: int = 0, replies: int = 0, age_h: float = 0) -> Cast:
    return Cast(
        id=cast_id,
        engagement=Engagement(likes=likes, recasts=recasts, replies=replies),
        published_at=int(_NOW_MS - age_h * _HOUR),
    )


class TestScores(unittest.TestCase):
    def test_engagement_weights(self) -> None:
        self.assertEqual(engagement_score(Engagement(likes=10, recasts=5, replies=2)), 23.0)
        self.assertEqual(engagement_score(Engagement()), 0.0)

    def test_engagement_is_monotonic(self) -> None:
        base = engagement_score(Engagement(likes=1, recasts=1, replies=1))
        self.assertGreater(engagement_score(Engagement(likes=2, recasts=1, replies=1)), base)
        self.assertGreater(engagement_score(Engagement(likes=1, recasts=2, replies=1)), base)
        self.assertGreater(engagement_score(Engagement(likes=1, recasts=1, replies=2)), base)

    def test_recency_score_is_monotonic_in_engagement(self) -> None:
        base = rank_casts([_cast("a", 1, 1, 1, age_h=3)], strategy=ENGAGEMENT_RECENCY, top_n=1, now_ms=_NOW_MS)
        for bumped in (_cast("b", 2, 1, 1, age_h=3), _cast("c", 1, 2, 1, age_h=3), _cast("d", 1, 1, 2, age_h=3)):
            ranked = rank_casts([bumped], strategy=ENGAGEMENT_RECENCY, top_n=1, now_ms=_NOW_MS)
            self.assertGreater(ranked.casts[0].score, base.casts[0].score)

    def test_fresh_cast_outscores_day_old_twin(self) -> None:
        casts = [_cast("old", likes=3, age_h=24), _cast("new", likes=3)]
        ranked = rank_casts(casts, strategy=ENGAGEMENT_RECENCY, top_n=2, now_ms=_NOW_MS)
        self.assertEqual([c.id for c in ranked.casts], ["new", "old"])
        self.assertEqual(ranked.casts[0].score, 4.5)
        self.assertEqual(ranked.casts[1].score, 3.0)

    def test_recency_bonus_bounds(self) -> None:
        self.assertEqual(recency_bonus(_NOW_MS, _NOW_MS), 1.0)
        self.assertEqual(recency_bonus(_NOW_MS - 12 * _HOUR, _NOW_MS), 0.5)
        self.assertEqual(recency_bonus(_NOW_MS - 24 * _HOUR, _NOW_MS), 0.0)
        self.assertEqual(recency_bonus(_NOW_MS - 72 * _HOUR, _NOW_MS), 0.0)
        self.assertEqual(recency_bonus(_NOW_MS + 5 * _HOUR, _NOW_MS), 1.0)


class TestRankCasts(unittest.TestCase):
    def test_engagement_ranking_truncates_and_reports_total(self) -> None:
        casts = [_cast(f"c{i}", likes=i) for i in range(50)]
        ranked = rank_casts(casts, strategy=ENGAGEMENT, top_n=20, now_ms=_NOW_MS)

        self.assertEqual(ranked.total, 50)
        self.assertEqual(len(ranked.casts), 20)
        self.assertEqual(ranked.casts[0].id, "c49")
        self.assertEqual(ranked.casts[0].score, 49.0)
        scores = [c.score for c in ranked.casts]
        self.assertEqual(scores, sorted(scores, reverse=True))

    def test_ties_keep_encounter_order(self) -> None:
        casts = [_cast("a", likes=2), _cast("b", recasts=1), _cast("c", likes=5), _cast("d", likes=2)]
        ranked = rank_casts(casts, strategy=ENGAGEMENT, top_n=10, now_ms=_NOW_MS)

        self.assertEqual([c.id for c in ranked.casts], ["c", "a", "b", "d"])

    def test_recency_breaks_equal_engagement(self) -> None:
        casts = [_cast("old", likes=10, age_h=20), _cast("new", likes=10, age_h=1)]
        ranked = rank_casts(casts, strategy=ENGAGEMENT_RECENCY, top_n=10, now_ms=_NOW_MS)

        self.assertEqual([c.id for c in ranked.casts], ["new", "old"])
        self.assertAlmostEqual(ranked.casts[0].score, 10 * (1 + 0.5 * 23 / 24))

    def test_zero_engagement_stays_zero(self) -> None:
        ranked = rank_casts([_cast("quiet")], strategy=ENGAGEMENT_RECENCY, top_n=1, now_ms=_NOW_MS)
        self.assertEqual(ranked.casts[0].score, 0.0)

    def test_empty_and_invalid_input(self) -> None:
        ranked = rank_casts([], strategy=ENGAGEMENT, top_n=20, now_ms=_NOW_MS)
        self.assertEqual((ranked.casts, ranked.total), ((), 0))

        with self.assertRaises(ValueError):
            rank_casts([], strategy="virality", top_n=1, now_ms=_NOW_MS)
        with self.assertRaises(ValueError):
            rank_casts([], strategy=ENGAGEMENT, top_n=-1, now_ms=_NOW_MS)


if __name__ == "__main__":
    unittest.main()
