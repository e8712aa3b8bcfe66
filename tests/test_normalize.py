# tests/test_normalize.py
from __future__ import annotations

import unittest

from cast_feed.cast import CastLink
from cast_feed.normalize import cast_from_upstream_item, extract_timestamp_ms, timestamp_to_ms

_NOW_MS = 1_700_050_000_000


class TestTimestamps(unittest.TestCase):
    def test_seconds_are_scaled_to_milliseconds(self) -> None:
        self.assertEqual(timestamp_to_ms(1700000000), 1700000000000)

    def test_fractional_seconds_are_kept(self) -> None:
        self.assertEqual(timestamp_to_ms(1700000000.5), 1700000000500)
        self.assertEqual(timestamp_to_ms(1700000000123.9), 1700000000123)

    def test_milliseconds_are_unchanged(self) -> None:
        self.assertEqual(timestamp_to_ms(1700000000000), 1700000000000)

    def test_iso_strings_are_parsed(self) -> None:
        self.assertEqual(timestamp_to_ms("2023-11-14T22:13:20Z"), 1700000000000)
        self.assertEqual(timestamp_to_ms("2023-11-14T22:13:20.000+00:00"), 1700000000000)

    def test_unreadable_values(self) -> None:
        self.assertIsNone(timestamp_to_ms("yesterday"))
        self.assertIsNone(timestamp_to_ms(True))
        self.assertIsNone(timestamp_to_ms({"ms": 1}))
        self.assertIsNone(timestamp_to_ms(float("nan")))

    def test_field_priority_order(self) -> None:
        item = {
            "created_at": 1,
            "publishedAt": 2,
            "published_at": 1700000000,
            "timestamp": None,
        }
        self.assertEqual(extract_timestamp_ms(item), 1700000000000)
        self.assertIsNone(extract_timestamp_ms({"text": "no time"}))


class TestCastFromUpstreamItem(unittest.TestCase):
    def test_nested_shape(self) -> None:
        item = {
            "hash": "0xabc",
            "text": "hello",
            "timestamp": "2023-11-14T22:13:20Z",
            "author": {
                "fid": 3,
                "username": "dwr",
                "displayName": "Dan",
                "pfp": {"url": "https://example.com/dwr.png"},
            },
            "reactions": {"likes": 10, "recasts": 2, "replies": 1},
            "embeds": [{"url": "https://example.com/a"}, {}],
        }

        cast = cast_from_upstream_item(item, now_ms=_NOW_MS)
        assert cast is not None

        self.assertEqual(cast.id, "0xabc")
        self.assertEqual(cast.text, "hello")
        self.assertEqual(cast.author.fid, 3)
        self.assertEqual(cast.author.username, "dwr")
        self.assertEqual(cast.author.display_name, "Dan")
        self.assertEqual(cast.author.avatar_url, "https://example.com/dwr.png")
        self.assertEqual((cast.engagement.likes, cast.engagement.recasts, cast.engagement.replies), (10, 2, 1))
        self.assertEqual(cast.published_at, 1700000000000)
        self.assertEqual(tuple(cast.links), (CastLink(url="https://example.com/a"), CastLink(url=None)))
        self.assertIsNone(cast.score)

    def test_flattened_shape_with_alternate_names(self) -> None:
        item = {
            "id": 12345,
            "content": "flat",
            "published_at": 1700000000,
            "fid": 42,
            "username": "alice",
            "displayName": "Alice",
            "pfp": {"url": "https://example.com/alice.png"},
            "likes": 4,
            "recasts": 1,
            "replies": 0,
        }

        cast = cast_from_upstream_item(item, now_ms=_NOW_MS)
        assert cast is not None

        self.assertEqual(cast.id, "12345")
        self.assertEqual(cast.text, "flat")
        self.assertEqual(cast.author.fid, 42)
        self.assertEqual(cast.author.username, "alice")
        self.assertEqual(cast.engagement.likes, 4)
        self.assertEqual(cast.published_at, 1700000000000)

    def test_neynar_count_fields(self) -> None:
        item = {
            "hash": "0x1",
            "timestamp": 1700000000000,
            "author": {"fid": 1, "username": "v", "display_name": "Varun", "pfp_url": "p"},
            "reactions": {"likes": [{"fid": 9}], "likes_count": 7, "recasts_count": 3},
            "replies": {"count": 5},
        }

        cast = cast_from_upstream_item(item, now_ms=_NOW_MS)
        assert cast is not None

        self.assertEqual(cast.author.display_name, "Varun")
        self.assertEqual(cast.author.avatar_url, "p")
        self.assertEqual((cast.engagement.likes, cast.engagement.recasts, cast.engagement.replies), (7, 3, 5))

    def test_malformed_record_gets_defaults(self) -> None:
        cast = cast_from_upstream_item(
            {"reactions": {"likes": -4}, "likes": "many", "author": "nobody"},
            now_ms=_NOW_MS,
        )
        assert cast is not None

        self.assertEqual(cast.id, "")
        self.assertEqual(cast.text, "")
        self.assertEqual(cast.author.fid, 0)
        self.assertEqual(cast.author.username, "unknown")
        self.assertEqual(cast.author.display_name, "Unknown")
        self.assertEqual(cast.engagement.likes, 0)
        self.assertEqual(cast.published_at, _NOW_MS)
        self.assertEqual(tuple(cast.links), ())

    def test_non_mapping_record_does_not_raise(self) -> None:
        cast = cast_from_upstream_item(["not", "a", "cast"], now_ms=_NOW_MS)
        assert cast is not None
        self.assertEqual(cast.id, "")

    def test_missing_timestamp_policies(self) -> None:
        item = {"hash": "0x2", "text": "undated"}

        self.assertIsNone(cast_from_upstream_item(item, now_ms=_NOW_MS, missing_timestamp="skip"))

        cast = cast_from_upstream_item(item, now_ms=_NOW_MS, missing_timestamp="now")
        assert cast is not None
        self.assertEqual(cast.published_at, _NOW_MS)

    def test_normalization_is_idempotent(self) -> None:
        item = {
            "hash": "0x3",
            "text": "same",
            "author": {"fid": 5, "username": "bob"},
            "reactions": {"likes": 1},
        }
        first = cast_from_upstream_item(item, now_ms=_NOW_MS)
        second = cast_from_upstream_item(item, now_ms=_NOW_MS)
        self.assertEqual(first, second)

    def test_to_dict_shape(self) -> None:
        cast = cast_from_upstream_item(
            {"hash": "0x4", "timestamp": 1700000000, "author": {"fid": 3, "username": "dwr"}},
            now_ms=_NOW_MS,
        )
        assert cast is not None
        payload = cast.with_score(2.5).to_dict()

        self.assertEqual(payload["id"], "0x4")
        self.assertEqual(payload["author"]["id"], 3)
        self.assertEqual(payload["author"]["handle"], "dwr")
        self.assertEqual(payload["engagement"], {"likes": 0, "recasts": 0, "replies": 0})
        self.assertEqual(payload["publishedAt"], 1700000000000)
        self.assertEqual(payload["score"], 2.5)
        self.assertNotIn("score", cast.to_dict())


if __name__ == "__main__":
    unittest.main()
