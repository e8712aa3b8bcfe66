from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from cast_feed.config import config_sha256, load_config, resolve_runtime_secrets
from cast_feed.errors import ConfigError


_VALID_YAML = """\
neynar:
  api_key_env: NEYNAR_API_KEY
  base_url: https://api.neynar.com/v2/
  user_agent: cast-feed-test/1.0
  timeout_seconds: 5

retry:
  max_attempts: 3
  base_delay_seconds: 1
  max_delay_seconds: 4
  retry_after_cap_seconds: 30

pagination:
  page_limit: 25
  max_pages: 10
  author_max_pages: 20
  max_candidates: 500
  inter_request_delay_seconds: 0.2
  author_batch_size: 2
  stop_on_past_timestamp: true
  request_budget_seconds: 0

feed:
  today_source: authors
  popular_authors:
    - "@dwr"
    - v
    - DWR
    - 3
  today_top_n: 20
  author_top_n: 10

server:
  host: 0.0.0.0
  port: 8080
  cache_control: "s-maxage=60"
"""


class TestConfig(unittest.TestCase):
    def test_load_config_ok(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.yaml"
            path.write_text(_VALID_YAML, encoding="utf-8")

            cfg = load_config(path)
            self.assertEqual(cfg.neynar.base_url, "https://api.neynar.com/v2")
            self.assertEqual(cfg.pagination.author_batch_size, 2)
            self.assertEqual(cfg.feed.popular_authors, ["dwr", "v", 3])
            self.assertEqual(cfg.server.cache_control, "s-maxage=60")

    def test_none_path_gives_defaults(self) -> None:
        cfg = load_config(None)
        self.assertEqual(cfg.retry.max_attempts, 3)
        self.assertEqual(cfg.retry.retry_after_cap_seconds, 30.0)
        self.assertEqual(cfg.feed.today_top_n, 20)
        self.assertEqual(cfg.feed.author_top_n, 10)
        self.assertEqual(cfg.pagination.max_candidates, 1000)
        self.assertIn("dwr", cfg.feed.popular_authors)

    def test_empty_file_gives_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.yaml"
            path.write_text("", encoding="utf-8")
            self.assertEqual(load_config(path), load_config(None))

    def test_rejects_unbounded_author_batch(self) -> None:
        bad_yaml = _VALID_YAML.replace("author_batch_size: 2", "author_batch_size: 10")
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.yaml"
            path.write_text(bad_yaml, encoding="utf-8")

            with self.assertRaises(ConfigError) as ctx:
                load_config(path)
            self.assertIn("pagination.author_batch_size", str(ctx.exception))

    def test_rejects_unknown_keys(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.yaml"
            path.write_text("feed:\n  top_n: 5\n", encoding="utf-8")
            with self.assertRaises(ConfigError):
                load_config(path)

    def test_missing_file_raises(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(ConfigError):
                load_config(Path(td) / "missing.yaml")

    def test_resolve_runtime_secrets_requires_env(self) -> None:
        cfg = load_config(None)

        with self.assertRaises(ConfigError):
            resolve_runtime_secrets(cfg, environ={})
        with self.assertRaises(ConfigError):
            resolve_runtime_secrets(cfg, environ={"NEYNAR_API_KEY": "   "})

        secrets = resolve_runtime_secrets(cfg, environ={"NEYNAR_API_KEY": " key "})
        self.assertEqual(secrets.neynar_api_key, "key")

    def test_config_hash_is_stable(self) -> None:
        self.assertEqual(config_sha256(load_config(None)), config_sha256(load_config(None)))


if __name__ == "__main__":
    unittest.main()
