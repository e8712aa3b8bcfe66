from __future__ import annotations

import re
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

DEFAULT_POPULAR_AUTHORS: tuple[str, ...] = (
    "dwr",
    "v",
    "farcaster",
    "base",
    "optimism",
    "a16z",
    "paradigm",
    "danromero",
    "jesse",
    "varunsrinivasan",
    "rish",
    "balajis",
)


def _normalize_author_list(values: list[str | int]) -> list[str | int]:
    out: list[str | int] = []
    seen: set[str] = set()

    for item in values:
        if isinstance(item, bool):
            continue
        if isinstance(item, int):
            if item < 1:
                raise ValueError("numeric author ids must be >= 1")
            key = f"fid:{item}"
            value: str | int = item
        else:
            handle = (item or "").strip()
            if handle.startswith("@"):
                handle = handle[1:].strip()
            if not handle:
                continue
            key = handle.casefold()
            value = handle
        if key in seen:
            continue
        seen.add(key)
        out.append(value)

    return out


def _validate_env_var_name(value: str) -> str:
    name = (value or "").strip()
    if not _ENV_NAME_RE.fullmatch(name):
        raise ValueError("must be a valid environment variable name")
    return name


PositiveInt = Annotated[int, Field(ge=1)]
NonNegativeFloat = Annotated[float, Field(ge=0.0)]


class NeynarConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    api_key_env: str = "NEYNAR_API_KEY"
    base_url: str = "https://api.neynar.com/v2"
    user_agent: str = "cast-feed/1.0"
    timeout_seconds: float = Field(15.0, gt=0.0)

    @field_validator("api_key_env")
    @classmethod
    def _api_key_env_must_be_valid(cls, v: str) -> str:
        return _validate_env_var_name(v)

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        url = (v or "").strip().rstrip("/")
        if not url.startswith(("http://", "https://")):
            raise ValueError("must be an http(s) URL")
        return url


class RetrySettings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    max_attempts: PositiveInt = 3
    base_delay_seconds: NonNegativeFloat = 1.0
    max_delay_seconds: NonNegativeFloat = 4.0
    retry_after_cap_seconds: NonNegativeFloat = 30.0

    @model_validator(mode="after")
    def _max_covers_base(self) -> "RetrySettings":
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")
        return self


class PaginationConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    page_limit: int = Field(25, ge=1, le=100)
    max_pages: int = Field(20, ge=1, le=500)
    author_max_pages: int = Field(50, ge=1, le=500)
    max_candidates: PositiveInt = 1000
    inter_request_delay_seconds: NonNegativeFloat = 0.5
    # More than three in flight trips the upstream rate limit.
    author_batch_size: int = Field(1, ge=1, le=3)
    stop_on_past_timestamp: bool = True
    request_budget_seconds: NonNegativeFloat = 25.0  # 0 disables the budget


class FeedConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    today_source: Literal["authors", "trending"] = "authors"
    popular_authors: list[str | int] = Field(
        default_factory=lambda: list(DEFAULT_POPULAR_AUTHORS)
    )
    today_top_n: PositiveInt = 20
    author_top_n: PositiveInt = 10

    @field_validator("popular_authors")
    @classmethod
    def _normalize_authors(cls, v: list[str | int]) -> list[str | int]:
        return _normalize_author_list(v)

    @model_validator(mode="after")
    def _authors_required_for_author_source(self) -> "FeedConfig":
        if self.today_source == "authors" and not self.popular_authors:
            raise ValueError("popular_authors must not be empty when today_source is 'authors'")
        return self


class ServerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    host: str = "127.0.0.1"
    port: int = Field(8000, ge=1, le=65535)
    cache_control: str | None = None


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    neynar: NeynarConfig = Field(default_factory=NeynarConfig)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    pagination: PaginationConfig = Field(default_factory=PaginationConfig)
    feed: FeedConfig = Field(default_factory=FeedConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
