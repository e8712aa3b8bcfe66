from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Sequence


@dataclass(frozen=True)
class CastAuthor:
    fid: int = 0
    username: str = "unknown"
    display_name: str = "Unknown"
    avatar_url: str = ""


@dataclass(frozen=True)
class Engagement:
    likes: int = 0
    recasts: int = 0
    replies: int = 0


@dataclass(frozen=True)
class CastLink:
    url: str | None = None


@dataclass(frozen=True)
class Cast:
    """A canonical cast record. `score` is only set once the cast has been ranked."""

    id: str
    text: str = ""
    author: CastAuthor = CastAuthor()
    engagement: Engagement = Engagement()
    published_at: int = 0  # epoch milliseconds
    links: Sequence[CastLink] = ()
    score: float | None = None

    def with_score(self, score: float) -> "Cast":
        return replace(self, score=float(score))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "text": self.text,
            "author": {
                "id": self.author.fid,
                "handle": self.author.username,
                "displayName": self.author.display_name,
                "avatarUrl": self.author.avatar_url,
            },
            "engagement": {
                "likes": self.engagement.likes,
                "recasts": self.engagement.recasts,
                "replies": self.engagement.replies,
            },
            "publishedAt": self.published_at,
            "links": [{"url": link.url} if link.url else {} for link in self.links],
        }
        if self.score is not None:
            out["score"] = self.score
        return out
