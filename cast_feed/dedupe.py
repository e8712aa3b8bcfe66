from __future__ import annotations

import hashlib
from dataclasses import dataclass, field

from .cast import Cast


def dedupe_key(cast: Cast) -> str:
    if cast.id:
        return f"id:{cast.id}"
    # No upstream identifier; fall back to the content the cast is made of.
    digest = hashlib.sha1(cast.text.encode("utf-8")).hexdigest()[:16]
    return f"content:{cast.author.fid}:{cast.published_at}:{digest}"


@dataclass
class SeenKeys:
    keys: set[str] = field(default_factory=set)

    def __len__(self) -> int:
        return len(self.keys)

    def add_cast(self, cast: Cast) -> bool:
        """Record the cast and return True if it had not been seen before."""
        key = dedupe_key(cast)
        if key in self.keys:
            return False
        self.keys.add(key)
        return True
