from __future__ import annotations

from .cast import Cast, CastAuthor, CastLink, Engagement
from .config import load_config, resolve_runtime_secrets
from .config_schema import AppConfig
from .errors import ConfigError, InvalidParameterError
from .service import CastFeedService, RankedResult

__all__ = [
    "AppConfig",
    "Cast",
    "CastAuthor",
    "CastFeedService",
    "CastLink",
    "ConfigError",
    "Engagement",
    "InvalidParameterError",
    "RankedResult",
    "load_config",
    "resolve_runtime_secrets",
]
