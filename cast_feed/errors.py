from __future__ import annotations


class ConfigError(RuntimeError):
    """Raised when configuration or a required credential is missing or invalid."""


class InvalidParameterError(ValueError):
    """Raised when a request parameter is missing or malformed."""
