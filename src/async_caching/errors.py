"""Exception types raised by async_caching."""

from __future__ import annotations


class AsyncCachingError(Exception):
    """Base class for all async_caching errors."""


class ConfigurationError(AsyncCachingError, ValueError):
    """Store or worker wiring is incomplete or invalid."""


class GeneratorRepresentationError(AsyncCachingError, TypeError):
    """
    A generator cannot be turned into (or rebuilt from) a representation
    that another process can execute.
    """
