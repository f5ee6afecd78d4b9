"""
Stale-while-revalidate caching with out-of-process regeneration.

Expose the Store orchestrator, storage backends, workers and the job protocol
under `async_caching`.
"""

from .errors import (
    AsyncCachingError,
    ConfigurationError,
    GeneratorRepresentationError,
)
from .storage import (
    InMemCache,
    RedisCache,
    CacheEntry,
    CacheBackend,
    validate_cache_backend,
)
from .keys import base_cache_key, expand_cache_key
from .generators import ReproducibleGenerator
from .policy import Strategy, determine_strategy
from .jobs import JobDescriptor, perform_job
from .workers import (
    Worker,
    SchedulerWorker,
    RedisWorker,
    register_worker,
    resolve_worker,
)
from .store import Store
from .decorators import VersionedCache

__all__ = [
    "AsyncCachingError",
    "ConfigurationError",
    "GeneratorRepresentationError",
    "InMemCache",
    "RedisCache",
    "CacheEntry",
    "CacheBackend",
    "validate_cache_backend",
    "base_cache_key",
    "expand_cache_key",
    "ReproducibleGenerator",
    "Strategy",
    "determine_strategy",
    "JobDescriptor",
    "perform_job",
    "Worker",
    "SchedulerWorker",
    "RedisWorker",
    "register_worker",
    "resolve_worker",
    "Store",
    "VersionedCache",
]
