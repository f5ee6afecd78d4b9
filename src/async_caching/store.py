"""
Store: the stale-while-revalidate orchestrator.

`fetch` reads the entry for a key, compares its version with the requested
one, and then either returns it, regenerates it inline, or hands the
regeneration to a worker and returns the stale value right away.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Sequence, TypeVar

from .errors import ConfigurationError, GeneratorRepresentationError
from .generators import ReproducibleGenerator
from .jobs import JobDescriptor, write_entry
from .keys import base_cache_key, expand_cache_key
from .policy import Strategy, determine_strategy
from .storage import CacheBackend, normalize_ttl, validate_cache_backend
from .workers import Worker, resolve_worker

logger = logging.getLogger(__name__)

T = TypeVar("T")


def normalize_version(version: Any) -> Any:
    """datetimes become integer Unix seconds; anything else is used as-is."""
    if isinstance(version, datetime):
        return int(version.timestamp())
    return version


class Store:
    """
    Versioned cache with background regeneration.

    Example:
        backend = InMemCache()
        store = Store(backend=backend, worker=SchedulerWorker(backend))

        def load_report(account_id):
            return build_report(account_id)

        report = store.fetch(
            "report",
            account.updated_at,
            load_report,
            arguments=[account.id],
            expires_in=timedelta(days=1),
        )
    """

    def __init__(self, backend: CacheBackend, worker: Worker | str | None = None):
        """
        Args:
            backend: Storage for (value, version) entries
            worker: Worker instance, or the name of a registered worker
        """
        if backend is None or not validate_cache_backend(backend):
            raise ConfigurationError("Store requires a backend with read/write")
        self.backend = backend
        self.worker = resolve_worker(worker, backend)

    @staticmethod
    def base_cache_key(key: str, fingerprint: str) -> str:
        return base_cache_key(key, fingerprint)

    def cache_key(
        self,
        key: str,
        generator: Callable[..., Any] | ReproducibleGenerator,
        arguments: Sequence[Any] = (),
    ) -> str:
        """Full key fetch() would use for this key, generator and arguments."""
        generator = ReproducibleGenerator(generator)
        return expand_cache_key(base_cache_key(key, generator.fingerprint), arguments)

    def determine_strategy(
        self, has_cached_data: bool, needs_regen: bool, synchronous_regen: bool
    ) -> Strategy:
        return determine_strategy(
            has_cached_data=has_cached_data,
            needs_regen=needs_regen,
            synchronous_regen=synchronous_regen,
            has_workers=self.worker.has_workers,
        )

    def fetch(
        self,
        key: str,
        version: Any,
        generator: Callable[..., T],
        *,
        expires_in: int | float | timedelta | None = None,
        arguments: Sequence[Any] = (),
        synchronous_regen: bool = False,
    ) -> T:
        """
        Return the value for key at version.

        Args:
            key: Logical cache key
            version: Freshness token; any stored version that differs is stale
            generator: Function computing the value from `arguments`
            expires_in: TTL for written entries (seconds or timedelta)
            arguments: Positional arguments for the generator, part of the key
            synchronous_regen: Regenerate stale entries inline instead of enqueueing

        Backend and worker errors propagate unchanged.
        """
        generator = ReproducibleGenerator(generator)
        arguments = list(arguments)
        version = normalize_version(version)
        ttl = normalize_ttl(expires_in)

        cache_key = expand_cache_key(
            base_cache_key(key, generator.fingerprint), arguments
        )

        entry = self.backend.read(cache_key)
        has_cached_data = entry is not None
        needs_regen = not has_cached_data or entry.version != version

        job = None
        if has_cached_data and needs_regen and not synchronous_regen:
            try:
                job = JobDescriptor.build(cache_key, version, ttl, generator, arguments)
            except GeneratorRepresentationError as e:
                logger.debug(f"Forcing synchronous regeneration for {cache_key}: {e}")
                synchronous_regen = True

        strategy = self.determine_strategy(
            has_cached_data=has_cached_data,
            needs_regen=needs_regen,
            synchronous_regen=synchronous_regen,
        )

        if strategy is Strategy.CURRENT:
            logger.debug(f"Cache HIT (current): {cache_key}")
            return entry.value

        if strategy is Strategy.ENQUEUE:
            logger.debug(f"Cache HIT (stale): {cache_key}, enqueueing regeneration")
            self.worker.enqueue_async_job(job)
            return entry.value

        logger.debug(
            f"Cache {'MISS' if not has_cached_data else 'HIT (stale)'}: "
            f"{cache_key}, generating"
        )
        value = generator(*arguments)
        write_entry(self.backend, cache_key, value, version, ttl)
        return value
