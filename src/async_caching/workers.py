"""
Background workers that execute regeneration jobs.

Provides:
- Worker: protocol the Store dispatches through
- SchedulerWorker: in-process pool backed by an APScheduler BackgroundScheduler
- RedisWorker: cross-process queue on a Redis list, with TTL-backed worker presence
- register_worker / resolve_worker: wire workers by name
"""

from __future__ import annotations

import logging
import os
import socket
import threading
import time
from typing import Any, Callable, Protocol

import redis
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

from .errors import ConfigurationError
from .jobs import JobDescriptor, perform_job
from .storage import CacheBackend

logger = logging.getLogger(__name__)


# ============================================================================
# Worker Protocol
# ============================================================================


class Worker(Protocol):
    """
    Protocol for job dispatchers.

    `has_workers` may be approximate. `enqueue_async_job` is fire-and-forget
    from the store's point of view; errors it raises reach the caller.
    """

    def has_workers(self) -> bool: ...

    def enqueue_async_job(self, descriptor: JobDescriptor) -> None: ...


def validate_worker(worker: Any) -> bool:
    required_methods = ["has_workers", "enqueue_async_job"]
    return all(
        hasattr(worker, method) and callable(getattr(worker, method))
        for method in required_methods
    )


# ============================================================================
# SchedulerWorker - APScheduler thread pool
# ============================================================================


class SchedulerWorker:
    """
    Runs jobs on a BackgroundScheduler owned by this worker.

    Each job goes through the JSON wire format before it runs, so the
    in-process path exercises the same contract as a remote worker.

    Example:
        backend = InMemCache()
        worker = SchedulerWorker(backend)
        store = Store(backend=backend, worker=worker)
        ...
        worker.shutdown()
    """

    def __init__(
        self,
        backend: CacheBackend,
        scheduler: BackgroundScheduler | None = None,
        autostart: bool = True,
        on_error: Callable[[Exception], None] | None = None,
    ):
        """
        Args:
            backend: Backend the jobs write results into
            scheduler: Optional scheduler to use (defaults to a new daemon BackgroundScheduler)
            autostart: Start the scheduler immediately
            on_error: Optional callback for exceptions raised by a job
        """
        self.backend = backend
        self.on_error = on_error
        self._scheduler = (
            scheduler if scheduler is not None else BackgroundScheduler(daemon=True)
        )
        self._lock = threading.RLock()
        if autostart:
            self.start()

    @property
    def scheduler(self) -> BackgroundScheduler:
        return self._scheduler

    def start(self) -> None:
        with self._lock:
            if not self._scheduler.running:
                self._scheduler.start()
                logger.info("SchedulerWorker started")

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=wait)
                logger.info("SchedulerWorker stopped")

    def has_workers(self) -> bool:
        return self._scheduler.running

    def enqueue_async_job(self, descriptor: JobDescriptor) -> None:
        self._scheduler.add_job(
            self._run,
            trigger=DateTrigger(),
            args=[descriptor.dumps()],
            misfire_grace_time=None,
        )
        logger.debug(f"Enqueued regeneration for {descriptor.key}")

    def _run(self, payload: str) -> None:
        try:
            start = time.time()
            job = JobDescriptor.loads(payload)
            perform_job(job, self.backend)
            logger.info(
                f"Regenerated {job.key} in {time.time() - start:.3f}s"
            )
        except Exception as e:
            logger.error(f"Regeneration job failed: {e}", exc_info=True)
            if self.on_error:
                try:
                    self.on_error(e)
                except Exception as err:
                    logger.error(f"Error handler failed: {err}")


# ============================================================================
# RedisWorker - cross-process queue
# ============================================================================


class RedisWorker:
    """
    Job queue on Redis shared between requesting processes and workers.

    Uses:
    - Redis list (``{prefix}:pending``) holding JSON job payloads
    - Redis sorted set (``{prefix}:workers``) of worker ids scored by expiry

    Requesting side calls `has_workers` / `enqueue_async_job`; worker processes
    call `work()` (or `work_once()` from their own loop).

    Example:
        client = redis.Redis()
        backend = RedisCache(client, prefix="app:")
        worker = RedisWorker(client, backend)
        store = Store(backend=backend, worker=worker)

        # in the worker process
        RedisWorker(client, backend).work()
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        backend: CacheBackend,
        prefix: str = "async_cache:jobs",
        presence_ttl: float = 30.0,
    ):
        if presence_ttl <= 0:
            raise ConfigurationError("presence_ttl must be > 0")
        self.client = redis_client
        self.backend = backend
        self.prefix = prefix
        self.presence_ttl = presence_ttl

    def _pending_key(self) -> str:
        return f"{self.prefix}:pending"

    def _workers_key(self) -> str:
        return f"{self.prefix}:workers"

    # -- requesting side -----------------------------------------------------

    def has_workers(self) -> bool:
        """True when at least one worker heartbeat has not expired."""
        self.client.zremrangebyscore(self._workers_key(), "-inf", time.time())
        return int(self.client.zcard(self._workers_key())) > 0

    def enqueue_async_job(self, descriptor: JobDescriptor) -> None:
        self.client.rpush(self._pending_key(), descriptor.dumps())
        logger.debug(f"Enqueued regeneration for {descriptor.key}")

    def pending_count(self) -> int:
        return int(self.client.llen(self._pending_key()))

    # -- worker side ---------------------------------------------------------

    def register(self, worker_id: str) -> None:
        """Announce (or refresh) a live worker for presence_ttl seconds."""
        expiry = time.time() + self.presence_ttl
        self.client.zadd(self._workers_key(), {worker_id: expiry})

    def unregister(self, worker_id: str) -> None:
        self.client.zrem(self._workers_key(), worker_id)

    def work_once(self, timeout: int = 1) -> bool:
        """
        Pop and run one job. Returns False when the queue stayed empty.

        Job failures are raised; the job is not re-queued.
        """
        item = self.client.blpop([self._pending_key()], timeout=timeout)
        if item is None:
            return False
        _, raw = item
        perform_job(raw, self.backend)
        return True

    def work(
        self,
        worker_id: str | None = None,
        stop_event: threading.Event | None = None,
        poll_timeout: int = 1,
    ) -> None:
        """
        Process jobs until stop_event is set, keeping the presence entry fresh.

        A failing job is logged and the loop moves on to the next one.
        """
        worker_id = worker_id or f"{socket.gethostname()}:{os.getpid()}"
        stop_event = stop_event or threading.Event()

        self.register(worker_id)
        logger.info(f"RedisWorker {worker_id} registered on {self.prefix}")
        last_beat = time.time()
        try:
            while not stop_event.is_set():
                if time.time() - last_beat >= self.presence_ttl / 2:
                    self.register(worker_id)
                    last_beat = time.time()
                try:
                    self.work_once(timeout=poll_timeout)
                except redis.RedisError:
                    raise
                except Exception as e:
                    logger.error(f"Regeneration job failed: {e}", exc_info=True)
        finally:
            self.unregister(worker_id)
            logger.info(f"RedisWorker {worker_id} unregistered")


# ============================================================================
# Registry - wire workers by name
# ============================================================================


_WORKER_FACTORIES: dict[str, Callable[[CacheBackend], Worker]] = {
    "scheduler": SchedulerWorker,
}


def register_worker(name: str, factory: Callable[[CacheBackend], Worker]) -> None:
    """
    Make a worker available by name to Store(worker=name).

    Example:
        register_worker("redis", lambda backend: RedisWorker(client, backend))
    """
    _WORKER_FACTORIES[name] = factory


def resolve_worker(worker: Worker | str | None, backend: CacheBackend) -> Worker:
    """Return a worker instance for an instance or a registered name."""
    if worker is None:
        raise ConfigurationError("Store requires a worker")

    if isinstance(worker, str):
        factory = _WORKER_FACTORIES.get(worker)
        if factory is None:
            known = ", ".join(sorted(_WORKER_FACTORIES))
            raise ConfigurationError(f"Unknown worker {worker!r} (known: {known})")
        worker = factory(backend)

    if not validate_worker(worker):
        raise ConfigurationError(
            f"{type(worker).__name__} does not implement has_workers/enqueue_async_job"
        )
    return worker
