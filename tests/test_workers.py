"""SchedulerWorker, worker registry and decorator tests."""

import time
from datetime import date

import pytest

from async_caching import (
    CacheEntry,
    ConfigurationError,
    InMemCache,
    JobDescriptor,
    ReproducibleGenerator,
    SchedulerWorker,
    Store,
    VersionedCache,
    resolve_worker,
)

from conftest import RecordingWorker


def triple(x):
    return x * 3


def explode():
    raise ValueError("Test error")


def wait_for(condition, timeout=2.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


@pytest.fixture
def scheduler_worker():
    backend = InMemCache()
    worker = SchedulerWorker(backend)
    yield worker
    worker.shutdown(wait=False)


class TestSchedulerWorker:
    def test_has_workers_follows_scheduler_state(self):
        worker = SchedulerWorker(InMemCache(), autostart=False)
        assert not worker.has_workers()

        worker.start()
        assert worker.has_workers()

        worker.shutdown(wait=False)
        assert not worker.has_workers()

    def test_refreshes_stale_entry_in_background(self, scheduler_worker):
        backend = scheduler_worker.backend
        store = Store(backend=backend, worker=scheduler_worker)
        cache_key = store.cache_key("numbers", triple, [5])
        backend.write(cache_key, CacheEntry("old", 1))

        # Stale value is served immediately
        assert store.fetch("numbers", 2, triple, arguments=[5]) == "old"

        assert wait_for(lambda: backend.read(cache_key) == CacheEntry(15, 2))
        assert store.fetch("numbers", 2, triple, arguments=[5]) == 15

    def test_job_errors_reach_error_handler(self):
        errors = []
        backend = InMemCache()
        worker = SchedulerWorker(backend, on_error=errors.append)
        try:
            job = JobDescriptor.build(
                "broken", 1, 0, ReproducibleGenerator(explode), []
            )
            worker.enqueue_async_job(job)

            assert wait_for(lambda: len(errors) == 1)
            assert isinstance(errors[0], ValueError)
            assert str(errors[0]) == "Test error"
            assert backend.read("broken") is None
        finally:
            worker.shutdown(wait=False)

    def test_stopped_scheduler_degrades_to_generate(self):
        backend = InMemCache()
        worker = SchedulerWorker(backend, autostart=False)
        store = Store(backend=backend, worker=worker)
        cache_key = store.cache_key("numbers", triple, [2])
        backend.write(cache_key, CacheEntry("old", 1))

        assert store.fetch("numbers", 2, triple, arguments=[2]) == 6
        assert backend.read(cache_key) == CacheEntry(6, 2)


class TestResolveWorker:
    def test_scheduler_by_name(self):
        backend = InMemCache()
        worker = resolve_worker("scheduler", backend)
        try:
            assert isinstance(worker, SchedulerWorker)
            assert worker.backend is backend
            assert worker.has_workers()
        finally:
            worker.shutdown(wait=False)

    def test_instance_is_returned_unchanged(self):
        worker = RecordingWorker()
        assert resolve_worker(worker, InMemCache()) is worker

    def test_missing_worker(self):
        with pytest.raises(ConfigurationError):
            resolve_worker(None, InMemCache())


class TestVersionedCache:
    """VersionedCache decorator tests."""

    def test_caches_per_version(self, backend, worker):
        store = Store(backend=backend, worker=worker)
        versions = {"current": 1}

        @VersionedCache.cached(
            "profile", store=store, version=lambda user_id: versions["current"]
        )
        def get_profile(user_id):
            return {"id": user_id}

        assert get_profile(1) == {"id": 1}
        assert get_profile(1) == {"id": 1}
        assert len(backend.writes) == 1
        assert worker.jobs == []

        versions["current"] = 2
        assert get_profile(1) == {"id": 1}
        assert len(worker.jobs) == 1
        assert worker.jobs[0].version == 2
        assert worker.jobs[0].arguments == [1]

    def test_fixed_version_and_isolated_arguments(self, backend, worker):
        store = Store(backend=backend, worker=worker)

        @VersionedCache.cached("triple", store=store, version=3, expires_in=60)
        def cached_triple(x):
            return x * 3

        assert cached_triple(2) == 6
        assert cached_triple(3) == 9
        assert [ttl for _, _, ttl in backend.writes] == [60, 60]
        assert cached_triple._store is store
        assert cached_triple.__name__ == "cached_triple"

    def test_enqueued_job_replays_decorated_function(self, backend, worker):
        store = Store(backend=backend, worker=worker)
        versions = {"current": 1}

        @VersionedCache.cached("square", store=store, version=lambda x: versions["current"])
        def square(x):
            return x * x

        assert square(4) == 16
        versions["current"] = 2
        assert square(4) == 16
        job = worker.jobs[0]

        rebuilt = ReproducibleGenerator.from_representation(job.block)
        assert rebuilt(*job.arguments) == 16

    def test_keyword_arguments_are_rejected_clearly(self, backend, worker):
        store = Store(backend=backend, worker=worker)

        @VersionedCache.cached("triple", store=store, version=1)
        def cached_triple(x):
            return x * 3

        with pytest.raises(TypeError, match="only accepts positional arguments, got x"):
            cached_triple(x=2)
        assert backend.writes == []


class TestSchedulerWorkerVersions:
    def test_date_version_regenerates_inline_instead_of_failing(
        self, scheduler_worker
    ):
        backend = scheduler_worker.backend
        store = Store(backend=backend, worker=scheduler_worker)

        assert store.fetch("numbers", date(2024, 1, 1), triple, arguments=[2]) == 6
        assert store.fetch("numbers", date(2024, 1, 2), triple, arguments=[3]) == 9

        cache_key = store.cache_key("numbers", triple, [2])
        backend.write(cache_key, CacheEntry("old", date(2024, 1, 1)))
        assert store.fetch("numbers", date(2024, 1, 2), triple, arguments=[2]) == 6
        assert backend.read(cache_key) == CacheEntry(6, date(2024, 1, 2))
