"""Shared test doubles for the store's collaborators."""

import pytest

from async_caching import InMemCache


class RecordingWorker:
    """Worker that records jobs instead of running them."""

    def __init__(self, available=True, fail_with=None):
        self.available = available
        self.fail_with = fail_with
        self.jobs = []
        self.probes = 0

    def has_workers(self):
        self.probes += 1
        return self.available

    def enqueue_async_job(self, descriptor):
        if self.fail_with is not None:
            raise self.fail_with
        self.jobs.append(descriptor)


class SpyBackend(InMemCache):
    """InMemCache that records reads and writes."""

    def __init__(self):
        super().__init__()
        self.reads = []
        self.writes = []

    def read(self, key):
        self.reads.append(key)
        return super().read(key)

    def write(self, key, entry, ttl=0):
        self.writes.append((key, entry, ttl))
        super().write(key, entry, ttl)


@pytest.fixture
def backend():
    return SpyBackend()


@pytest.fixture
def worker():
    return RecordingWorker(available=True)
