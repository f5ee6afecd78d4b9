"""Decision table tests for determine_strategy."""

import itertools

import pytest

from async_caching import Store, Strategy, determine_strategy


class TestDetermineStrategy:
    """Pure decision function."""

    @pytest.mark.parametrize(
        "needs_regen,synchronous_regen,has_workers",
        list(itertools.product([True, False], repeat=3)),
    )
    def test_always_generates_when_nothing_cached(
        self, needs_regen, synchronous_regen, has_workers
    ):
        assert (
            determine_strategy(False, needs_regen, synchronous_regen, has_workers)
            is Strategy.GENERATE
        )

    @pytest.mark.parametrize("has_workers", [True, False])
    def test_generates_when_told_to_synchronously_regenerate(self, has_workers):
        assert determine_strategy(True, True, True, has_workers) is Strategy.GENERATE

    def test_enqueues_when_stale_and_workers_available(self):
        assert determine_strategy(True, True, False, True) is Strategy.ENQUEUE

    def test_generates_instead_of_enqueueing_without_workers(self):
        assert determine_strategy(True, True, False, False) is Strategy.GENERATE

    @pytest.mark.parametrize(
        "synchronous_regen,has_workers",
        list(itertools.product([True, False], repeat=2)),
    )
    def test_current_when_no_regeneration_needed(self, synchronous_regen, has_workers):
        assert (
            determine_strategy(True, False, synchronous_regen, has_workers)
            is Strategy.CURRENT
        )

    def test_probe_only_called_for_stale_async_row(self):
        calls = {"n": 0}

        def probe():
            calls["n"] += 1
            return True

        determine_strategy(False, True, False, probe)
        determine_strategy(True, False, False, probe)
        determine_strategy(True, True, True, probe)
        assert calls["n"] == 0

        assert determine_strategy(True, True, False, probe) is Strategy.ENQUEUE
        assert calls["n"] == 1


class TestStoreDetermineStrategy:
    """Store.determine_strategy consults the store's worker."""

    def test_enqueues_when_worker_available(self, backend, worker):
        store = Store(backend=backend, worker=worker)
        assert store.determine_strategy(True, True, False) is Strategy.ENQUEUE
        assert worker.probes == 1

    def test_generates_when_worker_unavailable(self, backend, worker):
        worker.available = False
        store = Store(backend=backend, worker=worker)
        assert store.determine_strategy(True, True, False) is Strategy.GENERATE

    def test_current_without_probing(self, backend, worker):
        store = Store(backend=backend, worker=worker)
        assert store.determine_strategy(True, False, False) is Strategy.CURRENT
        assert worker.probes == 0
