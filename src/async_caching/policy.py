"""Regeneration policy: decide whether to generate, enqueue or serve the cached value."""

from __future__ import annotations

from enum import Enum
from typing import Callable, Union


class Strategy(str, Enum):
    GENERATE = "generate"
    ENQUEUE = "enqueue"
    CURRENT = "current"


WorkerProbe = Union[bool, Callable[[], bool]]


def determine_strategy(
    has_cached_data: bool,
    needs_regen: bool,
    synchronous_regen: bool,
    has_workers: WorkerProbe,
) -> Strategy:
    """
    Pick what a fetch should do.

    Rules, first match wins:
        nothing cached                           -> GENERATE
        stale and synchronous_regen              -> GENERATE
        stale, async, workers available          -> ENQUEUE
        stale, async, no workers                 -> GENERATE
        cached and not stale                     -> CURRENT

    Args:
        has_cached_data: Whether the backend returned an entry.
        needs_regen: Whether the entry's version differs from the requested one.
        synchronous_regen: Caller insists on a fresh value before returning.
        has_workers: Worker availability, or a zero-argument probe. A probe is
            only called for the stale/async row.
    """
    if not has_cached_data:
        return Strategy.GENERATE

    if not needs_regen:
        return Strategy.CURRENT

    if synchronous_regen:
        return Strategy.GENERATE

    available = has_workers() if callable(has_workers) else has_workers
    return Strategy.ENQUEUE if available else Strategy.GENERATE
