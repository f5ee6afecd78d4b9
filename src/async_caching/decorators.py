"""
Decorator sugar over Store.fetch.

Provides:
- VersionedCache: cache a function's result per version, regenerating stale
  values in the background through the store's worker
"""

from __future__ import annotations

import functools
from datetime import timedelta
from typing import Any, Callable, TypeVar

from .store import Store

T = TypeVar("T")


class VersionedCache:
    """
    Versioned SWR decorator.

    Example:
        @VersionedCache.cached(
            "user_profile",
            store=store,
            version=lambda user_id: users.updated_at(user_id),
            expires_in=3600,
        )
        def get_user_profile(user_id):
            return db.fetch_user_profile(user_id)

        # Fixed version; bump it to invalidate every cached call
        @VersionedCache.cached("settings", store=store, version=3)
        def get_settings():
            return load_settings()
    """

    @classmethod
    def cached(
        cls,
        key: str,
        store: Store,
        version: Any | Callable[..., Any],
        expires_in: int | float | timedelta | None = None,
        synchronous_regen: bool = False,
    ) -> Callable[[Callable[..., T]], Callable[..., T]]:
        """
        Cache decorator.

        Args:
            key: Logical cache key; call arguments are folded in automatically
            store: Store to fetch through
            version: Version value, or a callable receiving the call's arguments
            expires_in: TTL for written entries
            synchronous_regen: Regenerate stale values inline

        The decorated function is shipped to workers by source, so it must not
        close over local variables; only positional arguments are supported.
        """

        def decorator(func: Callable[..., T]) -> Callable[..., T]:
            @functools.wraps(func)
            def wrapper(*args, **kwargs) -> T:
                if kwargs:
                    raise TypeError(
                        f"{func.__name__}() is cached by VersionedCache and only "
                        f"accepts positional arguments, got {', '.join(sorted(kwargs))}"
                    )
                current = version(*args) if callable(version) else version
                return store.fetch(
                    key,
                    current,
                    func,
                    expires_in=expires_in,
                    arguments=args,
                    synchronous_regen=synchronous_regen,
                )

            # Store reference for testing/debugging
            wrapper._store = store  # type: ignore
            return wrapper

        return decorator
