"""
Cache key derivation.

A key is made of the caller's logical key, a fingerprint of the generator's
source, and (when present) a digest of the positional arguments. Changing the
generator's code therefore moves it to a fresh key space.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Sequence

KEY_NAMESPACE = "async_cache"


def digest(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def _tagged(obj: Any) -> dict[str, str]:
    # Non-JSON values keep their type so Decimal("1") and "1" stay apart
    return {
        "__type__": f"{type(obj).__module__}.{type(obj).__qualname__}",
        "repr": repr(obj),
    }


def canonical_arguments(arguments: Sequence[Any]) -> str:
    """Stable JSON text for an argument list (order kept, dict keys sorted)."""
    return json.dumps(
        list(arguments), sort_keys=True, separators=(",", ":"), default=_tagged
    )


def base_cache_key(key: str, fingerprint: str) -> str:
    """
    Combine a logical key with a generator fingerprint.

    Example:
        >>> base_cache_key("user:1", "d41d8cd9")
        'async_cache/user:1/d41d8cd9'
    """
    return f"{KEY_NAMESPACE}/{key}/{fingerprint}"


def expand_cache_key(base_key: str, arguments: Sequence[Any] = ()) -> str:
    """Extend a base key with the arguments the generator will be called with."""
    if not arguments:
        return base_key
    return f"{base_key}/{digest(canonical_arguments(arguments))}"
