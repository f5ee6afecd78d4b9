"""
Job descriptors: the unit shipped to a background worker.

A descriptor carries everything a worker needs to recompute a cache entry
without access to the requesting process: the full cache key, the version to
stamp, the TTL, the generator representation and its arguments. On the wire it
is a JSON object with the fields key, version, expires_in, block, arguments.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from .generators import (
    ReproducibleGenerator,
    ensure_replayable,
    ensure_serializable_arguments,
)
from .storage import CacheBackend, CacheEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobDescriptor:
    """One regeneration request, consumed once by a worker."""

    key: str
    version: Any
    expires_in: int
    block: str  # ReproducibleGenerator representation
    arguments: list[Any] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> JobDescriptor:
        return cls(
            key=payload["key"],
            version=payload["version"],
            expires_in=payload.get("expires_in") or 0,
            block=payload["block"],
            arguments=list(payload.get("arguments") or []),
        )

    def dumps(self) -> str:
        return json.dumps(self.to_payload())

    @classmethod
    def loads(cls, raw: str | bytes) -> JobDescriptor:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return cls.from_payload(json.loads(raw))

    @classmethod
    def build(
        cls,
        key: str,
        version: Any,
        expires_in: int,
        generator: ReproducibleGenerator,
        arguments: list[Any],
    ) -> JobDescriptor:
        """Create a descriptor, raising GeneratorRepresentationError if it could not be replayed."""
        return cls(
            key=key,
            version=ensure_replayable(version, "version"),
            expires_in=expires_in,
            block=generator.to_representation(),
            arguments=ensure_serializable_arguments(arguments),
        )


def write_entry(
    backend: CacheBackend, key: str, value: Any, version: Any, expires_in: int
) -> None:
    """The single write path shared by synchronous generation and workers."""
    backend.write(key, CacheEntry(value=value, version=version), expires_in)


def perform_job(
    job: JobDescriptor | dict[str, Any] | str | bytes, backend: CacheBackend
) -> Any:
    """
    Execute a job: rebuild the generator, call it, write the result back.

    Accepts a descriptor, its payload dict, or its JSON text. Returns the
    freshly computed value. Errors propagate to the worker runtime.
    """
    if isinstance(job, (str, bytes)):
        job = JobDescriptor.loads(job)
    elif isinstance(job, dict):
        job = JobDescriptor.from_payload(job)

    generator = ReproducibleGenerator.from_representation(job.block)
    value = generator(*job.arguments)
    write_entry(backend, job.key, value, job.version, job.expires_in)
    logger.debug(f"Job complete: {job.key} @ {job.version}")
    return value
