"""In-memory registry of shared ancillary resources.

Maps a resource key (``RegionTag`` for key pairs, ``PortsRegionTag`` for
security groups) to what the provider handed back when the resource was
created. ``get_or_create`` is atomic per key: concurrent callers on one key
share a single creation, callers on other keys never wait on it.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Hashable, Iterator

from loguru import logger

log = logger.bind(component="registry")


class ResourceRegistry[K: Hashable, V]:
    """Key-scoped, single-writer-per-key get-or-create map."""

    def __init__(self, name: str = "resources") -> None:
        self.name = name
        self._values: dict[K, V] = {}
        self._key_locks: dict[K, threading.Lock] = {}
        # Guards both dicts; never held while a factory runs. One key lock per
        # key for the registry lifetime, surviving remove().
        self._lock = threading.Lock()

    def _key_lock(self, key: K) -> threading.Lock:
        with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

    def get_or_create(self, key: K, factory: Callable[[K], V]) -> V:
        """Return the value for ``key``, creating it with ``factory`` at most once.

        If ``factory`` raises, nothing is stored and the error propagates; the
        next caller retries the creation.
        """
        with self._lock:
            if key in self._values:
                return self._values[key]

        with self._key_lock(key):
            with self._lock:
                if key in self._values:
                    return self._values[key]

            log.debug(">> creating {registry} entry {key}", registry=self.name, key=key)
            value = factory(key)

            with self._lock:
                self._values[key] = value
            log.debug("<< created {registry} entry {key}", registry=self.name, key=key)
            return value

    def get(self, key: K) -> V | None:
        with self._lock:
            return self._values.get(key)

    def remove(self, key: K) -> V | None:
        """Drop the mapping for ``key``. No-op when absent."""
        with self._lock:
            return self._values.pop(key, None)

    def remove_matching(self, predicate: Callable[[K], bool]) -> list[K]:
        """Drop every mapping whose key satisfies ``predicate``."""
        with self._lock:
            removed = [k for k in self._values if predicate(k)]
            for key in removed:
                del self._values[key]
        if removed:
            log.debug("removed {n} {registry} entries", n=len(removed), registry=self.name)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._values.clear()

    def keys(self) -> list[K]:
        with self._lock:
            return list(self._values)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._values

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)

    def __iter__(self) -> Iterator[K]:
        return iter(self.keys())

    def __repr__(self) -> str:
        return f"ResourceRegistry(name={self.name!r}, size={len(self)})"
