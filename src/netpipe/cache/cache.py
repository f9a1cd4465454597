"""Capacity-bounded, TTL-aware cache with JSON persistence.

:class:`TTLCache` keeps entries in an in-memory least-recently-used store
with a fixed capacity. Every entry carries an absolute expiration
timestamp computed at insert time from an injectable clock; expiry is
lazy, so stale entries are only reaped when looked up or pushed out by
capacity eviction.

A :class:`KeyTracker` mirrors the set of resident keys. The store reports
each capacity eviction through an explicit hook, which removes the key from
the tracker before the optional ``on_evict`` callback supplied by the
caller runs. The tracker is the index :meth:`TTLCache.persist` walks when
it writes the snapshot.

Snapshots are a JSON array of ``{"key", "value", "expires_at"}`` objects
at ``<cache_dir>/<name>.cache``. Keys and values are validated against the
cache's declared ``key_type``/``value_type`` with Pydantic, so tuples,
models, dates and the like round-trip exactly. Untyped keys get their JSON
arrays turned back into tuples, so hashable keys always restore.

See Also:
    :class:`~netpipe.models.CacheConfig` -- capacity, TTL and snapshot name.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Generic, Hashable, Iterator, Optional, TypeVar, Union

from pydantic import BaseModel, TypeAdapter, ValidationError

from netpipe.config import atomic_write, get_cache_dir
from netpipe.exceptions import CacheError
from netpipe.models import CacheConfig
from netpipe.output import get_output

K = TypeVar("K")
V = TypeVar("V")

EvictionHook = Callable[[Any, Any], None]
"""Called with ``(key, value)`` after the store evicted an entry for capacity."""

_SNAPSHOT_SUFFIX = ".cache"


class CacheEntry(BaseModel, Generic[K, V]):
    """One cached value and the absolute UNIX time at which it expires."""

    key: K
    value: V
    expires_at: float


class KeyTracker:
    """The set of keys believed resident in the store.

    Kept in sync by :meth:`evicted`, which the store calls for every
    capacity eviction. Always a superset of (or equal to) the keys
    actually stored.
    """

    def __init__(self) -> None:
        self.keys: set[Hashable] = set()

    def add(self, key: Hashable) -> None:
        self.keys.add(key)

    def discard(self, key: Hashable) -> None:
        self.keys.discard(key)

    def evicted(self, entry: CacheEntry) -> None:
        self.keys.discard(entry.key)

    def __contains__(self, key: object) -> bool:
        return key in self.keys

    def __len__(self) -> int:
        return len(self.keys)


class _BoundedStore:
    """Least-recently-used mapping that reports capacity evictions to a hook."""

    def __init__(self, capacity: int, on_evict: Callable[[CacheEntry], None]) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._on_evict = on_evict
        self._entries: OrderedDict[Hashable, CacheEntry] = OrderedDict()

    def put(self, key: Hashable, entry: CacheEntry) -> None:
        self._entries[key] = entry
        self._entries.move_to_end(key)
        while len(self._entries) > self._capacity:
            _, evicted = self._entries.popitem(last=False)
            self._on_evict(evicted)

    def get(self, key: Hashable) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is not None:
            self._entries.move_to_end(key)
        return entry

    def peek(self, key: Hashable) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def pop(self, key: Hashable) -> Optional[CacheEntry]:
        return self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __iter__(self) -> Iterator[Hashable]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)


class TTLCache(Generic[K, V]):
    """Bounded key/value cache with lazy expiry and disk snapshots.

    All operations serialise on a single re-entrant lock, so the store and
    the key tracker are always updated together.

    Args:
        name: Snapshot file stem used by :meth:`persist` / :meth:`restore`.
        capacity: Maximum number of resident entries.
        ttl: Entry lifetime, in seconds or as a :class:`~datetime.timedelta`.
        clock: Returns the current UNIX time; injectable for tests.
        on_evict: Called with ``(key, value)`` for each capacity eviction,
            outside the cache lock.
        key_type: Type keys are validated against when restored. When left
            as ``Any``, JSON arrays in restored keys become tuples again.
        value_type: Type values are validated against when restored. Leave
            it as ``Any`` only for JSON-native values: tuples, models and
            dates restore exactly only when declared here.
        directory: Where snapshots live. Defaults to
            :func:`~netpipe.config.get_cache_dir`.

    Example::

        cache = TTLCache("users", capacity=100, ttl=300, value_type=User)
        cache.restore()
        cache.insert("42", user)
        cache.lookup("42")
        cache.persist()
    """

    def __init__(
        self,
        name: str = "temporary",
        capacity: int = 50,
        ttl: Union[float, timedelta] = 12 * 60 * 60,
        clock: Callable[[], float] = time.time,
        on_evict: Optional[EvictionHook] = None,
        key_type: Any = Any,
        value_type: Any = Any,
        directory: Optional[Path] = None,
    ) -> None:
        self._name = name
        self._capacity = capacity
        self._ttl = ttl.total_seconds() if isinstance(ttl, timedelta) else float(ttl)
        self._clock = clock
        self._on_evict = on_evict
        self._directory = Path(directory) if directory is not None else None
        self._lock = threading.RLock()
        self._tracker = KeyTracker()
        self._store = _BoundedStore(capacity, self._handle_eviction)
        self._pending_evictions: list[CacheEntry] = []
        self._key_type = key_type
        entry_type = CacheEntry[key_type, value_type]  # type: ignore[valid-type]
        self._entry_type = entry_type
        self._snapshot_adapter = TypeAdapter(list[entry_type])  # type: ignore[valid-type]

    @classmethod
    def from_config(cls, config: CacheConfig, **kwargs: Any) -> TTLCache:
        """Build a cache from the ``cache`` section of the global config."""
        return cls(
            name=config.name,
            capacity=config.capacity,
            ttl=config.ttl_seconds,
            **kwargs,
        )

    @property
    def name(self) -> str:
        return self._name

    @property
    def ttl(self) -> float:
        return self._ttl

    @property
    def capacity(self) -> int:
        return self._capacity

    # ------------------------------------------------------------------ #
    # Core operations
    # ------------------------------------------------------------------ #

    def insert(self, key: K, value: V) -> None:
        """Store *value* under *key*, replacing any previous entry.

        The entry expires ``ttl`` seconds from now. When the store is over
        capacity afterwards, its least recently used entry is evicted.
        """
        with self._lock:
            entry = self._entry_type(key=key, value=value, expires_at=self._clock() + self._ttl)
            self._put(entry)
        self._notify_evictions()

    def lookup(self, key: K) -> Optional[V]:
        """Return the live value for *key*, or ``None``.

        An entry whose expiry has been reached is removed and reported as a
        miss.
        """
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                self._store.pop(key)
                self._tracker.discard(key)
                return None
            return entry.value

    def remove(self, key: K) -> None:
        """Remove *key* from the store and the tracker. Missing keys are ignored."""
        with self._lock:
            self._store.pop(key)
            self._tracker.discard(key)

    def clear(self) -> None:
        """Remove every entry."""
        with self._lock:
            self._store.clear()
            self._tracker.keys.clear()

    def keys(self) -> list[K]:
        """Keys currently resident, least recently used first (expired ones included)."""
        with self._lock:
            return [key for key in self._store if key in self._tracker]

    def tracked_keys(self) -> frozenset:
        """A snapshot of the key tracker's contents."""
        with self._lock:
            return frozenset(self._tracker.keys)

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #

    def snapshot_path(self, name: Optional[str] = None) -> Path:
        """Location of the snapshot file for *name* (default: the cache's name)."""
        directory = self._directory or get_cache_dir()
        return directory / f"{name or self._name}{_SNAPSHOT_SUFFIX}"

    def persist(self, name: Optional[str] = None) -> Path:
        """Write every tracked, unexpired entry to the snapshot file.

        Entries that have expired but were never looked up are left out:
        a snapshot only holds values a lookup at persist time would return.

        Returns:
            The path written.

        Raises:
            CacheError: If an entry cannot be serialised or the file cannot
                be written.
        """
        path = self.snapshot_path(name)
        with self._lock:
            now = self._clock()
            entries = []
            for key in self._store:
                entry = self._store.peek(key)
                if entry is not None and key in self._tracker and now < entry.expires_at:
                    entries.append(entry)
            try:
                payload = self._snapshot_adapter.dump_json(entries, indent=2).decode("utf-8")
            except (ValueError, TypeError) as exc:
                raise CacheError(f"Cannot serialise cache '{self._name}': {exc}") from exc

        try:
            atomic_write(path, payload + "\n")
        except OSError as exc:
            raise CacheError(f"Cannot write cache snapshot {path}: {exc}") from exc
        get_output().debug(f"Persisted {len(entries)} cache entries to {path}")
        return path

    def restore(self, name: Optional[str] = None) -> int:
        """Load the snapshot file, if any, into the cache.

        Entries keep the absolute expiry they were saved with; no TTL
        filtering happens here, so an old snapshot restores entries that
        miss on first lookup.

        Returns:
            Number of entries read from the snapshot (``0`` if there is
            none).

        Raises:
            CacheError: If the snapshot exists but cannot be parsed.
        """
        path = self.snapshot_path(name)
        if not path.is_file():
            return 0
        try:
            entries = self._snapshot_adapter.validate_json(path.read_bytes())
        except (OSError, ValidationError) as exc:
            raise CacheError(f"Invalid cache snapshot at {path}: {exc}") from exc

        if self._key_type is Any:
            entries = [entry.model_copy(update={"key": _as_hashable(entry.key)}) for entry in entries]

        try:
            with self._lock:
                for entry in entries:
                    self._put(entry)
        except TypeError as exc:
            raise CacheError(f"Invalid cache snapshot at {path}: {exc}") from exc
        finally:
            self._notify_evictions()
        get_output().debug(f"Restored {len(entries)} cache entries from {path}")
        return len(entries)

    def stats(self) -> dict[str, Any]:
        """Return cache statistics."""
        with self._lock:
            return {
                "name": self._name,
                "size": len(self._store),
                "tracked": len(self._tracker),
                "capacity": self._capacity,
                "ttl_seconds": self._ttl,
                "path": str(self.snapshot_path()),
            }

    # ------------------------------------------------------------------ #
    # Mapping sugar
    # ------------------------------------------------------------------ #

    def __getitem__(self, key: K) -> V:
        value = self.lookup(key)
        if value is None:
            raise KeyError(key)
        return value

    def __setitem__(self, key: K, value: Optional[V]) -> None:
        # Assigning None removes the key.
        if value is None:
            self.remove(key)
        else:
            self.insert(key, value)

    def __delitem__(self, key: K) -> None:
        self.remove(key)

    def __contains__(self, key: object) -> bool:
        return self.lookup(key) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _put(self, entry: CacheEntry) -> None:
        self._store.put(entry.key, entry)
        self._tracker.add(entry.key)

    def _handle_eviction(self, entry: CacheEntry) -> None:
        # Runs under the lock, from inside _BoundedStore.put.
        self._tracker.evicted(entry)
        self._pending_evictions.append(entry)

    def _notify_evictions(self) -> None:
        with self._lock:
            evicted, self._pending_evictions = self._pending_evictions, []
        for entry in evicted:
            get_output().debug(f"Cache '{self._name}' evicted {entry.key!r}")
            if self._on_evict is not None:
                self._on_evict(entry.key, entry.value)


def _as_hashable(key: Any) -> Any:
    """Turn JSON arrays back into tuples, recursively."""
    if isinstance(key, list):
        return tuple(_as_hashable(item) for item in key)
    return key
