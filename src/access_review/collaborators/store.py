"""Persistence collaborator and its in-process implementation."""

from __future__ import annotations

import copy
import threading
from collections import defaultdict
from typing import Any, Callable, Iterable, Protocol, TypeVar

from access_review.domain.directory import Directory
from access_review.errors import StoreError

T = TypeVar("T")


class Store(Protocol):
    """Query and unit-of-work interface used by every component.

    Objects handed out by ``load`` belong to the caller's working set until
    ``release_working_set``. Changes become visible to other sessions only after
    ``save`` followed by ``commit``.
    """

    @property
    def directory(self) -> Directory: ...

    def find(
        self,
        kind: type[T],
        predicate: Callable[[T], bool] | None = None,
        *,
        within: Iterable[str] | None = None,
    ) -> list[str]: ...

    def load(self, kind: type[T], object_id: str) -> T | None: ...

    def save(self, obj: Any) -> None: ...

    def delete(self, obj: Any) -> None: ...

    def commit(self) -> None: ...

    def release_working_set(self) -> None: ...


class InMemoryDatabase:
    """Committed state shared by every session."""

    def __init__(self, directory: Directory | None = None, max_batch_size: int = 1000) -> None:
        self.directory = directory or Directory()
        self.max_batch_size = max_batch_size
        self.commit_count = 0
        self._lock = threading.RLock()
        self._tables: dict[type, dict[str, Any]] = defaultdict(dict)

    def session(self) -> InMemoryStore:
        return InMemoryStore(self)

    def put(self, *objects: Any) -> None:
        """Write objects straight to committed state."""
        with self._lock:
            for obj in objects:
                self._tables[type(obj)][obj.id] = copy.deepcopy(obj)

    def get(self, kind: type[T], object_id: str) -> T | None:
        with self._lock:
            obj = self._tables[kind].get(object_id)
            return copy.deepcopy(obj) if obj is not None else None

    def all(self, kind: type[T]) -> list[T]:
        with self._lock:
            table = self._tables[kind]
            return [copy.deepcopy(table[key]) for key in sorted(table)]

    def _ids(self, kind: type) -> list[str]:
        with self._lock:
            return sorted(self._tables[kind])

    def _snapshot(self, kind: type[T], object_id: str) -> T | None:
        return self.get(kind, object_id)

    def _publish(self, dirty: dict[tuple[type, str], Any], deleted: set[tuple[type, str]]) -> None:
        with self._lock:
            for (kind, object_id), obj in dirty.items():
                self._tables[kind][object_id] = copy.deepcopy(obj)
            for kind, object_id in deleted:
                self._tables[kind].pop(object_id, None)
            self.commit_count += 1


class InMemoryStore:
    """One caller's session over an ``InMemoryDatabase``."""

    def __init__(self, database: InMemoryDatabase) -> None:
        self._database = database
        self._working_set: dict[tuple[type, str], Any] = {}
        self._dirty: dict[tuple[type, str], Any] = {}
        self._deleted: set[tuple[type, str]] = set()

    @property
    def directory(self) -> Directory:
        return self._database.directory

    @property
    def working_set_size(self) -> int:
        return len(self._working_set)

    def find(
        self,
        kind: type[T],
        predicate: Callable[[T], bool] | None = None,
        *,
        within: Iterable[str] | None = None,
    ) -> list[str]:
        if within is not None:
            candidates = list(dict.fromkeys(within))
            if len(candidates) > self._database.max_batch_size:
                raise StoreError(
                    f"Query over {len(candidates)} ids exceeds the batch limit of "
                    f"{self._database.max_batch_size}"
                )
        else:
            candidates = self._database._ids(kind)
            candidates.extend(
                object_id
                for (dirty_kind, object_id) in self._dirty
                if dirty_kind is kind and object_id not in candidates
            )

        matches: list[str] = []
        for object_id in sorted(candidates):
            obj = self._view(kind, object_id)
            if obj is None:
                continue
            if predicate is None or predicate(obj):
                matches.append(object_id)
        return matches

    def load(self, kind: type[T], object_id: str) -> T | None:
        key = (kind, object_id)
        if key in self._deleted:
            return None
        if key in self._working_set:
            return self._working_set[key]
        obj = self._database._snapshot(kind, object_id)
        if obj is not None:
            self._working_set[key] = obj
        return obj

    def save(self, obj: Any) -> None:
        key = (type(obj), obj.id)
        self._deleted.discard(key)
        self._working_set[key] = obj
        self._dirty[key] = obj

    def delete(self, obj: Any) -> None:
        key = (type(obj), obj.id)
        self._working_set.pop(key, None)
        self._dirty.pop(key, None)
        self._deleted.add(key)

    def commit(self) -> None:
        if not self._dirty and not self._deleted:
            return
        self._database._publish(self._dirty, self._deleted)
        self._dirty = {}
        self._deleted = set()

    def release_working_set(self) -> None:
        """Drop cached objects. Uncommitted changes are discarded."""
        self._working_set = {}
        self._dirty = {}
        self._deleted = set()

    def _view(self, kind: type[T], object_id: str) -> T | None:
        key = (kind, object_id)
        if key in self._deleted:
            return None
        if key in self._working_set:
            return self._working_set[key]
        return self._database._snapshot(kind, object_id)
