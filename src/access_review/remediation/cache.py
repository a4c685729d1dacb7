"""Lookups memoized for the duration of one remediation pass."""

from __future__ import annotations

from dataclasses import dataclass, field

from access_review.collaborators.store import Store
from access_review.domain.directory import Identity
from access_review.domain.models import Entity, Item
from access_review.utils.chunking import chunked


@dataclass
class _SubjectEntry:
    identity: Identity | None = None
    identity_loaded: bool = False
    entity_items: dict[str, list[Item]] = field(default_factory=dict)


class SubjectCache:
    """Per-subject memo owned by the caller.

    Entries live until ``invalidate(subject)`` is called for their subject;
    nothing is evicted implicitly.
    """

    def __init__(self, store: Store, batch_size: int = 1000) -> None:
        self._store = store
        self._batch_size = batch_size
        self._entries: dict[str, _SubjectEntry] = {}

    def _entry(self, subject: str) -> _SubjectEntry:
        entry = self._entries.get(subject)
        if entry is None:
            entry = self._entries[subject] = _SubjectEntry()
        return entry

    def identity(self, subject: str | None) -> Identity | None:
        if subject is None:
            return None
        entry = self._entry(subject)
        if not entry.identity_loaded:
            entry.identity = self._store.directory.get_identity(subject)
            entry.identity_loaded = True
        return entry.identity

    def entity_items(self, subject: str, entity_id: str) -> list[Item]:
        entry = self._entry(subject)
        items = entry.entity_items.get(entity_id)
        if items is None:
            entity = self._store.load(Entity, entity_id)
            items = []
            if entity is not None:
                for chunk in chunked(entity.item_ids, self._batch_size):
                    for item_id in self._store.find(Item, within=chunk):
                        item = self._store.load(Item, item_id)
                        if item is not None:
                            items.append(item)
            entry.entity_items[entity_id] = items
        return items

    def invalidate(self, subject: str) -> None:
        self._entries.pop(subject, None)

    def __contains__(self, subject: str) -> bool:
        return subject in self._entries
