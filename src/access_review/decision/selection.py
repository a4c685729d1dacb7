"""Turns decision selections into concrete item and entity ids."""

from __future__ import annotations

from typing import Iterator

from access_review.collaborators.store import Store
from access_review.domain.decisions import Decision, SelectionCriteria
from access_review.domain.models import Entity, Item
from access_review.utils.chunking import chunked, unique


class SelectionResolver:
    """Resolves selections against one campaign.

    Id lists handed to the store never exceed ``max_in_query_size``.
    """

    def __init__(self, store: Store, campaign_id: str, max_in_query_size: int) -> None:
        self._store = store
        self._campaign_id = campaign_id
        self._max_in_query_size = max_in_query_size

    def resolve(self, decision: Decision) -> list[str]:
        kind: type = Entity if decision.entity_decision else Item
        ids = self.resolve_criteria(decision.selection, kind)
        if not decision.criteria_groups:
            return ids

        grouped: list[str] = []
        for group in decision.criteria_groups:
            grouped.extend(self.resolve_criteria(group, kind))

        if decision.selection.select_all:
            # Groups carve pieces out of an everything-selection.
            excluded = set(grouped)
            return [object_id for object_id in ids if object_id not in excluded]
        return unique([*ids, *grouped])

    def resolve_criteria(self, criteria: SelectionCriteria, kind: type) -> list[str]:
        if not criteria.select_all:
            return self._existing(kind, unique(criteria.selections))

        predicate = criteria.filter
        excluded = set(criteria.exclusions)
        matches = self._store.find(
            kind,
            lambda obj: obj.campaign_id == self._campaign_id
            and (predicate is None or predicate(obj)),
        )
        return [object_id for object_id in matches if object_id not in excluded]

    def items_of_entities(self, entity_ids: list[str]) -> list[str]:
        item_ids: list[str] = []
        for entity in self.iter_objects(Entity, entity_ids):
            item_ids.extend(entity.item_ids)
        return unique(item_ids)

    def iter_objects(self, kind: type, ids: list[str]) -> Iterator:
        for chunk in chunked(ids, self._max_in_query_size):
            for object_id in self._store.find(kind, within=chunk):
                obj = self._store.load(kind, object_id)
                if obj is not None:
                    yield obj

    def _existing(self, kind: type, ids: list[str]) -> list[str]:
        """Keep the ids that belong to this campaign, in request order."""
        found: set[str] = set()
        for chunk in chunked(ids, self._max_in_query_size):
            found.update(
                self._store.find(
                    kind, lambda obj: obj.campaign_id == self._campaign_id, within=chunk
                )
            )
        return [object_id for object_id in ids if object_id in found]
