"""Detects deciders and recipients who would review their own access."""

from __future__ import annotations

from typing import Iterable

from access_review.collaborators.store import Store
from access_review.domain.models import Entity, Item
from access_review.policy.models import SelfCertificationPolicy, SelfCertificationRelation
from access_review.utils.chunking import chunked


class SelfCertificationChecker:
    def __init__(
        self, store: Store, policy: SelfCertificationPolicy, max_in_query_size: int
    ) -> None:
        self._store = store
        self._policy = policy
        self._max_in_query_size = max_in_query_size

    def allowed_for(self, actor: str) -> bool:
        return self._policy.allows(actor)

    def owners_of(self, subject: str | None) -> set[str]:
        """Names that count as owning ``subject``'s access."""
        if subject is None:
            return set()
        owners: set[str] = set()
        if SelfCertificationRelation.IDENTITY in self._policy.relations:
            owners.add(subject)
        if SelfCertificationRelation.WORKGROUP in self._policy.relations:
            identity = self._store.directory.get_identity(subject)
            if identity is not None:
                owners.update(identity.workgroups)
        return owners

    def is_self_certification(self, actor: str, subjects: Iterable[str | None]) -> bool:
        if self.allowed_for(actor):
            return False
        return any(actor in self.owners_of(subject) for subject in subjects)

    def self_certified_items(self, actor: str, item_ids: list[str]) -> list[str]:
        if self.allowed_for(actor):
            return []
        return self._matching(Item, item_ids, lambda item: actor in self.owners_of(item.identity))

    def self_certified_entities(self, actor: str, entity_ids: list[str]) -> list[str]:
        if self.allowed_for(actor):
            return []
        return self._matching(
            Entity, entity_ids, lambda entity: actor in self.owners_of(entity.identity)
        )

    def _matching(self, kind: type, ids: list[str], predicate) -> list[str]:
        matches: list[str] = []
        for chunk in chunked(ids, self._max_in_query_size):
            matches.extend(self._store.find(kind, predicate, within=chunk))
        return matches
