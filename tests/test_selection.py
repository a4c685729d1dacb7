from __future__ import annotations

import pytest

from access_review.collaborators.store import InMemoryDatabase
from access_review.decision.selection import SelectionResolver
from access_review.domain.decisions import Decision, DecisionStatus, SelectionCriteria
from access_review.domain.models import Entity, Item, ItemType


@pytest.fixture
def resolver(database: InMemoryDatabase, seed_campaign) -> SelectionResolver:
    seed_campaign()
    database.put(Item(id="x-1", campaign_id="other", entity_id="e-x", type=ItemType.EXCEPTION))
    return SelectionResolver(database.session(), "c1", max_in_query_size=1000)


def test_explicit_ids_keep_request_order(resolver: SelectionResolver) -> None:
    decision = Decision.for_items("Approved", "i-hr", "missing", "x-1", "i-carol", "i-hr")
    assert resolver.resolve(decision) == ["i-hr", "i-carol"]


def test_select_all_applies_filter_and_exclusions(resolver: SelectionResolver) -> None:
    decision = Decision(
        status=DecisionStatus.APPROVED,
        selection=SelectionCriteria(
            select_all=True,
            filter=lambda item: item.type == ItemType.EXCEPTION,
            exclusions=["i-alice-ldap"],
        ),
    )
    assert resolver.resolve(decision) == ["i-carol", "i-hr", "i-ldap-groups"]


def test_groups_are_carved_out_of_select_all(resolver: SelectionResolver) -> None:
    decision = Decision(
        status=DecisionStatus.APPROVED,
        selection=SelectionCriteria(select_all=True),
        criteria_groups=[SelectionCriteria(selections=["i-hr", "i-role"])],
    )

    ids = resolver.resolve(decision)

    assert "i-hr" not in ids and "i-role" not in ids
    assert len(ids) == 4


def test_groups_extend_explicit_selection(resolver: SelectionResolver) -> None:
    decision = Decision(
        status=DecisionStatus.APPROVED,
        selection=SelectionCriteria(selections=["i-hr"]),
        criteria_groups=[
            SelectionCriteria(selections=["i-carol", "i-hr"]),
            SelectionCriteria(
                select_all=True, filter=lambda item: item.type == ItemType.BUNDLE
            ),
        ],
    )
    assert resolver.resolve(decision) == ["i-hr", "i-carol", "i-role"]
    assert decision.is_bulk()


def test_entity_decisions_resolve_entities(resolver: SelectionResolver) -> None:
    decision = Decision.for_entities("Approved", "e-carol", "e-bob")

    entity_ids = resolver.resolve(decision)

    assert entity_ids == ["e-carol", "e-bob"]
    assert resolver.items_of_entities(entity_ids) == [
        "i-ldap-groups",
        "i-ldap-acct",
        "i-hr",
        "i-role",
        "i-carol",
    ]


def test_large_selections_are_queried_in_chunks(
    database: InMemoryDatabase, seed_campaign
) -> None:
    seed_campaign()
    database.max_batch_size = 2
    resolver = SelectionResolver(database.session(), "c1", max_in_query_size=2)

    decision = Decision.for_items("Approved", "i-hr", "i-carol", "i-role", "i-ldap-acct")

    assert resolver.resolve(decision) == ["i-hr", "i-carol", "i-role", "i-ldap-acct"]
    entities = resolver.iter_objects(Entity, ["e-bob", "e-alice", "e-carol"])
    assert sorted(entity.id for entity in entities) == ["e-alice", "e-bob", "e-carol"]
