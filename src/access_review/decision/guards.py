"""Checks shared by every path that changes an item's decision."""

from __future__ import annotations

from access_review.collaborators.store import Store
from access_review.domain.models import (
    ActionStatus,
    Campaign,
    Entity,
    Item,
    Phase,
)
from access_review.utils.chunking import chunked

MSG_LOCKED_BY_PHASE = "The decision can no longer be changed in the current phase."
MSG_LOCKED_BY_REVOKES = "The decision can no longer be changed because remediation has started."
MSG_DELEGATED_ENTITY = "The item belongs to a delegated entity and cannot be decided here."
MSG_DELEGATE_CANT_CHANGE = "A delegate cannot change a decision made outside the delegation."
MSG_DELEGATED_ITEM = "The item is delegated and cannot be decided until the delegation is revoked."
MSG_NOT_DELEGATED = "The item is no longer delegated to this work item."


def is_locked_by_phase(campaign: Campaign, item: Item) -> bool:
    """Existing decisions freeze once the challenge phase starts for a revoke, or once it ends."""
    if not (campaign.is_challenge_enabled() or campaign.is_remediation_enabled()):
        return False
    if not item.is_acted_upon():
        return False
    phase = item.phase or campaign.phase
    if phase.is_after(Phase.CHALLENGE):
        return True
    return phase == Phase.CHALLENGE and item.has_status(ActionStatus.REMEDIATED)


def is_locked_by_revokes(campaign: Campaign, item: Item) -> bool:
    action = item.action
    if action is not None and action.remediation_kicked_off:
        return True
    if not campaign.process_revokes_immediately or not item.is_acted_upon():
        return False
    if item.is_waiting_review():
        return False
    if action.status == ActionStatus.REMEDIATED:
        return True
    return action.status == ActionStatus.APPROVED and action.additional_actions is not None


def is_read_only(campaign: Campaign, item: Item) -> bool:
    return is_locked_by_phase(campaign, item) or is_locked_by_revokes(campaign, item)


def lock_error(campaign: Campaign, item: Item, new_status: ActionStatus | None) -> str | None:
    """Return why ``item`` may not move to ``new_status``, if it may not.

    Re-applying the current status is always allowed.
    """
    current = item.action.status if item.is_acted_upon() else None
    if current == new_status:
        return None
    if is_locked_by_phase(campaign, item):
        return MSG_LOCKED_BY_PHASE
    if is_locked_by_revokes(campaign, item):
        return MSG_LOCKED_BY_REVOKES
    return None


def delegation_error(
    entity: Entity,
    item: Item,
    decider: str,
    work_item_id: str | None,
    new_status: ActionStatus | None,
) -> str | None:
    entity_delegation = entity.delegation if entity.is_delegated() else None
    action = item.action if item.is_acted_upon() else None

    if entity_delegation is not None and work_item_id is None:
        if action is None or action.acting_work_item == entity_delegation.work_item:
            return MSG_DELEGATED_ENTITY

    if (
        entity_delegation is not None
        and work_item_id is not None
        and action is not None
        and action.acting_work_item != entity_delegation.work_item
    ):
        return MSG_DELEGATE_CANT_CHANGE

    if item.is_delegated() and work_item_id is None and new_status is not None:
        return MSG_DELEGATED_ITEM

    if not item.is_delegated() and entity_delegation is None and work_item_id is not None:
        return MSG_NOT_DELEGATED

    if (
        item.is_delegated()
        and work_item_id is not None
        and work_item_id != item.delegation.work_item
        and decider != item.delegation.actor
    ):
        return MSG_DELEGATED_ITEM
    return None


def check_decision_errors(
    campaign: Campaign,
    entity: Entity,
    item: Item,
    decider: str,
    work_item_id: str | None,
    new_status: ActionStatus | None,
) -> str | None:
    return lock_error(campaign, item, new_status) or delegation_error(
        entity, item, decider, work_item_id, new_status
    )


def on_same_account(first: Item, second: Item) -> bool:
    """Two distinct items of one entity that certify the same account."""
    if first.id == second.id or first.entity_id != second.entity_id:
        return False
    key = first.account_key()
    return key is not None and key == second.account_key()


def items_on_same_account(store: Store, entity: Entity, item: Item, batch_size: int) -> list[Item]:
    if item.account_key() is None:
        return []
    others: list[Item] = []
    for chunk in chunked(entity.item_ids, batch_size):
        for other_id in store.find(Item, lambda other: on_same_account(item, other), within=chunk):
            other = store.load(Item, other_id)
            if other is not None:
                others.append(other)
    return others
