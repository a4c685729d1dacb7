"""Campaign completion statistics."""

from __future__ import annotations

from access_review.collaborators.store import Store
from access_review.domain.models import Campaign, CampaignStatistics, Entity, Item
from access_review.utils.chunking import chunked


def compute_statistics(store: Store, campaign: Campaign, batch_size: int) -> CampaignStatistics:
    stats = CampaignStatistics()
    for entity_chunk in chunked(campaign.entity_ids, batch_size):
        for entity_id in store.find(Entity, within=entity_chunk):
            entity = store.load(Entity, entity_id)
            if entity is None:
                continue
            stats.total_entities += 1
            if entity.is_delegated():
                stats.active_delegations += 1

            entity_complete = True
            for item_chunk in chunked(entity.item_ids, batch_size):
                for item_id in store.find(Item, within=item_chunk):
                    item = store.load(Item, item_id)
                    if item is None:
                        continue
                    stats.total_items += 1
                    if item.is_delegated():
                        stats.active_delegations += 1
                    if item.is_waiting_review():
                        stats.items_waiting_review += 1
                    if item.is_decision_final() and not entity.is_delegated():
                        stats.completed_items += 1
                    else:
                        entity_complete = False
                    if item.action is not None and item.action.remediation_kicked_off:
                        stats.remediations_kicked_off += 1
                        if item.action.remediation_completed:
                            stats.remediations_completed += 1
            if entity_complete:
                stats.completed_entities += 1
    return stats


def refresh_statistics(store: Store, campaign: Campaign, batch_size: int) -> CampaignStatistics:
    campaign.statistics = compute_statistics(store, campaign, batch_size)
    store.save(campaign)
    return campaign.statistics


def is_ready_for_signoff(campaign: Campaign) -> bool:
    stats = campaign.statistics
    return (
        not campaign.is_signed()
        and stats.completed_items == stats.total_items
        and stats.active_delegations == 0
        and stats.items_waiting_review == 0
    )
