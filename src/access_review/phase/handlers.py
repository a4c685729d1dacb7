"""Per-phase behavior for campaigns and items."""

from __future__ import annotations

from dataclasses import dataclass

from access_review.audit.db import Auditor
from access_review.audit.models import AUDIT_CHALLENGE_EXPIRED, AUDIT_CHALLENGE_GENERATED
from access_review.collaborators.notification import (
    TEMPLATE_CHALLENGE_DECISION_EXPIRED,
    TEMPLATE_CHALLENGE_EXPIRED,
    TEMPLATE_CHALLENGE_GENERATED,
    Notifier,
)
from access_review.collaborators.store import Store
from access_review.config import Settings
from access_review.decision.guards import items_on_same_account
from access_review.domain.factories import item_factory_for
from access_review.domain.models import (
    ActionStatus,
    Campaign,
    Challenge,
    Entity,
    Item,
    Phase,
    WorkItem,
    WorkItemState,
    WorkItemType,
    new_id,
)
from access_review.domain.owners import NoOwnerFound
from access_review.logging_utils import get_logger
from access_review.policy.models import ReviewPolicy
from access_review.remediation.manager import RemediationManager
from access_review.utils.chunking import chunked
from access_review.utils.time import days_from, utc_now

logger = get_logger(__name__)


@dataclass
class PhaseContext:
    store: Store
    remediation: RemediationManager
    notifier: Notifier
    auditor: Auditor
    policy: ReviewPolicy
    settings: Settings


class PhaseHandler:
    """Hooks run when a campaign or an item enters or leaves ``phase``.

    Campaign-level hooks of rolling campaigns leave items alone; items of those
    campaigns move through ``enter_item`` / ``exit_item`` one at a time.
    """

    phase: Phase

    def __init__(self, context: PhaseContext) -> None:
        self.context = context

    def enter_phase(self, campaign: Campaign) -> None:
        pass

    def exit_phase(self, campaign: Campaign) -> None:
        pass

    def post_enter(self, campaign: Campaign) -> None:
        pass

    def post_exit(self, campaign: Campaign) -> None:
        pass

    def enter_item(self, campaign: Campaign, entity: Entity, item: Item) -> None:
        pass

    def exit_item(self, campaign: Campaign, entity: Entity, item: Item) -> None:
        pass

    def is_skipped(self, campaign: Campaign) -> bool:
        return False

    def item_ready_to_advance(self, campaign: Campaign, item: Item) -> bool:
        return False

    def _each_item(self, campaign: Campaign, batch_size: int):
        """Yield (entity, item) pairs, committing after each batch of entities."""
        store = self.context.store
        for entity_chunk in chunked(list(campaign.entity_ids), batch_size):
            for entity_id in entity_chunk:
                entity = store.load(Entity, entity_id)
                if entity is None:
                    continue
                for item_chunk in chunked(entity.item_ids, batch_size):
                    for item_id in store.find(Item, within=item_chunk):
                        item = store.load(Item, item_id)
                        if item is not None:
                            yield entity, item
            store.save(campaign)
            store.commit()


class ActiveHandler(PhaseHandler):
    phase = Phase.ACTIVE

    def item_ready_to_advance(self, campaign: Campaign, item: Item) -> bool:
        return item.is_decision_final()


class ChallengeHandler(PhaseHandler):
    phase = Phase.CHALLENGE

    def is_skipped(self, campaign: Campaign) -> bool:
        return campaign.is_signed()

    def enter_phase(self, campaign: Campaign) -> None:
        if campaign.use_rolling_phases:
            return
        batch_size = self.context.settings.phases.challenge_batch_size
        for entity, item in self._each_item(campaign, batch_size):
            self.enter_item(campaign, entity, item)

    def exit_phase(self, campaign: Campaign) -> None:
        if campaign.use_rolling_phases:
            return
        batch_size = self.context.settings.phases.challenge_batch_size
        for entity, item in self._each_item(campaign, batch_size):
            self.exit_item(campaign, entity, item)

    def enter_item(self, campaign: Campaign, entity: Entity, item: Item) -> None:
        if not item.has_status(ActionStatus.REMEDIATED) or item.challenge is not None:
            return
        if item.is_delegated_or_waiting_review():
            return
        if self._challenge_exists_on_account(entity, item):
            return

        context = self.context
        resolution = item_factory_for(campaign.type).challenger_for(
            entity, item, context.store.directory
        )
        if isinstance(resolution, NoOwnerFound):
            logger.warning("Skipping challenge for item %s: %s", item.id, resolution.reason)
            return

        owner = resolution.name
        work_item = WorkItem(
            id=new_id(),
            type=WorkItemType.CHALLENGE,
            owner=owner,
            requester=item.action.actor,
            description=context.policy.challenge.work_item_description.format(
                target=item.target_name or item.id, campaign=campaign.name
            ),
            campaign_id=campaign.id,
            entity_id=entity.id,
            item_id=item.id,
            expiration=days_from(utc_now(), campaign.phase_duration(Phase.CHALLENGE)),
        )
        item.challenge = Challenge(owner_name=owner, work_item=work_item.id)
        context.store.save(work_item)
        context.store.save(item)
        context.auditor.record(
            item.action.actor, AUDIT_CHALLENGE_GENERATED, item.id, campaign=campaign.id, owner=owner
        )
        context.notifier.send_batch(
            TEMPLATE_CHALLENGE_GENERATED,
            [owner],
            {"campaign": campaign.name, "item": item.id, "workItem": work_item.id},
        )

    def exit_item(self, campaign: Campaign, entity: Entity, item: Item) -> None:
        challenge = item.challenge
        if challenge is None:
            return
        context = self.context

        if not challenge.challenger_acted():
            challenge.expire()
            context.auditor.record(
                None,
                AUDIT_CHALLENGE_EXPIRED,
                item.id,
                campaign=campaign.id,
                owner=challenge.owner_name,
            )
            context.notifier.send_batch(
                TEMPLATE_CHALLENGE_EXPIRED, [challenge.owner_name], {"item": item.id}
            )
        elif challenge.is_challenged() and challenge.decision is None:
            challenge.expire_decision()
            recipients = [name for name in (item.certifier or entity.certifier,) if name]
            context.notifier.send_batch(
                TEMPLATE_CHALLENGE_DECISION_EXPIRED, recipients, {"item": item.id}
            )

        if challenge.work_item is not None:
            work_item = context.store.load(WorkItem, challenge.work_item)
            if work_item is not None:
                context.store.delete(work_item)
            challenge.work_item = None
        context.store.save(item)

    def item_ready_to_advance(self, campaign: Campaign, item: Item) -> bool:
        return not item.is_challenge_active()

    def _challenge_exists_on_account(self, entity: Entity, item: Item) -> bool:
        if not item.action.revoke_account:
            return False
        others = items_on_same_account(
            self.context.store, entity, item, self.context.settings.decisions.max_in_query_size
        )
        return any(other.challenge is not None for other in others)


class RemediationHandler(PhaseHandler):
    phase = Phase.REMEDIATION

    def enter_phase(self, campaign: Campaign) -> None:
        if campaign.use_rolling_phases:
            return
        manager = self.context.remediation
        batch_size = self.context.settings.remediation.batch_size
        for _entity, item in self._each_item(campaign, batch_size):
            if manager.mark_for_remediation(item):
                self.context.store.save(item)

    def post_enter(self, campaign: Campaign) -> None:
        self.context.remediation.flush(campaign)

    def enter_item(self, campaign: Campaign, entity: Entity, item: Item) -> None:
        if self.context.remediation.mark_for_remediation(item):
            self.context.store.save(item)

    def item_ready_to_advance(self, campaign: Campaign, item: Item) -> bool:
        action = item.action
        if action is None or not action.needs_remediation():
            return True
        return action.remediation_completed


class ClosedHandler(PhaseHandler):
    phase = Phase.CLOSED

    def enter_phase(self, campaign: Campaign) -> None:
        store = self.context.store
        open_ids = store.find(
            WorkItem,
            lambda work_item: work_item.campaign_id == campaign.id
            and work_item.type == WorkItemType.DELEGATION
            and work_item.is_open(),
        )
        for work_item_id in open_ids:
            work_item = store.load(WorkItem, work_item_id)
            work_item.state = WorkItemState.CANCELED
            store.save(work_item)
        logger.info("Closed campaign %s; canceled %d delegations", campaign.id, len(open_ids))


def default_handlers(context: PhaseContext) -> dict[Phase, PhaseHandler]:
    return {
        handler.phase: handler
        for handler in (
            ActiveHandler(context),
            ChallengeHandler(context),
            RemediationHandler(context),
            ClosedHandler(context),
        )
    }
