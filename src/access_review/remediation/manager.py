"""Remediation of decided items.

``flush`` picks up every item marked ready for remediation, merges the plans of
items that share a subject, has the provisioning engine split the merged plan
into what it can do itself and what needs a person, and then either executes
the plan or routes it into a remediation work item.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from access_review.audit.db import Auditor
from access_review.audit.models import AUDIT_REMEDIATE
from access_review.collaborators.notification import (
    TEMPLATE_REMEDIATION_NOTIFICATION,
    Notifier,
)
from access_review.collaborators.provisioning import ItemizedPlan, ProvisioningEngine
from access_review.collaborators.store import Store
from access_review.config import Settings
from access_review.decision.guards import on_same_account
from access_review.domain.factories import item_factory_for
from access_review.domain.models import (
    Campaign,
    Entity,
    Item,
    ItemType,
    RemediationAction,
)
from access_review.domain.owners import NoOwnerFound, OwnerFound, OwnerResolution
from access_review.logging_utils import get_logger
from access_review.plan.calculator import RemediationPlanCalculator
from access_review.plan.models import Plan
from access_review.policy.models import ReviewPolicy
from access_review.remediation.buckets import Bucket, collect_buckets
from access_review.remediation.cache import SubjectCache
from access_review.remediation.dispatch import WorkItemDispatcher
from access_review.remediation.remediators import DefaultRemediatorResolver

logger = get_logger(__name__)

AUDIT_CLASSIFICATIONS = {
    RemediationAction.OPEN_WORK_ITEM: "Work Item",
    RemediationAction.SEND_PROVISION_REQUEST: "Provisioning Request",
    RemediationAction.OPEN_TICKET: "Trouble Ticket",
}


def calculate_remediation_action(
    automatable: Plan | None,
    unmanaged: Plan | None,
    *,
    force_work_item: bool = False,
) -> RemediationAction:
    if force_work_item:
        return RemediationAction.OPEN_WORK_ITEM
    has_automatable = automatable is not None and not automatable.is_empty()
    has_unmanaged = unmanaged is not None and not unmanaged.is_empty()
    if not has_automatable and not has_unmanaged:
        return RemediationAction.NO_ACTION_REQUIRED
    if not has_unmanaged:
        return RemediationAction.SEND_PROVISION_REQUEST
    return RemediationAction.OPEN_WORK_ITEM


def audit_classification(action: RemediationAction | None) -> str:
    return AUDIT_CLASSIFICATIONS.get(action, "Unknown")


@dataclass
class RemediationPreview:
    plan: Plan | None
    action: RemediationAction
    owner: OwnerResolution
    itemized: ItemizedPlan = field(default_factory=ItemizedPlan)


@dataclass
class _PendingAudit:
    actor: str | None
    item_id: str
    campaign_id: str
    action: RemediationAction | None
    owner_before: str | None
    owner_after: str | None
    work_item: str | None = None


class RemediationManager:
    def __init__(
        self,
        store: Store,
        calculator: RemediationPlanCalculator,
        provisioning: ProvisioningEngine,
        notifier: Notifier,
        auditor: Auditor,
        *,
        policy: ReviewPolicy,
        settings: Settings,
    ) -> None:
        self._store = store
        self._calculator = calculator
        self._provisioning = provisioning
        self._notifier = notifier
        self._auditor = auditor
        self._policy = policy
        self._settings = settings
        self._remediators = DefaultRemediatorResolver(
            store.directory,
            policy.remediation.default_remediator,
            settings.remediation.default_remediator,
        )

    # Readiness

    def mark_for_remediation(self, item: Item) -> bool:
        action = item.action
        if action is None or not action.needs_remediation() or action.remediation_kicked_off:
            return False
        item.ready_for_remediation = True
        return True

    def is_ready_for_remediation(self, item: Item, entity: Entity | None = None) -> bool:
        action = item.action
        if not item.ready_for_remediation or action is None:
            return False
        if not action.needs_remediation() or action.remediation_kicked_off:
            return False
        if item.is_delegated_or_waiting_review():
            return False
        if entity is not None and entity.is_delegated():
            return False
        return not item.is_challenge_active()

    # Preview

    def default_remediator(self, item: Item, plan: Plan | None) -> OwnerResolution:
        return self._remediators.resolve(item, plan)

    def calculate_remediation_details(
        self, campaign: Campaign, item: Item, siblings: list[Item] | None = None
    ) -> RemediationPreview:
        """Plan, classification and default owner for the item's current decision."""
        plan = self._calculator.calculate_plan(
            item, campaign=campaign, siblings=siblings or ()
        )
        force = plan is None and item.type == ItemType.POLICY_VIOLATION
        itemized = ItemizedPlan()
        if plan is not None:
            project = self._provisioning.compile(plan, item.identity)
            itemized = self._provisioning.itemize(project).get(item.id, ItemizedPlan())
        action = calculate_remediation_action(
            itemized.automatable, itemized.unmanaged, force_work_item=force
        )
        return RemediationPreview(
            plan=plan,
            action=action,
            owner=self.default_remediator(item, plan),
            itemized=itemized,
        )

    # Flush

    def flush(self, campaign: Campaign) -> None:
        ready_ids = self._store.find(
            Item,
            lambda item: item.campaign_id == campaign.id and item.ready_for_remediation,
        )
        if not ready_ids:
            logger.debug("Nothing ready for remediation in campaign %s", campaign.id)
            return

        batch_size = self._settings.remediation.batch_size
        factory = item_factory_for(campaign.type)
        buckets = collect_buckets(self._store, ready_ids, factory, batch_size)
        dispatcher = WorkItemDispatcher(
            self._store,
            self._notifier,
            batch_size=batch_size,
            notify=self._settings.remediation.notify_on_remediation,
            duration_days=self._policy.remediation.work_item_duration_days,
        )
        cache = SubjectCache(self._store, self._settings.decisions.max_in_query_size)
        audits: list[_PendingAudit] = []

        processed = 0
        for bucket in buckets:
            self._process_bucket(campaign, bucket, dispatcher, cache, audits)
            cache.invalidate(bucket.key)
            processed += len(bucket.item_ids)
            if processed >= batch_size:
                self._store.commit()
                self._store.release_working_set()
                processed = 0

        self._store.commit()
        for entry in audits:
            queued = dispatcher.work_item_for(entry.item_id)
            if queued is not None:
                entry.work_item = queued.id
        work_items = dispatcher.flush()
        self._store.release_working_set()

        self._notify_executed(audits)
        for entry in audits:
            self._auditor.record(
                entry.actor,
                AUDIT_REMEDIATE,
                entry.item_id,
                audit_classification(entry.action),
                campaign=entry.campaign_id,
                owner_before=entry.owner_before,
                owner_after=entry.owner_after,
                work_item=entry.work_item,
            )
        logger.info(
            "Remediation flush of campaign %s handled %d items in %d buckets, %d work items",
            campaign.id,
            len(audits),
            len(buckets),
            len(work_items),
        )

    def _process_bucket(
        self,
        campaign: Campaign,
        bucket: Bucket,
        dispatcher: WorkItemDispatcher,
        cache: SubjectCache,
        audits: list[_PendingAudit],
    ) -> None:
        eligible: list[Item] = []
        followers: list[tuple[Item, Item]] = []
        for item_id in bucket.item_ids:
            item = self._store.load(Item, item_id)
            if item is None:
                continue
            entity = self._store.load(Entity, item.entity_id)
            if not self.is_ready_for_remediation(item, entity):
                continue
            if item.identity is not None and cache.identity(item.identity) is None:
                self._complete_without_identity(campaign, item, audits)
                continue

            leader = self._account_revoke_leader(item, eligible, bucket.key, cache, dispatcher)
            if leader is not None:
                followers.append((leader, item))
            else:
                eligible.append(item)

        if not eligible and not followers:
            return

        plans: dict[str, Plan | None] = {}
        master = Plan(identity=bucket.identity)
        for item in eligible:
            siblings = cache.entity_items(bucket.key, item.entity_id)
            plan = self._plan_for(campaign, item, siblings)
            plans[item.id] = plan
            master.merge(plan)

        itemized: dict[str, ItemizedPlan] = {}
        if not master.is_empty():
            project = self._provisioning.compile(master, bucket.identity)
            itemized = self._provisioning.itemize(project)

        outcomes: list[tuple[Item, RemediationAction, ItemizedPlan]] = []
        to_execute = Plan(identity=bucket.identity)
        for item in eligible:
            parts = itemized.get(item.id, ItemizedPlan())
            force = plans[item.id] is None and item.type == ItemType.POLICY_VIOLATION
            kind = calculate_remediation_action(
                parts.automatable, parts.unmanaged, force_work_item=force
            )
            outcomes.append((item, kind, parts))
            if kind == RemediationAction.SEND_PROVISION_REQUEST:
                to_execute.merge(parts.automatable)

        if not to_execute.is_empty() and not self._execute(to_execute, bucket):
            outcomes = [
                (item, RemediationAction.OPEN_WORK_ITEM, parts)
                if kind == RemediationAction.SEND_PROVISION_REQUEST
                else (item, kind, parts)
                for item, kind, parts in outcomes
            ]

        for item, kind, parts in outcomes:
            self._record_outcome(campaign, item, kind, parts, dispatcher, audits)

        for leader, follower in followers:
            self._copy_outcome(leader, follower, dispatcher, campaign, audits)

    def _execute(self, plan: Plan, bucket: Bucket) -> bool:
        """Run the automatable plan; False routes the bucket's requests to work items."""
        try:
            self._provisioning.execute(self._provisioning.compile(plan, bucket.identity))
        except Exception as exc:
            logger.warning(
                "Provisioning failed for %s; opening work items instead: %s", bucket.key, exc
            )
            return False
        return True

    def _plan_for(self, campaign: Campaign, item: Item, siblings: list[Item]) -> Plan | None:
        details = item.action.remediation_details if item.action else None
        # Role and violation plans depend on the role model, so they are rebuilt.
        if details is not None and item.type not in (ItemType.BUNDLE, ItemType.POLICY_VIOLATION):
            plan = details.copy()
            plan.tracking_id = item.id
            plan.stamp(item.id)
            return plan
        return self._calculator.calculate_plan(item, campaign=campaign, siblings=siblings)

    def _account_revoke_leader(
        self,
        item: Item,
        eligible: list[Item],
        subject: str,
        cache: SubjectCache,
        dispatcher: WorkItemDispatcher,
    ) -> Item | None:
        """An item on the same account whose account revoke is already underway."""
        if item.action is None or not item.action.revoke_account:
            return None
        for other in eligible:
            if other.action.revoke_account and on_same_account(item, other):
                return other
        for other in cache.entity_items(subject, item.entity_id):
            if not on_same_account(item, other) or other.action is None:
                continue
            if other.action.revoke_account and (
                other.action.remediation_kicked_off or dispatcher.is_queued(other.id)
            ):
                return other
        return None

    def _copy_outcome(
        self,
        leader: Item,
        follower: Item,
        dispatcher: WorkItemDispatcher,
        campaign: Campaign,
        audits: list[_PendingAudit],
    ) -> None:
        source = leader.action
        target = follower.action
        if not source.remediation_kicked_off and not dispatcher.is_queued(leader.id):
            # The leader is still waiting for a remediator; retry both next time.
            return
        owner_before = target.owner_name
        target.remediation_action = source.remediation_action
        target.owner_name = source.owner_name
        if source.remediation_details is not None:
            target.remediation_details = source.remediation_details.copy()
        if dispatcher.is_queued(leader.id):
            dispatcher.follow(leader.id, follower.id)
        else:
            target.work_item = source.work_item
            target.remediation_kicked_off = source.remediation_kicked_off
            target.remediation_completed = source.remediation_completed
            follower.ready_for_remediation = False
        self._store.save(follower)
        audits.append(
            _PendingAudit(
                actor=target.actor,
                item_id=follower.id,
                campaign_id=campaign.id,
                action=target.remediation_action,
                owner_before=owner_before,
                owner_after=target.owner_name,
                work_item=target.work_item,
            )
        )
        logger.debug("Item %s follows account revoke of item %s", follower.id, leader.id)

    def _record_outcome(
        self,
        campaign: Campaign,
        item: Item,
        kind: RemediationAction,
        parts: ItemizedPlan,
        dispatcher: WorkItemDispatcher,
        audits: list[_PendingAudit],
    ) -> None:
        action = item.action
        owner_before = action.owner_name
        plan = parts.full_plan()
        action.remediation_action = kind
        action.remediation_details = plan

        if kind == RemediationAction.OPEN_WORK_ITEM:
            owner = action.owner_name or self._fallback_owner(campaign, item, plan)
            if owner is None:
                logger.warning(
                    "No remediator for item %s in campaign %s; leaving it ready",
                    item.id,
                    campaign.id,
                )
                self._store.save(item)
                return
            action.owner_name = owner
            dispatcher.queue(
                campaign,
                item,
                owner,
                plan,
                requester=action.actor,
                description=action.description,
            )
        else:
            action.remediation_kicked_off = True
            action.remediation_completed = kind == RemediationAction.NO_ACTION_REQUIRED
            item.ready_for_remediation = False

        self._store.save(item)
        audits.append(
            _PendingAudit(
                actor=action.actor,
                item_id=item.id,
                campaign_id=campaign.id,
                action=kind,
                owner_before=owner_before,
                owner_after=action.owner_name,
            )
        )

    def _fallback_owner(self, campaign: Campaign, item: Item, plan: Plan | None) -> str | None:
        resolution = self.default_remediator(item, plan)
        if isinstance(resolution, OwnerFound):
            return resolution.name
        if isinstance(resolution, NoOwnerFound):
            logger.debug("Default remediator lookup failed: %s", resolution.reason)
        if item.certifier:
            return item.certifier
        return campaign.certifiers[0] if campaign.certifiers else None

    def _complete_without_identity(
        self, campaign: Campaign, item: Item, audits: list[_PendingAudit]
    ) -> None:
        action = item.action
        logger.info("Identity %s no longer exists; completing item %s", item.identity, item.id)
        action.remediation_action = RemediationAction.NO_ACTION_REQUIRED
        action.remediation_details = None
        action.remediation_kicked_off = True
        action.remediation_completed = True
        item.ready_for_remediation = False
        self._store.save(item)
        audits.append(
            _PendingAudit(
                actor=action.actor,
                item_id=item.id,
                campaign_id=campaign.id,
                action=RemediationAction.NO_ACTION_REQUIRED,
                owner_before=action.owner_name,
                owner_after=action.owner_name,
            )
        )

    def _notify_executed(self, audits: list[_PendingAudit]) -> None:
        if not self._settings.remediation.notify_on_remediation:
            return
        recipients = sorted(
            {
                entry.actor
                for entry in audits
                if entry.action == RemediationAction.SEND_PROVISION_REQUEST and entry.actor
            }
        )
        if recipients:
            self._notifier.send_batch(
                TEMPLATE_REMEDIATION_NOTIFICATION,
                recipients,
                {
                    "items": [
                        entry.item_id
                        for entry in audits
                        if entry.action == RemediationAction.SEND_PROVISION_REQUEST
                    ]
                },
            )
