"""Applies batches of reviewer decisions to a campaign.

``decide`` runs under the campaign lock. Priority decisions (delegation
revokes and delegation review outcomes) are applied first, then the rest in
input order. Each item is applied on its own: a failure is recorded against
the item and the batch moves on. The working set is committed and released
every ``batch_size`` items.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from access_review.collaborators.hooks import (
    HOOK_PRE_DELEGATION,
    PreDelegationHookParams,
    RuleHooks,
    parse_delegation_result,
)
from access_review.collaborators.store import Store
from access_review.config import Settings
from access_review.decision.guards import (
    check_decision_errors,
    is_read_only,
    items_on_same_account,
)
from access_review.decision.locking import CampaignLockManager, LockStatus
from access_review.decision.selection import SelectionResolver
from access_review.decision.self_certification import SelfCertificationChecker
from access_review.decision.statistics import is_ready_for_signoff, refresh_statistics
from access_review.domain.decisions import (
    RESULT_ERROR,
    RESULT_SUCCESS,
    RESULT_TIMEOUT,
    RESULT_WARNING,
    ChallengeAction,
    Decision,
    DecisionResults,
    DecisionStatus,
)
from access_review.domain.models import (
    Action,
    ActionStatus,
    Campaign,
    ChallengeDecision,
    Delegation,
    Entity,
    Item,
    ItemType,
    Phase,
    WorkItem,
    WorkItemState,
    WorkItemType,
    new_id,
)
from access_review.domain.owners import OwnerFound
from access_review.errors import (
    DecisionError,
    ReassignmentLimitError,
    SelfCertificationError,
)
from access_review.logging_utils import get_logger
from access_review.phase.machine import PhaseStateMachine
from access_review.plan.calculator import RemediationPlanCalculator
from access_review.policy.models import ReviewPolicy
from access_review.remediation.manager import RemediationManager
from access_review.utils.chunking import unique
from access_review.utils.messages import MessageAccumulator
from access_review.utils.time import days_from, utc_now

logger = get_logger(__name__)

MSG_SIGNED = "Certification was already signed!"
MSG_CAMPAIGN_NOT_FOUND = "Certification {campaign} does not exist."
MSG_LOCK_NOT_APPLICABLE = "Certification {campaign} cannot be locked."
MSG_ITEM_NOT_FOUND = "Item {item} does not exist in this certification."
MSG_SELF_CERTIFY_ONE = "You cannot make a decision on your own access."
MSG_SELF_CERTIFY_MANY = "{count} items were skipped because they would certify your own access."
MSG_NO_RECIPIENT = "A recipient is required."
MSG_UNKNOWN_RECIPIENT = "Recipient {recipient} does not exist."
MSG_ALREADY_DELEGATED = "The item is already delegated."
MSG_ENTITY_ALREADY_DELEGATED = "The entity is already delegated."
MSG_NOT_WAITING_REVIEW = "The item is not waiting for delegation review."
MSG_NO_ACTIVE_CHALLENGE = "The item has no challenge waiting for a decision."
MSG_ACCOUNT_ITEMS_ONLY = "Account decisions apply only to account items."
MSG_MITIGATION_IN_PAST = "The mitigation expiration must be in the future."
MSG_REASSIGN_LIMIT = "The reassignment limit of {limit} for this certification has been reached."
MSG_REASSIGN_READ_ONLY = "{count} items were not reassigned because their decisions are locked."
MSG_REASSIGN_SELF = "Cannot reassign to {recipient} because they would certify their own access."
MSG_VIOLATION_REMEDIATION = "Remediated through policy violation {policy}."


@dataclass
class _BatchState:
    messages: MessageAccumulator = field(default_factory=MessageAccumulator)
    invalid_item_ids: list[str] = field(default_factory=list)
    rejections: dict[str, str] = field(default_factory=dict)
    decided_item_ids: list[str] = field(default_factory=list)
    cleared_item_ids: list[str] = field(default_factory=list)
    remediated_violation_ids: list[str] = field(default_factory=list)
    work_item_ids: list[str] = field(default_factory=list)
    applied: int = 0
    # Objects changed by the decision in progress, with their prior state.
    touched: dict[int, tuple[object, object | None]] | None = None
    marks: tuple[int, int, int] = (0, 0, 0)


class DecisionProcessor:
    def __init__(
        self,
        store: Store,
        campaign_id: str,
        decider: str,
        *,
        lock_manager: CampaignLockManager,
        calculator: RemediationPlanCalculator,
        remediation: RemediationManager,
        policy: ReviewPolicy,
        settings: Settings,
        hooks: RuleHooks | None = None,
        phases: PhaseStateMachine | None = None,
    ) -> None:
        self._store = store
        self._campaign_id = campaign_id
        self._decider = decider
        self._locks = lock_manager
        self._calculator = calculator
        self._remediation = remediation
        self._policy = policy
        self._settings = settings
        self._hooks = hooks
        self._phases = phases

        max_query = settings.decisions.max_in_query_size
        self._selection = SelectionResolver(store, campaign_id, max_query)
        self._self_certification = SelfCertificationChecker(
            store, policy.self_certification, max_query
        )
        self._campaign: Campaign | None = None
        self._state = _BatchState()

    def decide(self, decisions: list[Decision], simple_result: bool = False) -> DecisionResults:
        self._state = _BatchState()
        self._campaign = None
        self._store.release_working_set()
        campaign = self._store.load(Campaign, self._campaign_id)
        if campaign is None:
            return self._error_result(MSG_CAMPAIGN_NOT_FOUND.format(campaign=self._campaign_id))
        if campaign.is_signed():
            return self._error_result(MSG_SIGNED)

        outcome = self._locks.run_locked(
            self._campaign_id,
            lambda: self._decide_locked(list(decisions)),
            self._settings.decisions.lock_timeout_seconds,
        )
        if outcome.status == LockStatus.TIMED_OUT:
            return DecisionResults(status=RESULT_TIMEOUT, timed_out=True)
        if outcome.status == LockStatus.NOT_APPLICABLE:
            return self._error_result(MSG_LOCK_NOT_APPLICABLE.format(campaign=self._campaign_id))
        return self._build_results(simple_result)

    # Batch flow

    def _decide_locked(self, decisions: list[Decision]) -> None:
        self._store.release_working_set()
        self._campaign = self._store.load(Campaign, self._campaign_id)
        if self._campaign is None or self._campaign.is_signed():
            self._state.messages.add_error(MSG_SIGNED)
            return

        priority = [decision for decision in decisions if decision.is_priority()]
        generic = [decision for decision in decisions if not decision.is_priority()]
        for decision in priority + generic:
            if decision.work_item_id and decision.work_item_id not in self._state.work_item_ids:
                self._state.work_item_ids.append(decision.work_item_id)
            self._apply_decision(decision)
        self._checkpoint()

        self._associate_violations()
        self._drop_cleared_actions()
        self._finish_delegations()
        self._refresh()

    def _apply_decision(self, decision: Decision) -> None:
        ids = self._selection.resolve(decision)
        if decision.entity_decision:
            ids = self._drop_self_certified(
                ids, self._self_certification.self_certified_entities(self._decider, ids), True
            )
            if decision.status == DecisionStatus.DELEGATED:
                self._for_each_entity(ids, lambda entity: self._delegate_entity(decision, entity))
            elif decision.status == DecisionStatus.REASSIGN:
                self._reassign_entities(decision, ids)
            elif decision.status == DecisionStatus.UNDO_DELEGATION:
                self._for_each_entity(ids, self._revoke_entity_delegation)
            else:
                self._apply_to_items(decision, self._selection.items_of_entities(ids))
            return

        ids = self._drop_self_certified(
            ids, self._self_certification.self_certified_items(self._decider, ids), False
        )
        if decision.status in (DecisionStatus.REASSIGN, DecisionStatus.ACCOUNT_REASSIGN):
            self._reassign_items(decision, ids)
        else:
            self._apply_to_items(decision, ids)

    def _drop_self_certified(
        self, ids: list[str], offending: list[str], entities: bool
    ) -> list[str]:
        if not offending:
            return ids
        rejected = set(offending)
        item_ids = self._selection.items_of_entities(offending) if entities else offending
        for item_id in item_ids:
            self._reject(item_id, None)
        if len(item_ids) == 1:
            self._state.messages.add_error(MSG_SELF_CERTIFY_ONE)
        else:
            self._state.messages.add_error(MSG_SELF_CERTIFY_MANY.format(count=len(item_ids)))
        logger.warning(
            "%s tried to decide %d of their own items in campaign %s",
            self._decider,
            len(item_ids),
            self._campaign_id,
        )
        return [object_id for object_id in ids if object_id not in rejected]

    def _apply_to_items(self, decision: Decision, item_ids: list[str]) -> None:
        for item_id in item_ids:
            item = self._store.load(Item, item_id)
            if item is None or item.campaign_id != self._campaign_id:
                self._reject(item_id, MSG_ITEM_NOT_FOUND.format(item=item_id))
                continue
            entity = self._store.load(Entity, item.entity_id)
            if entity is None:
                self._reject(item_id, MSG_ITEM_NOT_FOUND.format(item=item_id))
                continue

            self._begin(item, entity)
            try:
                self._apply_to_item(decision, entity, item)
            except DecisionError as exc:
                self._roll_back()
                self._reject(item_id, exc.message)
            except Exception as exc:
                self._roll_back()
                logger.warning("Decision on item %s failed", item_id, exc_info=True)
                self._reject(item_id, f"Item {item_id} could not be decided: {exc}")
            else:
                self._state.touched = None
                self._store.save(item)
                self._store.save(entity)
                self._mark_decided(item_id)
            self._count_applied()

    def _for_each_entity(self, entity_ids: list[str], apply: Callable[[Entity], None]) -> None:
        for entity in self._selection.iter_objects(Entity, entity_ids):
            self._begin(entity)
            try:
                apply(entity)
            except DecisionError as exc:
                self._roll_back()
                self._reject_entity(entity, exc.message)
            except Exception as exc:
                self._roll_back()
                logger.warning("Decision on entity %s failed", entity.id, exc_info=True)
                self._reject_entity(entity, f"Entity {entity.id} could not be decided: {exc}")
            else:
                self._state.touched = None
                self._store.save(entity)
            self._count_applied()

    def _begin(self, *objects: object) -> None:
        """Start recording what the next decision changes so a failure can undo all of it."""
        state = self._state
        state.touched = {}
        state.marks = (
            len(state.decided_item_ids),
            len(state.cleared_item_ids),
            len(state.remediated_violation_ids),
        )
        for obj in objects:
            self._track(obj)

    def _track(self, obj: object, new: bool = False) -> None:
        touched = self._state.touched
        if touched is not None and id(obj) not in touched:
            touched[id(obj)] = (obj, None if new else copy.deepcopy(obj))

    def _touch(self, obj: object, new: bool = False) -> None:
        """Save an object the current decision changes besides its own item and entity.

        Call before mutating ``obj``.
        """
        self._track(obj, new)
        self._store.save(obj)

    def _roll_back(self) -> None:
        state = self._state
        for obj, snapshot in (state.touched or {}).values():
            if snapshot is None:
                self._store.delete(obj)
            else:
                _restore(obj, snapshot)
        decided, cleared, violations = state.marks
        del state.decided_item_ids[decided:]
        del state.cleared_item_ids[cleared:]
        del state.remediated_violation_ids[violations:]
        state.touched = None

    def _count_applied(self) -> None:
        self._state.applied += 1
        if self._state.applied % self._settings.decisions.batch_size == 0:
            self._checkpoint()

    def _checkpoint(self) -> None:
        """Commit what has been applied so far and start a fresh working set."""
        self._store.save(self._campaign)
        self._store.commit()
        self._store.release_working_set()
        self._campaign = self._store.load(Campaign, self._campaign_id)
        logger.debug(
            "Committed %d decisions for campaign %s", self._state.applied, self._campaign_id
        )

    def _reject(self, item_id: str, message: str | None) -> None:
        if item_id not in self._state.invalid_item_ids:
            self._state.invalid_item_ids.append(item_id)
        if message:
            self._state.rejections[item_id] = message
            self._state.messages.add_error(message)

    def _reject_entity(self, entity: Entity, message: str) -> None:
        for item_id in entity.item_ids:
            self._reject(item_id, None)
            self._state.rejections[item_id] = message
        self._state.messages.add_error(message)

    # Per-item application

    def _apply_to_item(self, decision: Decision, entity: Entity, item: Item) -> None:
        status = decision.status
        if decision.revoke_entity_delegation and entity.is_delegated():
            self._revoke_entity_delegation(entity)
        if decision.revoke_delegation and item.is_delegated():
            self._revoke_item_delegation(item)

        if status == DecisionStatus.UNDO_DELEGATION:
            self._undo_delegation(entity, item)
            return
        if status == DecisionStatus.ACCEPT_DELEGATION_REVIEW:
            self._accept_review(item)
            return
        if status == DecisionStatus.REJECT_DELEGATION_REVIEW:
            self._reject_review(item)
            return

        if decision.challenge_action is not None:
            self._decide_challenge(decision, item)
            if not decision.one_step_challenge:
                return

        if status == DecisionStatus.DELEGATED:
            self._delegate_item(decision, entity, item)
            return

        error = check_decision_errors(
            self._campaign,
            entity,
            item,
            self._decider,
            decision.work_item_id,
            status.action_status(),
        )
        if error:
            raise DecisionError(error, item.id)
        if status.action_status() is not None and is_read_only(self._campaign, item):
            # Same status on a frozen decision; keep the recorded action and its remediation.
            return

        if status in (DecisionStatus.UNDO, DecisionStatus.CLEARED):
            self._clear(entity, item)
        elif status == DecisionStatus.APPROVED:
            self._approve(decision, entity, item)
        elif status == DecisionStatus.APPROVE_ACCOUNT:
            self._approve_account(decision, entity, item)
        elif status == DecisionStatus.REMEDIATED:
            self._remediate(decision, entity, item)
        elif status == DecisionStatus.REVOKE_ACCOUNT:
            self._revoke_account(decision, entity, item)
        elif status == DecisionStatus.MITIGATED:
            self._mitigate(decision, entity, item)
        elif status == DecisionStatus.ACKNOWLEDGED:
            self._record(entity, item, self._new_action(ActionStatus.ACKNOWLEDGED, decision))
        else:
            raise DecisionError(f"Decision {status.value} does not apply to items.", item.id)

    def _new_action(self, status: ActionStatus, decision: Decision) -> Action:
        return Action(
            status=status,
            actor=self._decider,
            description=decision.description,
            comments=decision.comments,
            acting_work_item=decision.work_item_id,
            bulk_certified=decision.is_bulk(),
        )

    def _record(self, entity: Entity, item: Item, action: Action) -> None:
        if not action.revoke_account:
            self._clear_account_revokes(entity, item)
        item.record_action(action)

    def _clear_account_revokes(self, entity: Entity, item: Item) -> None:
        """A new decision on one item of a revoked account lifts the revoke from the rest."""
        if item.action is None or not item.action.revoke_account:
            return
        for other in self._same_account(entity, item):
            if other.action is not None and other.action.revoke_account and not is_read_only(
                self._campaign, other
            ):
                self._touch(other)
                other.clear_decision(self._decider)
                self._state.cleared_item_ids.append(other.id)

    def _same_account(self, entity: Entity, item: Item) -> list[Item]:
        return items_on_same_account(
            self._store, entity, item, self._settings.decisions.max_in_query_size
        )

    def _approve(self, decision: Decision, entity: Entity, item: Item) -> None:
        action = self._new_action(ActionStatus.APPROVED, decision)
        if decision.provision_missing_roles and item.type == ItemType.BUNDLE:
            action.provision_missing_roles = True
            action.additional_actions = self._calculator.missing_requirements_plan(item)
        self._record(entity, item, action)

    def _approve_account(self, decision: Decision, entity: Entity, item: Item) -> None:
        if not item.type.is_account_scoped:
            raise DecisionError(MSG_ACCOUNT_ITEMS_ONLY, item.id)
        self._approve(decision, entity, item)
        for other in self._same_account(entity, item):
            if other.is_delegated() or is_read_only(self._campaign, other):
                continue
            self._touch(other)
            self._approve(decision, entity, other)
            self._mark_decided(other.id)

    def _remediate(
        self, decision: Decision, entity: Entity, item: Item, revoke_account: bool = False
    ) -> None:
        if item.type == ItemType.POLICY_VIOLATION and item.violation is not None:
            self._select_violation_remediation(decision, item)

        action = self._new_action(ActionStatus.REMEDIATED, decision)
        action.revoke_account = revoke_account
        self._record(entity, item, action)

        siblings: list[Item] = []
        if item.type == ItemType.POLICY_VIOLATION:
            siblings = [
                sibling
                for sibling in self._selection.iter_objects(Item, entity.item_ids)
                if sibling.id != item.id
            ]
        preview = self._remediation.calculate_remediation_details(self._campaign, item, siblings)
        action.remediation_action = preview.action
        action.remediation_details = preview.plan
        if decision.recipient:
            action.owner_name = decision.recipient
        elif isinstance(preview.owner, OwnerFound):
            action.owner_name = preview.owner.name

        if item.type == ItemType.POLICY_VIOLATION:
            self._state.remediated_violation_ids.append(item.id)

    def _select_violation_remediation(self, decision: Decision, item: Item) -> None:
        violation = item.violation
        if decision.revoked_roles is not None:
            violation.roles_marked_for_remediation = list(decision.revoked_roles)
        if decision.selected_violation_entitlements is not None:
            wanted = set(decision.selected_violation_entitlements)
            violation.entitlements_to_remediate = [
                node
                for node in violation.entitlements
                if (node.application, node.name, node.value) in wanted
            ]

    def _revoke_account(self, decision: Decision, entity: Entity, item: Item) -> None:
        if not item.type.is_account_scoped:
            raise DecisionError(MSG_ACCOUNT_ITEMS_ONLY, item.id)
        self._remediate(decision, entity, item, revoke_account=True)
        for other in self._same_account(entity, item):
            if is_read_only(self._campaign, other):
                continue
            self._touch(other)
            if other.is_delegated():
                self._revoke_item_delegation(other)
            self._remediate(decision, entity, other, revoke_account=True)
            self._mark_decided(other.id)

    def _mitigate(self, decision: Decision, entity: Entity, item: Item) -> None:
        if decision.mitigation_expires_next_cert:
            self._record(entity, item, self._new_action(ActionStatus.ACKNOWLEDGED, decision))
            return
        expiration = decision.mitigation_expiration or days_from(
            utc_now(), self._policy.mitigation.default_duration_days
        )
        if expiration is not None and _as_aware(expiration) <= utc_now():
            raise DecisionError(MSG_MITIGATION_IN_PAST, item.id)
        action = self._new_action(ActionStatus.MITIGATED, decision)
        action.mitigation_expiration = expiration
        self._record(entity, item, action)

    def _clear(self, entity: Entity, item: Item) -> None:
        if item.action is None:
            return
        if item.action.revoke_account:
            for other in self._same_account(entity, item):
                if other.action is not None and other.action.revoke_account and not is_read_only(
                    self._campaign, other
                ):
                    self._touch(other)
                    other.clear_decision(self._decider)
                    self._state.cleared_item_ids.append(other.id)
        item.clear_decision(self._decider)
        self._state.cleared_item_ids.append(item.id)

    def _mark_decided(self, item_id: str) -> None:
        if item_id not in self._state.decided_item_ids:
            self._state.decided_item_ids.append(item_id)

    # Delegation

    def _resolve_delegation(
        self, decision: Decision, entity: Entity, item: Item | None
    ) -> tuple[str, str | None, str | None, bool]:
        recipient = decision.recipient
        description = decision.description
        comments = decision.comments
        reassign = False

        if self._hooks is not None:
            params = PreDelegationHookParams(
                campaign_id=self._campaign.id,
                campaign_name=self._campaign.name,
                entity_id=entity.id,
                subject=item.identity if item else entity.subject(),
                decider=self._decider,
                recipient=recipient,
                description=description,
                comments=comments,
                item_id=item.id if item else None,
            )
            result = parse_delegation_result(self._hooks.run_hook(HOOK_PRE_DELEGATION, params))
            if result is not None:
                recipient = result.recipient or recipient
                description = result.description or description
                comments = result.comments or comments
                reassign = result.reassign

        item_id = item.id if item else None
        if not recipient:
            raise DecisionError(MSG_NO_RECIPIENT, item_id)
        if self._store.directory.get_identity(recipient) is None:
            raise DecisionError(MSG_UNKNOWN_RECIPIENT.format(recipient=recipient), item_id)
        subject = item.identity if item else entity.identity
        if self._self_certification.is_self_certification(recipient, [subject]):
            raise SelfCertificationError(recipient, item_id)
        return recipient, description, comments, reassign

    def _delegation_work_item(
        self, recipient: str, description: str | None, entity: Entity, item: Item | None
    ) -> WorkItem:
        work_item = WorkItem(
            id=new_id(),
            type=WorkItemType.DELEGATION,
            owner=recipient,
            requester=self._decider,
            description=description or f"Review access of {entity.subject()}",
            campaign_id=self._campaign.id,
            entity_id=entity.id,
            item_id=item.id if item else None,
        )
        self._touch(work_item, new=True)
        return work_item

    def _delegate_item(self, decision: Decision, entity: Entity, item: Item) -> None:
        if item.is_delegated():
            raise DecisionError(MSG_ALREADY_DELEGATED, item.id)
        error = check_decision_errors(
            self._campaign, entity, item, self._decider, decision.work_item_id, None
        )
        if error:
            raise DecisionError(error, item.id)
        if is_read_only(self._campaign, item):
            raise DecisionError("The item decision is locked and cannot be delegated.", item.id)

        recipient, description, comments, reassign = self._resolve_delegation(
            decision, entity, item
        )
        if reassign:
            item.certifier = recipient
            return

        work_item = self._delegation_work_item(recipient, description, entity, item)
        item.delegation = Delegation(
            owner_name=recipient,
            actor=self._decider,
            work_item=work_item.id,
            description=description,
            comments=comments,
            review_required=self._campaign.delegation_review_required,
        )

    def _delegate_entity(self, decision: Decision, entity: Entity) -> None:
        if entity.is_delegated():
            raise DecisionError(MSG_ENTITY_ALREADY_DELEGATED)
        recipient, description, comments, reassign = self._resolve_delegation(
            decision, entity, None
        )
        if reassign:
            entity.certifier = recipient
            return
        work_item = self._delegation_work_item(recipient, description, entity, None)
        entity.delegation = Delegation(
            owner_name=recipient,
            actor=self._decider,
            work_item=work_item.id,
            description=description,
            comments=comments,
            review_required=self._campaign.delegation_review_required,
        )

    def _revoke_item_delegation(self, item: Item) -> None:
        item.delegation.revoke()
        self._cancel_work_item(item.delegation.work_item)

    def _revoke_entity_delegation(self, entity: Entity) -> None:
        if not entity.is_delegated():
            return
        entity.delegation.revoke()
        self._cancel_work_item(entity.delegation.work_item)

    def _cancel_work_item(self, work_item_id: str | None) -> None:
        if work_item_id is None:
            return
        work_item = self._store.load(WorkItem, work_item_id)
        if work_item is not None and work_item.is_open():
            self._touch(work_item)
            work_item.state = WorkItemState.CANCELED

    def _undo_delegation(self, entity: Entity, item: Item) -> None:
        if item.is_delegated():
            self._revoke_item_delegation(item)
        elif entity.is_delegated():
            self._revoke_entity_delegation(entity)

    def _accept_review(self, item: Item) -> None:
        if not item.is_waiting_review():
            raise DecisionError(MSG_NOT_WAITING_REVIEW, item.id)
        item.action.reviewed = True

    def _reject_review(self, item: Item) -> None:
        if not item.is_waiting_review():
            raise DecisionError(MSG_NOT_WAITING_REVIEW, item.id)
        item.clear_decision(self._decider)
        self._state.cleared_item_ids.append(item.id)

    # Challenges

    def _decide_challenge(self, decision: Decision, item: Item) -> None:
        challenge = item.challenge
        if challenge is None or not challenge.is_challenged() or not challenge.is_active():
            raise DecisionError(MSG_NO_ACTIVE_CHALLENGE, item.id)

        if decision.challenge_action == ChallengeAction.ACCEPT:
            challenge.decide(ChallengeDecision.ACCEPTED, self._decider, decision.challenge_comments)
            item.clear_decision(self._decider)
            self._state.cleared_item_ids.append(item.id)
        else:
            challenge.decide(ChallengeDecision.REJECTED, self._decider, decision.challenge_comments)
        self._cancel_work_item(challenge.work_item)

    # Reassignment

    def _reassign_items(self, decision: Decision, item_ids: list[str]) -> None:
        recipient = self._check_reassignment(decision, item_ids)
        if recipient is None:
            return

        items = list(self._selection.iter_objects(Item, item_ids))
        if decision.status == DecisionStatus.ACCOUNT_REASSIGN:
            expanded = {item.id: item for item in items}
            for item in items:
                entity = self._store.load(Entity, item.entity_id)
                for other in self._same_account(entity, item) if entity else []:
                    expanded.setdefault(other.id, other)
            items = [expanded[item_id] for item_id in sorted(expanded)]

        subjects = [item.identity for item in items]
        if self._self_certification.is_self_certification(recipient, subjects):
            for item in items:
                self._reject(item.id, None)
            self._state.messages.add_error(MSG_REASSIGN_SELF.format(recipient=recipient))
            return

        read_only = {item.id for item in items if is_read_only(self._campaign, item)}
        for item_id in sorted(read_only):
            self._reject(item_id, None)
        if read_only:
            self._state.messages.add_warning(MSG_REASSIGN_READ_ONLY.format(count=len(read_only)))

        moved = 0
        for item in items:
            if item.id in read_only:
                continue
            item.certifier = recipient
            self._store.save(item)
            moved += 1
            self._count_applied()
        if moved:
            self._campaign.reassignment_count += 1
            self._store.save(self._campaign)

    def _reassign_entities(self, decision: Decision, entity_ids: list[str]) -> None:
        item_ids = self._selection.items_of_entities(entity_ids)
        recipient = self._check_reassignment(decision, item_ids)
        if recipient is None:
            return

        moved = 0
        skipped = 0
        for entity in self._selection.iter_objects(Entity, entity_ids):
            if self._self_certification.is_self_certification(recipient, [entity.identity]):
                self._reject_entity(entity, MSG_REASSIGN_SELF.format(recipient=recipient))
                continue
            items = list(self._selection.iter_objects(Item, entity.item_ids))
            if any(is_read_only(self._campaign, item) for item in items):
                skipped += len(items)
                for item in items:
                    self._reject(item.id, None)
                continue
            entity.certifier = recipient
            for item in items:
                item.certifier = recipient
                self._store.save(item)
            self._store.save(entity)
            moved += 1
            self._count_applied()
        if skipped:
            self._state.messages.add_warning(MSG_REASSIGN_READ_ONLY.format(count=skipped))
        if moved:
            self._campaign.reassignment_count += 1
            self._store.save(self._campaign)

    def _check_reassignment(self, decision: Decision, item_ids: list[str]) -> str | None:
        recipient = decision.recipient
        if not recipient:
            self._state.messages.add_error(MSG_NO_RECIPIENT)
        elif self._store.directory.get_identity(recipient) is None:
            self._state.messages.add_error(MSG_UNKNOWN_RECIPIENT.format(recipient=recipient))
            recipient = None
        else:
            try:
                self._check_reassignment_limit()
            except ReassignmentLimitError as exc:
                self._state.messages.add_error(exc.message)
                recipient = None
        if recipient is None:
            for item_id in item_ids:
                self._reject(item_id, None)
        return recipient

    def _check_reassignment_limit(self) -> None:
        limit = self._policy.reassignment.limit
        if limit is not None and self._campaign.reassignment_count >= limit:
            raise ReassignmentLimitError(MSG_REASSIGN_LIMIT.format(limit=limit))

    # Follow-up passes

    def _associate_violations(self) -> None:
        """Remediate the role and entitlement items a remediated violation names."""
        for violation_item_id in unique(self._state.remediated_violation_ids):
            item = self._store.load(Item, violation_item_id)
            if item is None or item.violation is None:
                continue
            if not item.has_status(ActionStatus.REMEDIATED):
                continue
            entity = self._store.load(Entity, item.entity_id)
            violation = item.violation
            roles = set(violation.roles_marked_for_remediation)
            entitlements = {
                (node.application, node.name, node.value)
                for node in violation.entitlements_to_remediate
            }

            for sibling in self._selection.iter_objects(Item, entity.item_ids):
                if sibling.id == item.id or not _named_by(sibling, roles, entitlements):
                    continue
                if sibling.is_acted_upon() or sibling.is_delegated():
                    continue
                if is_read_only(self._campaign, sibling):
                    continue
                action = Action(
                    status=ActionStatus.REMEDIATED,
                    actor=self._decider,
                    description=MSG_VIOLATION_REMEDIATION.format(policy=violation.policy_name),
                )
                sibling.record_action(action)
                preview = self._remediation.calculate_remediation_details(self._campaign, sibling)
                action.remediation_action = preview.action
                action.remediation_details = preview.plan
                if isinstance(preview.owner, OwnerFound):
                    action.owner_name = preview.owner.name
                self._store.save(sibling)
                self._mark_decided(sibling.id)
        self._checkpoint()

    def _drop_cleared_actions(self) -> None:
        """Remove cleared actions once their history entries are stored."""
        for item_id in unique(self._state.cleared_item_ids):
            item = self._store.load(Item, item_id)
            if item is not None and item.drop_cleared_action():
                self._store.save(item)
        self._checkpoint()

    def _finish_delegations(self) -> None:
        """Close delegations whose items have all been decided by the delegate."""
        for work_item_id in self._state.work_item_ids:
            work_item = self._store.load(WorkItem, work_item_id)
            if work_item is None or work_item.type != WorkItemType.DELEGATION:
                continue
            if not work_item.is_open() or not self._work_item_complete(work_item_id):
                continue
            work_item.state = WorkItemState.FINISHED
            self._store.save(work_item)

            owner = (
                self._store.load(Item, work_item.item_id)
                if work_item.item_id
                else self._store.load(Entity, work_item.entity_id)
            )
            delegation = owner.delegation if owner is not None else None
            if delegation is not None and delegation.work_item == work_item_id:
                delegation.completion_state = WorkItemState.FINISHED
                self._store.save(owner)
        self._checkpoint()

    def _refresh(self) -> None:
        campaign = self._campaign
        decided = self._state.decided_item_ids
        if campaign.process_revokes_immediately or campaign.phase == Phase.REMEDIATION:
            for item in self._selection.iter_objects(Item, decided):
                if self._remediation.mark_for_remediation(item):
                    self._store.save(item)
            self._checkpoint()
            self._remediation.flush(self._campaign)
            self._campaign = self._store.load(Campaign, self._campaign_id)

        if self._phases is not None and self._campaign.use_rolling_phases:
            self._phases.handle_rolling_phase_transitions(self._campaign, decided)
            self._store.release_working_set()
            self._campaign = self._store.load(Campaign, self._campaign_id)

        refresh_statistics(self._store, self._campaign, self._settings.decisions.batch_size)
        self._checkpoint()

    # Results

    def _error_result(self, message: str) -> DecisionResults:
        return DecisionResults(status=RESULT_ERROR, errors=[message])

    def _build_results(self, simple_result: bool) -> DecisionResults:
        state = self._state
        messages = state.messages
        if messages.has_errors():
            status = RESULT_ERROR
        elif messages.warnings:
            status = RESULT_WARNING
        else:
            status = RESULT_SUCCESS

        results = DecisionResults(
            status=status,
            errors=messages.errors,
            warnings=messages.warnings,
            invalid_item_ids=list(state.invalid_item_ids),
            rejections=dict(state.rejections),
        )
        if simple_result or self._campaign is None:
            return results

        stats = self._campaign.statistics
        results.completed_items = stats.completed_items
        results.total_items = stats.total_items
        results.completed_entities = stats.completed_entities
        results.total_entities = stats.total_entities
        results.percent_complete = stats.percent_complete
        results.active_delegations = stats.active_delegations
        results.ready_for_signoff = is_ready_for_signoff(self._campaign)
        if state.work_item_ids:
            results.work_item_complete = all(
                self._work_item_complete(work_item_id) for work_item_id in state.work_item_ids
            )
        return results

    def _work_item_complete(self, work_item_id: str) -> bool:
        work_item = self._store.load(WorkItem, work_item_id)
        if work_item is None:
            return False
        if work_item.item_id is not None:
            item_ids = [work_item.item_id]
        else:
            entity = self._store.load(Entity, work_item.entity_id)
            item_ids = list(entity.item_ids) if entity else []
        return all(item.is_acted_upon() for item in self._selection.iter_objects(Item, item_ids))


def _restore(target: object, snapshot: object) -> None:
    target.__dict__.update(copy.deepcopy(snapshot).__dict__)


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _named_by(item: Item, roles: set[str], entitlements: set[tuple]) -> bool:
    if item.type == ItemType.BUNDLE:
        return item.bundle in roles
    if item.type == ItemType.EXCEPTION and item.entitlements is not None:
        snapshot = item.entitlements
        for name, values in snapshot.attributes.items():
            if any((snapshot.application, name, value) in entitlements for value in values):
                return True
    return False
