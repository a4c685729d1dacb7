"""Campaign record set: campaigns, entities, items and their decision state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import uuid4

from access_review.plan.models import Plan
from access_review.utils.time import utc_now


def new_id() -> str:
    return uuid4().hex


class Phase(str, Enum):
    ACTIVE = "Active"
    CHALLENGE = "Challenge"
    REMEDIATION = "Remediation"
    CLOSED = "Closed"

    @property
    def ordinal(self) -> int:
        return PHASE_ORDER.index(self)

    def is_after(self, other: Phase) -> bool:
        return self.ordinal > other.ordinal


PHASE_ORDER = (Phase.ACTIVE, Phase.CHALLENGE, Phase.REMEDIATION, Phase.CLOSED)


class CampaignType(str, Enum):
    IDENTITY = "Identity"
    BUSINESS_ROLE_MEMBERSHIP = "BusinessRoleMembership"
    ACCOUNT_GROUP_PERMISSIONS = "AccountGroupPermissions"
    ACCOUNT_GROUP_MEMBERSHIP = "AccountGroupMembership"
    DATA_OWNER = "DataOwner"
    BUSINESS_ROLE_COMPOSITION = "BusinessRoleComposition"

    @property
    def certifies_identities(self) -> bool:
        return self in (
            CampaignType.IDENTITY,
            CampaignType.BUSINESS_ROLE_MEMBERSHIP,
            CampaignType.ACCOUNT_GROUP_MEMBERSHIP,
            CampaignType.DATA_OWNER,
        )


class EntityType(str, Enum):
    IDENTITY = "Identity"
    ACCOUNT_GROUP = "AccountGroup"
    DATA_OWNER = "DataOwner"
    BUSINESS_ROLE = "BusinessRole"


class ItemType(str, Enum):
    EXCEPTION = "Exception"
    ACCOUNT = "Account"
    ACCOUNT_GROUP_MEMBERSHIP = "AccountGroupMembership"
    DATA_OWNER = "DataOwner"
    BUNDLE = "Bundle"
    POLICY_VIOLATION = "PolicyViolation"
    BUSINESS_ROLE_HIERARCHY = "BusinessRoleHierarchy"
    BUSINESS_ROLE_PERMIT = "BusinessRolePermit"
    BUSINESS_ROLE_REQUIREMENT = "BusinessRoleRequirement"
    BUSINESS_ROLE_PROFILE = "BusinessRoleProfile"
    BUSINESS_ROLE_GRANTED_CAPABILITY = "BusinessRoleGrantedCapability"
    BUSINESS_ROLE_GRANTED_SCOPE = "BusinessRoleGrantedScope"

    @property
    def is_account_scoped(self) -> bool:
        return self in ACCOUNT_SCOPED_TYPES

    @property
    def is_role_structure(self) -> bool:
        return self in ROLE_STRUCTURE_TYPES


ACCOUNT_SCOPED_TYPES = frozenset(
    {ItemType.EXCEPTION, ItemType.ACCOUNT, ItemType.ACCOUNT_GROUP_MEMBERSHIP, ItemType.DATA_OWNER}
)
ROLE_STRUCTURE_TYPES = frozenset(
    {
        ItemType.BUSINESS_ROLE_HIERARCHY,
        ItemType.BUSINESS_ROLE_PERMIT,
        ItemType.BUSINESS_ROLE_REQUIREMENT,
        ItemType.BUSINESS_ROLE_PROFILE,
        ItemType.BUSINESS_ROLE_GRANTED_CAPABILITY,
        ItemType.BUSINESS_ROLE_GRANTED_SCOPE,
    }
)


class ItemSubType(str, Enum):
    ASSIGNED_ROLE = "AssignedRole"
    DETECTED_ROLE = "DetectedRole"


class ActionStatus(str, Enum):
    APPROVED = "Approved"
    REMEDIATED = "Remediated"
    MITIGATED = "Mitigated"
    ACKNOWLEDGED = "Acknowledged"
    CLEARED = "Cleared"


class RemediationAction(str, Enum):
    OPEN_WORK_ITEM = "OpenWorkItem"
    SEND_PROVISION_REQUEST = "SendProvisionRequest"
    NO_ACTION_REQUIRED = "NoActionRequired"
    OPEN_TICKET = "OpenTicket"


class ChallengeDecision(str, Enum):
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"


class WorkItemType(str, Enum):
    DELEGATION = "Delegation"
    REMEDIATION = "Remediation"
    CHALLENGE = "Challenge"


class WorkItemState(str, Enum):
    FINISHED = "Finished"
    REJECTED = "Rejected"
    EXPIRED = "Expired"
    CANCELED = "Canceled"


class ViolationKind(str, Enum):
    ROLE_SOD = "SOD"
    ENTITLEMENT_SOD = "EntitlementSOD"
    EFFECTIVE_ENTITLEMENT_SOD = "EffectiveEntitlementSOD"
    GENERIC = "Generic"


@dataclass
class Permission:
    target: str
    rights: list[str] = field(default_factory=list)


@dataclass
class EntitlementSnapshot:
    """The account values an item certifies."""

    application: str
    native_identity: str | None = None
    instance: str | None = None
    display_name: str | None = None
    attributes: dict[str, list[str]] = field(default_factory=dict)
    permissions: list[Permission] = field(default_factory=list)

    def account_key(self) -> tuple[str, str | None, str | None]:
        return (self.application, self.instance, self.native_identity)

    def is_account_only(self) -> bool:
        return not self.attributes and not self.permissions


@dataclass
class ViolationEntitlement:
    """One node of a violation's entitlement tree."""

    name: str
    value: str
    application: str | None = None
    native_identity: str | None = None
    instance: str | None = None
    permission: bool = False
    contributing_entitlements: list[str] = field(default_factory=list)


@dataclass
class PolicyViolation:
    id: str
    policy_name: str
    kind: ViolationKind = ViolationKind.ROLE_SOD
    identity: str | None = None
    owner: str | None = None
    left_roles: list[str] = field(default_factory=list)
    right_roles: list[str] = field(default_factory=list)
    roles_marked_for_remediation: list[str] = field(default_factory=list)
    entitlements: list[ViolationEntitlement] = field(default_factory=list)
    entitlements_to_remediate: list[ViolationEntitlement] = field(default_factory=list)

    def is_entitlement_kind(self) -> bool:
        return self.kind in (ViolationKind.ENTITLEMENT_SOD, ViolationKind.EFFECTIVE_ENTITLEMENT_SOD)


@dataclass
class Delegation:
    owner_name: str
    actor: str
    work_item: str | None = None
    description: str | None = None
    comments: str | None = None
    review_required: bool = False
    revoked: bool = False
    completion_state: WorkItemState | None = None
    created: datetime = field(default_factory=utc_now)

    def is_active(self) -> bool:
        return not self.revoked and self.completion_state is None

    def revoke(self) -> None:
        self.revoked = True


@dataclass
class Action:
    status: ActionStatus
    actor: str
    created: datetime = field(default_factory=utc_now)
    revoke_account: bool = False
    owner_name: str | None = None
    description: str | None = None
    comments: str | None = None
    acting_work_item: str | None = None
    work_item: str | None = None
    mitigation_expiration: datetime | None = None
    remediation_action: RemediationAction | None = None
    remediation_details: Plan | None = None
    additional_actions: Plan | None = None
    provision_missing_roles: bool = False
    remediation_kicked_off: bool = False
    remediation_completed: bool = False
    reviewed: bool = False
    bulk_certified: bool = False
    auto_decided: bool = False

    def needs_remediation(self) -> bool:
        if self.status == ActionStatus.REMEDIATED:
            return True
        return self.status == ActionStatus.APPROVED and self.additional_actions is not None


@dataclass
class Challenge:
    owner_name: str
    work_item: str | None = None
    created: datetime = field(default_factory=utc_now)
    challenged: bool = False
    challenger_accepted: bool = False
    challenger_comments: str | None = None
    decision: ChallengeDecision | None = None
    decision_comments: str | None = None
    decider: str | None = None
    expired: bool = False
    decision_expired: bool = False

    def challenger_acted(self) -> bool:
        return self.challenged or self.challenger_accepted

    def challenge(self, comments: str | None = None) -> None:
        self.challenged = True
        self.challenger_comments = comments

    def accept_decision(self, comments: str | None = None) -> None:
        """The challenger agrees with the revoke."""
        self.challenger_accepted = True
        self.challenger_comments = comments

    def decide(
        self, decision: ChallengeDecision, decider: str, comments: str | None = None
    ) -> None:
        self.decision = decision
        self.decider = decider
        self.decision_comments = comments

    def expire(self) -> None:
        self.expired = True

    def expire_decision(self) -> None:
        self.decision_expired = True

    def is_active(self) -> bool:
        if self.expired or self.decision_expired:
            return False
        if not self.challenger_acted():
            return True
        return self.challenged and self.decision is None

    def is_challenged(self) -> bool:
        return self.challenged and not self.challenger_accepted

    def was_accepted(self) -> bool:
        return self.decision == ChallengeDecision.ACCEPTED


@dataclass
class Item:
    """One decidable grant."""

    id: str
    campaign_id: str
    entity_id: str
    type: ItemType
    identity: str | None = None
    sub_type: ItemSubType | None = None
    bundle: str | None = None
    bundle_assignment_id: str | None = None
    target_id: str | None = None
    target_name: str | None = None
    parent_role: str | None = None
    account_group: str | None = None
    entitlements: EntitlementSnapshot | None = None
    violation: PolicyViolation | None = None
    certifier: str | None = None
    action: Action | None = None
    delegation: Delegation | None = None
    challenge: Challenge | None = None
    phase: Phase | None = None
    next_phase_transition: datetime | None = None
    ready_for_remediation: bool = False
    history: list[Action] = field(default_factory=list)

    def is_acted_upon(self) -> bool:
        return self.action is not None and self.action.status != ActionStatus.CLEARED

    def is_delegated(self) -> bool:
        return self.delegation is not None and self.delegation.is_active()

    def is_waiting_review(self) -> bool:
        delegation = self.delegation
        return (
            self.action is not None
            and self.action.acting_work_item is not None
            and delegation is not None
            and delegation.review_required
            and delegation.work_item == self.action.acting_work_item
            and not self.action.reviewed
        )

    def is_delegated_or_waiting_review(self) -> bool:
        return self.is_delegated() or self.is_waiting_review()

    def is_challenge_active(self) -> bool:
        return self.challenge is not None and self.challenge.is_active()

    def is_decision_final(self) -> bool:
        return self.is_acted_upon() and not self.is_delegated_or_waiting_review()

    def has_status(self, status: ActionStatus) -> bool:
        return self.action is not None and self.action.status == status

    def account_key(self) -> tuple[str, str | None, str | None] | None:
        if not self.type.is_account_scoped or self.entitlements is None:
            return None
        return self.entitlements.account_key()

    def record_action(self, action: Action) -> None:
        """Replace the current action, keeping the old one in history."""
        if self.action is not None:
            self.history.append(self.action)
        self.action = action
        self.ready_for_remediation = False

    def clear_decision(self, actor: str) -> None:
        """Mark the current action cleared; the row is dropped in a later pass."""
        if self.action is None:
            return
        cleared = Action(status=ActionStatus.CLEARED, actor=actor)
        self.record_action(cleared)

    def drop_cleared_action(self) -> bool:
        if self.action is not None and self.action.status == ActionStatus.CLEARED:
            self.action = None
            return True
        return False

    def subject(self) -> str | None:
        return self.identity


@dataclass
class Entity:
    """One reviewed subject and its items."""

    id: str
    campaign_id: str
    type: EntityType
    identity: str | None = None
    account_group: str | None = None
    application: str | None = None
    target_id: str | None = None
    target_name: str | None = None
    owner: str | None = None
    certifier: str | None = None
    item_ids: list[str] = field(default_factory=list)
    delegation: Delegation | None = None

    def is_delegated(self) -> bool:
        return self.delegation is not None and self.delegation.is_active()

    def subject(self) -> str | None:
        return self.identity or self.account_group or self.target_name


@dataclass
class PhaseConfig:
    phase: Phase
    enabled: bool = True
    duration_days: float | None = None


@dataclass
class CampaignStatistics:
    completed_items: int = 0
    total_items: int = 0
    completed_entities: int = 0
    total_entities: int = 0
    active_delegations: int = 0
    items_waiting_review: int = 0
    remediations_kicked_off: int = 0
    remediations_completed: int = 0

    @property
    def percent_complete(self) -> int:
        if self.total_items == 0:
            return 100
        return int(self.completed_items * 100 / self.total_items)


@dataclass
class Campaign:
    id: str
    name: str
    type: CampaignType
    certifiers: list[str] = field(default_factory=list)
    phase: Phase = Phase.ACTIVE
    next_phase_transition: datetime | None = None
    phase_configs: dict[Phase, PhaseConfig] = field(default_factory=dict)
    use_rolling_phases: bool = False
    process_revokes_immediately: bool = False
    delegation_review_required: bool = False
    signed: datetime | None = None
    entity_ids: list[str] = field(default_factory=list)
    reassignment_count: int = 0
    skipped_phases: list[Phase] = field(default_factory=list)
    statistics: CampaignStatistics = field(default_factory=CampaignStatistics)
    created: datetime = field(default_factory=utc_now)

    def is_signed(self) -> bool:
        return self.signed is not None

    def phase_config(self, phase: Phase) -> PhaseConfig | None:
        return self.phase_configs.get(phase)

    def is_phase_enabled(self, phase: Phase) -> bool:
        if phase in (Phase.ACTIVE, Phase.CLOSED):
            return True
        config = self.phase_config(phase)
        return config is not None and config.enabled

    def is_challenge_enabled(self) -> bool:
        return self.is_phase_enabled(Phase.CHALLENGE)

    def is_remediation_enabled(self) -> bool:
        return self.is_phase_enabled(Phase.REMEDIATION)

    def phase_duration(self, phase: Phase) -> float | None:
        config = self.phase_config(phase)
        return config.duration_days if config else None


@dataclass
class RemediationItem:
    item_id: str
    entity_id: str
    plan: Plan | None = None
    completed: bool = False


@dataclass
class WorkItem:
    id: str
    type: WorkItemType
    owner: str
    requester: str | None = None
    description: str | None = None
    campaign_id: str | None = None
    entity_id: str | None = None
    item_id: str | None = None
    created: datetime = field(default_factory=utc_now)
    expiration: datetime | None = None
    notification: datetime | None = None
    state: WorkItemState | None = None
    remediation_items: list[RemediationItem] = field(default_factory=list)

    def is_open(self) -> bool:
        return self.state is None

    def has_remediation_item(self, item_id: str) -> bool:
        return any(entry.item_id == item_id for entry in self.remediation_items)

    def add_remediation_item(self, entry: RemediationItem) -> bool:
        if self.has_remediation_item(entry.item_id):
            return False
        self.remediation_items.append(entry)
        return True
