from __future__ import annotations

from unittest.mock import patch

import pytest

from access_review.audit.models import AUDIT_REMEDIATE
from access_review.collaborators.notification import (
    TEMPLATE_REMEDIATION,
    TEMPLATE_REMEDIATION_NOTIFICATION,
)
from access_review.config import RemediationSettings, Settings
from access_review.decision.guards import MSG_LOCKED_BY_REVOKES
from access_review.domain.decisions import Decision
from access_review.domain.directory import Application
from access_review.domain.models import (
    Action,
    ActionStatus,
    Campaign,
    Challenge,
    Delegation,
    EntitlementSnapshot,
    Entity,
    EntityType,
    Item,
    ItemType,
    PolicyViolation,
    RemediationAction,
    WorkItem,
    WorkItemType,
)
from access_review.domain.owners import NoOwnerFound, OwnerFound
from access_review.engine import build_engine
from access_review.plan.models import (
    ATTR_ASSIGNED_ROLES,
    AccountRequest,
    AttributeRequest,
    Operation,
    Plan,
    RequestOperation,
)
from access_review.remediation.manager import (
    audit_classification,
    calculate_remediation_action,
)
from access_review.remediation.remediators import DefaultRemediatorResolver


def _plan(application: str = "LDAP") -> Plan:
    request = AccountRequest(application=application, native_identity="cn=bob")
    request.add(AttributeRequest(name="memberOf", value="admins"))
    return Plan(account_requests=[request])


def _ready(database, item_id: str, **action_fields) -> Item:
    item = database.get(Item, item_id)
    item.action = Action(status=ActionStatus.REMEDIATED, actor="alice", **action_fields)
    item.ready_for_remediation = True
    database.put(item)
    return item


def _flush(engine, database) -> None:
    engine.session().remediation.flush(database.get(Campaign, "c1"))


@pytest.mark.parametrize(
    ("automatable", "unmanaged", "force", "expected"),
    [
        (None, None, False, RemediationAction.NO_ACTION_REQUIRED),
        (Plan(), None, False, RemediationAction.NO_ACTION_REQUIRED),
        ("plan", None, False, RemediationAction.SEND_PROVISION_REQUEST),
        (None, "plan", False, RemediationAction.OPEN_WORK_ITEM),
        ("plan", "plan", False, RemediationAction.OPEN_WORK_ITEM),
        (None, None, True, RemediationAction.OPEN_WORK_ITEM),
    ],
)
def test_calculate_remediation_action(automatable, unmanaged, force, expected) -> None:
    automatable = _plan() if automatable == "plan" else automatable
    unmanaged = _plan("HR") if unmanaged == "plan" else unmanaged
    assert (
        calculate_remediation_action(automatable, unmanaged, force_work_item=force) == expected
    )


def test_audit_classification() -> None:
    assert audit_classification(RemediationAction.OPEN_WORK_ITEM) == "Work Item"
    assert audit_classification(RemediationAction.SEND_PROVISION_REQUEST) == "Provisioning Request"
    assert audit_classification(RemediationAction.OPEN_TICKET) == "Trouble Ticket"
    assert audit_classification(RemediationAction.NO_ACTION_REQUIRED) == "Unknown"
    assert audit_classification(None) == "Unknown"


def test_remediator_resolution_order(directory) -> None:
    resolver = DefaultRemediatorResolver(directory, "policy-default", "settings-default")
    role_item = Item(
        id="r", campaign_id="c1", entity_id="e", type=ItemType.BUNDLE, bundle="Engineer"
    )
    ldap_item = Item(id="l", campaign_id="c1", entity_id="e", type=ItemType.EXCEPTION)
    violation_item = Item(
        id="v",
        campaign_id="c1",
        entity_id="e",
        type=ItemType.POLICY_VIOLATION,
        violation=PolicyViolation(id="v1", policy_name="SOD", owner="compliance"),
    )

    assert resolver.resolve(role_item, None) == OwnerFound("role-owner")
    assert resolver.resolve(ldap_item, _plan("LDAP")) == OwnerFound("ldap-admin")
    assert resolver.resolve(ldap_item, _plan("HR")) == OwnerFound("hr-owner")
    assert resolver.resolve(violation_item, None) == OwnerFound("compliance")
    assert resolver.resolve(ldap_item, None) == OwnerFound("policy-default")
    assert isinstance(DefaultRemediatorResolver(directory).resolve(ldap_item, None), NoOwnerFound)


def test_readiness(engine) -> None:
    manager = engine.session().remediation
    item = Item(id="i1", campaign_id="c1", entity_id="e1", type=ItemType.EXCEPTION)
    entity = Entity(id="e1", campaign_id="c1", type=EntityType.IDENTITY, identity="bob")

    assert not manager.mark_for_remediation(item)
    item.action = Action(status=ActionStatus.APPROVED, actor="alice")
    assert not manager.mark_for_remediation(item)

    item.action = Action(status=ActionStatus.REMEDIATED, actor="alice")
    assert manager.mark_for_remediation(item)
    assert manager.is_ready_for_remediation(item, entity)

    item.challenge = Challenge(owner_name="bob")
    assert not manager.is_ready_for_remediation(item, entity)
    item.challenge = None

    entity.delegation = Delegation(owner_name="dave", actor="alice", work_item="w1")
    assert not manager.is_ready_for_remediation(item, entity)
    entity.delegation = None

    item.action.remediation_kicked_off = True
    assert not manager.is_ready_for_remediation(item, entity)


def test_account_revoke_executes_once_for_the_account(engine, database, seed_campaign) -> None:
    seed_campaign(process_revokes_immediately=True)

    engine.decide("c1", "alice", [Decision.for_items("RevokeAccount", "i-ldap-acct")])

    [executed] = engine.provisioning.executed
    [request] = executed.account_requests
    assert request.application == "LDAP"
    assert request.operation == RequestOperation.DELETE
    for item_id in ("i-ldap-acct", "i-ldap-groups"):
        action = database.get(Item, item_id).action
        assert action.remediation_kicked_off
        assert action.remediation_action == RemediationAction.SEND_PROVISION_REQUEST

    events = engine.auditor.list_events(AUDIT_REMEDIATE)
    assert sorted(event.target for event in events) == ["i-ldap-acct", "i-ldap-groups"]
    assert {event.classification for event in events} == {"Provisioning Request"}
    assert engine.notifier.sent_to("alice")[0].template == TEMPLATE_REMEDIATION_NOTIFICATION

    results = engine.decide("c1", "alice", [Decision.for_items("Approved", "i-ldap-groups")])
    assert results.rejections["i-ldap-groups"] == MSG_LOCKED_BY_REVOKES


def test_unmanaged_revoke_opens_work_item(engine, database, seed_campaign) -> None:
    seed_campaign(process_revokes_immediately=True)

    engine.decide("c1", "alice", [Decision.for_items("Remediated", "i-hr")])

    action = database.get(Item, "i-hr").action
    assert action.remediation_action == RemediationAction.OPEN_WORK_ITEM
    assert action.owner_name == "hr-owner"
    [work_item] = [w for w in database.all(WorkItem) if w.type == WorkItemType.REMEDIATION]
    assert work_item.owner == "hr-owner"
    assert action.work_item == work_item.id
    assert action.remediation_kicked_off
    assert [entry.item_id for entry in work_item.remediation_items] == ["i-hr"]
    assert engine.notifier.sent_to("hr-owner")[0].template == TEMPLATE_REMEDIATION
    assert engine.provisioning.executed == []

    [event] = engine.auditor.list_events(AUDIT_REMEDIATE, "i-hr")
    assert event.classification == "Work Item"
    assert event.extra["work_item"] == work_item.id
    assert event.extra["owner_after"] == "hr-owner"


def test_approved_role_provisions_missing_requirements(engine, database, seed_campaign) -> None:
    seed_campaign(process_revokes_immediately=True)

    engine.decide(
        "c1", "alice", [Decision.for_items("Approved", "i-role", provision_missing_roles=True)]
    )

    [executed] = engine.provisioning.executed
    [leaf] = executed.account_requests[0].attribute_requests
    assert (leaf.name, leaf.value, leaf.operation) == (ATTR_ASSIGNED_ROLES, "Base", Operation.ADD)
    action = database.get(Item, "i-role").action
    assert action.status == ActionStatus.APPROVED
    assert action.remediation_kicked_off


def test_flush_waits_for_remediation_phase(engine, database, seed_campaign) -> None:
    seed_campaign()

    engine.decide("c1", "alice", [Decision.for_items("Remediated", "i-carol")])
    assert engine.provisioning.executed == []
    assert not database.get(Item, "i-carol").ready_for_remediation

    _ready(database, "i-carol")
    result = engine.flush("c1")

    assert result.acquired
    assert len(engine.provisioning.executed) == 1
    assert database.get(Item, "i-carol").action.remediation_kicked_off


def test_failed_provisioning_falls_back_to_work_item(engine, database, seed_campaign) -> None:
    seed_campaign()
    _ready(database, "i-carol")

    with patch.object(engine.provisioning, "execute", side_effect=RuntimeError("target down")):
        _flush(engine, database)

    action = database.get(Item, "i-carol").action
    assert action.remediation_action == RemediationAction.OPEN_WORK_ITEM
    assert action.owner_name == "ldap-admin"
    [work_item] = database.all(WorkItem)
    assert work_item.owner == "ldap-admin"
    assert action.work_item == work_item.id
    [event] = engine.auditor.list_events(AUDIT_REMEDIATE, "i-carol")
    assert event.classification == "Work Item"


def test_missing_identity_completes_without_action(engine, database, seed_campaign) -> None:
    campaign = seed_campaign()
    entity = Entity(id="e-ghost", campaign_id="c1", type=EntityType.IDENTITY, identity="ghost")
    entity.item_ids.append("i-ghost")
    campaign.entity_ids.append("e-ghost")
    item = Item(
        id="i-ghost",
        campaign_id="c1",
        entity_id="e-ghost",
        type=ItemType.EXCEPTION,
        identity="ghost",
        entitlements=EntitlementSnapshot("LDAP", "cn=ghost", attributes={"memberOf": ["x"]}),
    )
    database.put(campaign, entity, item)
    _ready(database, "i-ghost")

    _flush(engine, database)

    action = database.get(Item, "i-ghost").action
    assert action.remediation_action == RemediationAction.NO_ACTION_REQUIRED
    assert action.remediation_completed
    assert not database.get(Item, "i-ghost").ready_for_remediation
    assert engine.provisioning.executed == []


def _legacy_item(database, directory) -> None:
    directory.add_application(Application("Legacy"))
    item = database.get(Item, "i-hr")
    item.entitlements = EntitlementSnapshot("Legacy", "bob", attributes={"role": ["ops"]})
    database.put(item)


def test_work_item_falls_back_to_certifiers(engine, database, directory, seed_campaign) -> None:
    seed_campaign()
    _legacy_item(database, directory)
    _ready(database, "i-hr")

    _flush(engine, database)

    action = database.get(Item, "i-hr").action
    assert action.owner_name == "alice"
    [work_item] = database.all(WorkItem)
    assert work_item.owner == "alice"


def test_item_without_remediator_stays_ready(engine, database, directory, seed_campaign) -> None:
    seed_campaign(certifiers=[])
    _legacy_item(database, directory)
    _ready(database, "i-hr")

    _flush(engine, database)

    item = database.get(Item, "i-hr")
    assert item.ready_for_remediation
    assert not item.action.remediation_kicked_off
    assert database.all(WorkItem) == []


def test_notifications_can_be_disabled(policy, database, auditor, seed_campaign) -> None:
    settings = Settings(remediation=RemediationSettings(notify_on_remediation=False))
    engine = build_engine(settings, policy, database=database, auditor=auditor)
    seed_campaign(process_revokes_immediately=True)

    engine.decide("c1", "alice", [Decision.for_items("Remediated", "i-hr", "i-carol")])

    assert engine.notifier.sent == []
    assert database.get(Item, "i-hr").action.remediation_kicked_off
    assert database.get(Item, "i-carol").action.remediation_kicked_off
