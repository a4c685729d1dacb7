from __future__ import annotations

import pytest

from access_review.audit.models import AUDIT_CHALLENGE_EXPIRED, AUDIT_CHALLENGE_GENERATED
from access_review.collaborators.notification import (
    TEMPLATE_CHALLENGE_DECISION_EXPIRED,
    TEMPLATE_CHALLENGE_EXPIRED,
    TEMPLATE_CHALLENGE_GENERATED,
    TEMPLATE_REMEDIATION,
)
from access_review.decision import processor as processor_module
from access_review.decision.guards import MSG_LOCKED_BY_PHASE
from access_review.domain.decisions import ChallengeAction, Decision
from access_review.domain.models import (
    ActionStatus,
    ChallengeDecision,
    Item,
    Phase,
    WorkItem,
    WorkItemState,
    WorkItemType,
)
from access_review.errors import DecisionError


@pytest.fixture
def challenged(engine, database, seed_campaign, review_phases) -> WorkItem:
    """i-hr revoked by alice and in its challenge window; returns the challenge work item."""
    seed_campaign(phase_configs=review_phases)
    engine.decide("c1", "alice", [Decision.for_items("Remediated", "i-hr")])
    engine.change_phase("c1", Phase.CHALLENGE)
    [work_item] = [w for w in database.all(WorkItem) if w.type == WorkItemType.CHALLENGE]
    return work_item


def _challenge_decision(action: ChallengeAction) -> Decision:
    return Decision.for_items("Remediated", "i-hr", challenge_action=action)


def test_entering_challenge_opens_challenges_for_revokes(engine, database, challenged) -> None:
    item = database.get(Item, "i-hr")
    assert item.challenge.owner_name == "bob"
    assert item.challenge.work_item == challenged.id
    assert challenged.owner == "bob"
    assert challenged.expiration is not None
    assert database.get(Item, "i-carol").challenge is None

    [sent] = engine.notifier.sent_to("bob")
    assert sent.template == TEMPLATE_CHALLENGE_GENERATED
    [event] = engine.auditor.list_events(AUDIT_CHALLENGE_GENERATED)
    assert event.target == "i-hr"
    assert event.extra["owner"] == "bob"


def test_revokes_are_frozen_while_challenged(engine, challenged) -> None:
    results = engine.decide("c1", "alice", [Decision.for_items("Approved", "i-hr")])
    assert results.rejections["i-hr"] == MSG_LOCKED_BY_PHASE


def test_challenge_hands_decision_back_to_certifier(engine, database, challenged) -> None:
    engine.respond_to_challenge("i-hr", "bob", challenge=True, comments="still needed")

    item = database.get(Item, "i-hr")
    assert item.challenge.is_challenged()
    assert item.challenge.challenger_comments == "still needed"
    assert database.get(WorkItem, challenged.id).owner == "alice"


def test_accepted_challenge_clears_the_revoke(engine, database, challenged) -> None:
    engine.respond_to_challenge("i-hr", "bob", challenge=True)

    results = engine.decide("c1", "alice", [_challenge_decision(ChallengeAction.ACCEPT)])

    assert results.status == "success"
    item = database.get(Item, "i-hr")
    assert item.action is None
    assert item.history[-1].status == ActionStatus.REMEDIATED
    assert item.challenge.decision == ChallengeDecision.ACCEPTED
    assert item.challenge.decider == "alice"
    assert database.get(WorkItem, challenged.id).state == WorkItemState.CANCELED


def test_rejected_challenge_keeps_the_revoke(engine, database, challenged) -> None:
    engine.respond_to_challenge("i-hr", "bob", challenge=True)

    engine.decide("c1", "alice", [_challenge_decision(ChallengeAction.REJECT)])

    item = database.get(Item, "i-hr")
    assert item.action.status == ActionStatus.REMEDIATED
    assert item.challenge.decision == ChallengeDecision.REJECTED
    assert not item.challenge.is_active()


def test_challenge_decision_needs_an_open_challenge(engine, challenged) -> None:
    results = engine.decide("c1", "alice", [_challenge_decision(ChallengeAction.ACCEPT)])
    assert results.rejections["i-hr"] == processor_module.MSG_NO_ACTIVE_CHALLENGE


def test_accepting_the_revoke_finishes_the_work_item(engine, database, challenged) -> None:
    engine.respond_to_challenge("i-hr", "bob", challenge=False)

    item = database.get(Item, "i-hr")
    assert item.challenge.challenger_accepted
    assert not item.is_challenge_active()
    assert database.get(WorkItem, challenged.id).state == WorkItemState.FINISHED


def test_respond_to_challenge_checks_caller(engine, challenged) -> None:
    with pytest.raises(DecisionError, match="does not own"):
        engine.respond_to_challenge("i-hr", "carol", challenge=True)
    with pytest.raises(DecisionError, match="no open challenge"):
        engine.respond_to_challenge("i-carol", "carol", challenge=True)
    with pytest.raises(DecisionError, match="does not exist"):
        engine.respond_to_challenge("missing", "bob", challenge=True)

    engine.respond_to_challenge("i-hr", "bob", challenge=False)
    with pytest.raises(DecisionError, match="no open challenge"):
        engine.respond_to_challenge("i-hr", "bob", challenge=True)


def test_unanswered_challenge_expires_into_remediation(engine, database, challenged) -> None:
    engine.change_phase("c1", Phase.REMEDIATION)

    item = database.get(Item, "i-hr")
    assert item.challenge.expired
    assert item.challenge.work_item is None
    assert database.get(WorkItem, challenged.id) is None
    assert engine.auditor.list_events(AUDIT_CHALLENGE_EXPIRED)[0].target == "i-hr"
    assert engine.notifier.sent_to("bob")[-1].template == TEMPLATE_CHALLENGE_EXPIRED

    assert item.action.remediation_kicked_off
    assert engine.notifier.sent_to("hr-owner")[0].template == TEMPLATE_REMEDIATION


def test_undecided_challenge_expires_for_certifier(engine, database, challenged) -> None:
    engine.respond_to_challenge("i-hr", "bob", challenge=True)

    engine.change_phase("c1", Phase.REMEDIATION)

    item = database.get(Item, "i-hr")
    assert item.challenge.decision_expired
    assert engine.notifier.sent_to("alice")[0].template == TEMPLATE_CHALLENGE_DECISION_EXPIRED
    assert item.action.remediation_kicked_off


def test_rolling_challenge_accepted_rewinds_item(
    engine, database, seed_campaign, review_phases
) -> None:
    seed_campaign(phase_configs=review_phases, use_rolling_phases=True)
    engine.decide("c1", "alice", [Decision.for_items("Remediated", "i-hr")])
    engine.respond_to_challenge("i-hr", "bob", challenge=True)

    engine.decide("c1", "alice", [_challenge_decision(ChallengeAction.ACCEPT)])

    item = database.get(Item, "i-hr")
    assert item.phase == Phase.ACTIVE
    assert item.action is None


def test_rolling_accepted_revoke_moves_on(engine, database, seed_campaign, review_phases) -> None:
    seed_campaign(phase_configs=review_phases, use_rolling_phases=True)
    engine.decide("c1", "alice", [Decision.for_items("Remediated", "i-hr")])

    engine.respond_to_challenge("i-hr", "bob", challenge=False)

    item = database.get(Item, "i-hr")
    assert item.phase == Phase.REMEDIATION
    assert item.ready_for_remediation

    engine.flush("c1")
    assert database.get(Item, "i-hr").action.work_item is not None


def test_delegated_revoke_waits_for_review(engine, database, seed_campaign, review_phases) -> None:
    seed_campaign(phase_configs=review_phases, delegation_review_required=True)
    engine.decide("c1", "alice", [Decision.for_items("Delegated", "i-hr", recipient="dave")])
    [delegation] = [w for w in database.all(WorkItem) if w.type == WorkItemType.DELEGATION]
    engine.decide(
        "c1", "dave", [Decision.for_items("Remediated", "i-hr", work_item_id=delegation.id)]
    )
    assert database.get(Item, "i-hr").is_waiting_review()

    engine.change_phase("c1", Phase.CHALLENGE)

    assert database.get(Item, "i-hr").challenge is None
    assert [w for w in database.all(WorkItem) if w.type == WorkItemType.CHALLENGE] == []
    assert engine.auditor.list_events(AUDIT_CHALLENGE_GENERATED) == []
