from __future__ import annotations

from datetime import timedelta

import pytest

from access_review.audit.models import AUDIT_CAMPAIGN_PHASED
from access_review.domain.decisions import Decision
from access_review.domain.models import (
    Campaign,
    Item,
    Phase,
    PhaseConfig,
    WorkItem,
    WorkItemState,
    WorkItemType,
)
from access_review.errors import PhaseTransitionError
from access_review.utils.time import utc_now


def _campaign(database) -> Campaign:
    return database.get(Campaign, "c1")


def test_next_phase_follows_enabled_phases(engine, database, seed_campaign) -> None:
    seed_campaign(
        phase_configs={
            Phase.CHALLENGE: PhaseConfig(Phase.CHALLENGE, enabled=False),
            Phase.REMEDIATION: PhaseConfig(Phase.REMEDIATION),
        }
    )
    phases = engine.session().phases
    campaign = _campaign(database)

    assert phases.next_phase(campaign, Phase.ACTIVE) == Phase.REMEDIATION
    assert phases.next_phase(campaign, Phase.REMEDIATION) == Phase.CLOSED
    assert phases.next_phase(campaign, Phase.CLOSED) is None
    assert campaign.skipped_phases == []


def test_signed_campaign_skips_challenge(engine, database, seed_campaign, review_phases) -> None:
    seed_campaign(phase_configs=review_phases, signed=utc_now())
    campaign = _campaign(database)

    assert engine.session().phases.next_phase(campaign, Phase.ACTIVE) == Phase.REMEDIATION
    assert campaign.skipped_phases == [Phase.CHALLENGE]


def test_change_phase_sets_deadline_and_audits(engine, database, seed_campaign, review_phases):
    seed_campaign(phase_configs=review_phases)

    result = engine.change_phase("c1", Phase.CHALLENGE, actor="admin")

    assert result.acquired
    campaign = _campaign(database)
    assert campaign.phase == Phase.CHALLENGE
    remaining = campaign.next_phase_transition - utc_now()
    assert timedelta(days=6) < remaining <= timedelta(days=7)
    [event] = engine.auditor.list_events(AUDIT_CAMPAIGN_PHASED)
    assert event.actor == "admin"
    assert event.extra == {"previous": "Active", "phase": "Challenge"}


def test_same_phase_is_a_no_op(engine, database, seed_campaign) -> None:
    seed_campaign()
    engine.change_phase("c1", Phase.ACTIVE)
    assert engine.auditor.list_events(AUDIT_CAMPAIGN_PHASED) == []


def test_disabled_phase_is_rejected(engine, seed_campaign) -> None:
    seed_campaign()
    with pytest.raises(PhaseTransitionError):
        engine.change_phase("c1", Phase.CHALLENGE)


def test_closed_campaign_cannot_move(engine, seed_campaign, review_phases) -> None:
    seed_campaign(phase=Phase.CLOSED, phase_configs=review_phases)
    with pytest.raises(PhaseTransitionError, match="closed"):
        engine.change_phase("c1", Phase.REMEDIATION)


def test_closing_cancels_open_delegations(engine, database, seed_campaign) -> None:
    seed_campaign()
    engine.decide("c1", "alice", [Decision.for_items("Delegated", "i-hr", recipient="dave")])

    engine.change_phase("c1", Phase.CLOSED)

    [work_item] = database.all(WorkItem)
    assert work_item.type == WorkItemType.DELEGATION
    assert work_item.state == WorkItemState.CANCELED
    campaign = _campaign(database)
    assert campaign.phase == Phase.CLOSED
    assert campaign.next_phase_transition is None


def test_remediation_phase_flushes_decided_revokes(engine, database, seed_campaign) -> None:
    seed_campaign(phase_configs={Phase.REMEDIATION: PhaseConfig(Phase.REMEDIATION)})
    engine.decide("c1", "alice", [Decision.for_items("Remediated", "i-carol", "i-hr")])
    assert engine.provisioning.executed == []

    engine.change_phase("c1", Phase.REMEDIATION)

    assert len(engine.provisioning.executed) == 1
    assert database.get(Item, "i-carol").action.remediation_kicked_off
    assert database.get(Item, "i-hr").action.work_item is not None


def test_decisions_during_remediation_are_processed_at_once(
    engine, database, seed_campaign
) -> None:
    seed_campaign(
        phase=Phase.REMEDIATION,
        phase_configs={Phase.REMEDIATION: PhaseConfig(Phase.REMEDIATION)},
    )

    engine.decide("c1", "alice", [Decision.for_items("Remediated", "i-carol")])

    assert database.get(Item, "i-carol").action.remediation_kicked_off


def test_transition_due_advances_campaigns(engine, database, seed_campaign, review_phases):
    seed_campaign(
        phase_configs=review_phases, next_phase_transition=utc_now() - timedelta(minutes=1)
    )

    report = engine.transition_due()

    assert report.campaigns_advanced == 1
    assert report.contended == 0
    assert _campaign(database).phase == Phase.CHALLENGE


def test_transition_due_ignores_future_deadlines(engine, database, seed_campaign, review_phases):
    seed_campaign(phase_configs=review_phases, next_phase_transition=utc_now() + timedelta(days=1))

    report = engine.transition_due()

    assert report.campaigns_advanced == 0
    assert _campaign(database).phase == Phase.ACTIVE


def test_transition_due_counts_contended_campaigns(engine, database, seed_campaign, review_phases):
    seed_campaign(
        phase_configs=review_phases, next_phase_transition=utc_now() - timedelta(minutes=1)
    )
    engine.settings.decisions.lock_timeout_seconds = 0.05
    lock = engine.locks._lock_for("c1")
    lock.acquire()
    try:
        report = engine.transition_due()
    finally:
        lock.release()

    assert report.contended == 1
    assert _campaign(database).phase == Phase.ACTIVE


def test_rolling_item_moves_to_challenge_when_decided(
    engine, database, seed_campaign, review_phases
) -> None:
    seed_campaign(phase_configs=review_phases, use_rolling_phases=True)

    engine.decide("c1", "alice", [Decision.for_items("Remediated", "i-hr")])
    engine.decide("c1", "alice", [Decision.for_items("Approved", "i-carol")])

    revoked = database.get(Item, "i-hr")
    assert revoked.phase == Phase.CHALLENGE
    assert revoked.challenge.owner_name == "bob"
    assert revoked.next_phase_transition is not None
    approved = database.get(Item, "i-carol")
    assert approved.phase == Phase.CHALLENGE
    assert approved.challenge is None
    assert _campaign(database).phase == Phase.ACTIVE


def test_rolling_items_advance_on_schedule(engine, database, seed_campaign, review_phases):
    seed_campaign(phase_configs=review_phases, use_rolling_phases=True)
    engine.decide("c1", "alice", [Decision.for_items("Remediated", "i-carol")])

    report = engine.transition_due(utc_now() + timedelta(days=8))

    assert report.items_advanced == 1
    item = database.get(Item, "i-carol")
    assert item.phase == Phase.REMEDIATION
    assert item.challenge.expired
    assert item.action.remediation_kicked_off
    assert len(engine.provisioning.executed) == 1
    assert database.get(Item, "i-hr").phase is None
