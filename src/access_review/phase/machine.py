"""Campaign and item phase transitions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from access_review.audit.db import Auditor
from access_review.audit.models import AUDIT_CAMPAIGN_PHASED
from access_review.collaborators.store import Store
from access_review.decision.locking import CampaignLockManager
from access_review.domain.models import PHASE_ORDER, Campaign, Entity, Item, Phase
from access_review.errors import PhaseTransitionError
from access_review.logging_utils import get_logger
from access_review.phase.handlers import PhaseHandler
from access_review.utils.chunking import chunked
from access_review.utils.time import days_from, utc_now

logger = get_logger(__name__)

SYSTEM_ACTOR = "system"


@dataclass
class TransitionReport:
    campaigns_advanced: int = 0
    items_advanced: int = 0
    items_rewound: int = 0
    contended: int = 0


class PhaseStateMachine:
    def __init__(
        self,
        store: Store,
        handlers: dict[Phase, PhaseHandler],
        auditor: Auditor,
        *,
        lock_manager: CampaignLockManager | None = None,
        lock_timeout_seconds: float = 5.0,
        batch_size: int = 100,
    ) -> None:
        self._store = store
        self._handlers = handlers
        self._auditor = auditor
        self._locks = lock_manager
        self._lock_timeout = lock_timeout_seconds
        self._batch_size = batch_size

    def handler(self, phase: Phase) -> PhaseHandler:
        return self._handlers[phase]

    def next_phase(
        self, campaign: Campaign, current: Phase, *, record_skips: bool = True
    ) -> Phase | None:
        """First phase after ``current`` that is enabled and not skipped."""
        for phase in PHASE_ORDER[current.ordinal + 1 :]:
            if not campaign.is_phase_enabled(phase):
                continue
            if self.handler(phase).is_skipped(campaign):
                if record_skips and phase not in campaign.skipped_phases:
                    campaign.skipped_phases.append(phase)
                    logger.info("Skipping %s phase of campaign %s", phase.value, campaign.id)
                continue
            return phase
        return None

    # Campaign level

    def change_phase(self, campaign: Campaign, phase: Phase, actor: str = SYSTEM_ACTOR) -> None:
        previous = campaign.phase
        if phase == previous:
            return
        if previous == Phase.CLOSED:
            raise PhaseTransitionError(f"Campaign {campaign.id} is closed")
        if not campaign.is_phase_enabled(phase):
            raise PhaseTransitionError(
                f"Phase {phase.value} is not enabled for campaign {campaign.id}"
            )

        old_handler = self.handler(previous)
        new_handler = self.handler(phase)

        old_handler.exit_phase(campaign)
        campaign.phase = phase
        campaign.next_phase_transition = self._deadline(campaign, phase)
        self._store.save(campaign)
        new_handler.enter_phase(campaign)
        self._store.save(campaign)
        self._store.commit()

        old_handler.post_exit(campaign)
        new_handler.post_enter(campaign)

        self._auditor.record(
            actor,
            AUDIT_CAMPAIGN_PHASED,
            campaign.id,
            previous=previous.value,
            phase=phase.value,
        )
        logger.info(
            "Campaign %s moved from %s to %s", campaign.id, previous.value, phase.value
        )

    def advance_phase(self, campaign: Campaign, actor: str = SYSTEM_ACTOR) -> Phase | None:
        target = self.next_phase(campaign, campaign.phase)
        if target is None:
            return None
        self.change_phase(campaign, target, actor)
        return target

    # Item level

    def change_item_phase(
        self, campaign: Campaign, entity: Entity, item: Item, phase: Phase
    ) -> None:
        previous = item.phase or Phase.ACTIVE
        if phase == previous:
            return
        self.handler(previous).exit_item(campaign, entity, item)
        item.phase = phase
        item.next_phase_transition = self._deadline(campaign, phase)
        self.handler(phase).enter_item(campaign, entity, item)
        self._store.save(item)
        logger.debug("Item %s moved from %s to %s", item.id, previous.value, phase.value)

    def advance_item(self, campaign: Campaign, entity: Entity, item: Item) -> Phase | None:
        current = item.phase or Phase.ACTIVE
        target = self.next_phase(campaign, current, record_skips=False)
        if target is None:
            return None
        self.change_item_phase(campaign, entity, item, target)
        return target

    def rewind_phase(self, campaign: Campaign, entity: Entity, item: Item) -> None:
        """Send an item back to Active so it can be decided again."""
        self.change_item_phase(campaign, entity, item, Phase.ACTIVE)

    def handle_rolling_phase_transition(
        self, campaign: Campaign, entity: Entity, item: Item
    ) -> Phase | None:
        """Move a rolling item at most one step. Returns the phase it moved to."""
        if not campaign.use_rolling_phases:
            return None
        current = item.phase or Phase.ACTIVE
        if current == Phase.CLOSED:
            return None

        challenge = item.challenge
        if (
            current == Phase.CHALLENGE
            and challenge is not None
            and challenge.was_accepted()
            and not item.is_acted_upon()
        ):
            self.rewind_phase(campaign, entity, item)
            return Phase.ACTIVE

        if self.handler(current).item_ready_to_advance(campaign, item):
            return self.advance_item(campaign, entity, item)
        return None

    def handle_rolling_phase_transitions(
        self, campaign: Campaign, item_ids: list[str]
    ) -> TransitionReport:
        report = TransitionReport()
        remediation_entered = False
        for chunk in chunked(item_ids, self._batch_size):
            for item_id in self._store.find(Item, within=chunk):
                item = self._store.load(Item, item_id)
                entity = self._store.load(Entity, item.entity_id) if item else None
                if entity is None:
                    continue
                moved = self.handle_rolling_phase_transition(campaign, entity, item)
                if moved == Phase.ACTIVE:
                    report.items_rewound += 1
                elif moved is not None:
                    report.items_advanced += 1
                    remediation_entered |= moved == Phase.REMEDIATION
            self._store.commit()
        if remediation_entered:
            self.handler(Phase.REMEDIATION).post_enter(campaign)
        return report

    # Scheduler entry point

    def transition_due(self, now: datetime | None = None) -> TransitionReport:
        """Advance campaigns and rolling items whose transition time has passed."""
        now = now or utc_now()
        report = TransitionReport()
        due = self._store.find(
            Campaign,
            lambda campaign: campaign.phase != Phase.CLOSED
            and (
                campaign.use_rolling_phases
                or (
                    campaign.next_phase_transition is not None
                    and campaign.next_phase_transition <= now
                )
            ),
        )
        for campaign_id in due:
            if self._locks is None:
                self._transition_campaign(campaign_id, now, report)
                continue
            result = self._locks.run_locked(
                campaign_id,
                lambda: self._transition_campaign(campaign_id, now, report),
                self._lock_timeout,
            )
            if result.timed_out:
                report.contended += 1
        return report

    def _transition_campaign(
        self, campaign_id: str, now: datetime, report: TransitionReport
    ) -> None:
        self._store.release_working_set()
        campaign = self._store.load(Campaign, campaign_id)
        if campaign is None:
            return

        if campaign.next_phase_transition is not None and campaign.next_phase_transition <= now:
            if self.advance_phase(campaign) is not None:
                report.campaigns_advanced += 1
            campaign = self._store.load(Campaign, campaign_id) or campaign

        if campaign.use_rolling_phases:
            due_items = self._store.find(
                Item,
                lambda item: item.campaign_id == campaign_id
                and item.next_phase_transition is not None
                and item.next_phase_transition <= now,
            )
            remediation_entered = False
            for chunk in chunked(due_items, self._batch_size):
                for item_id in chunk:
                    item = self._store.load(Item, item_id)
                    entity = self._store.load(Entity, item.entity_id) if item else None
                    # Active items wait for a decision, not for the clock.
                    if entity is None or (item.phase or Phase.ACTIVE) == Phase.ACTIVE:
                        continue
                    moved = self.advance_item(campaign, entity, item)
                    if moved is not None:
                        report.items_advanced += 1
                        remediation_entered |= moved == Phase.REMEDIATION
                self._store.commit()
            if remediation_entered:
                self.handler(Phase.REMEDIATION).post_enter(campaign)
        self._store.save(campaign)
        self._store.commit()
        self._store.release_working_set()

    @staticmethod
    def _deadline(campaign: Campaign, phase: Phase) -> datetime | None:
        if phase == Phase.CLOSED:
            return None
        return days_from(utc_now(), campaign.phase_duration(phase))
