"""Engine assembly."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache

from access_review.audit.db import Auditor, SqliteAuditLog
from access_review.collaborators.hooks import RegisteredRuleHooks, RuleHooks
from access_review.collaborators.notification import LoggingNotifier, Notifier
from access_review.collaborators.provisioning import CatalogProvisioningEngine, ProvisioningEngine
from access_review.collaborators.store import InMemoryDatabase, InMemoryStore
from access_review.config import Settings, load_settings
from access_review.decision.locking import CampaignLockManager, LockResult
from access_review.decision.processor import DecisionProcessor
from access_review.domain.decisions import Decision, DecisionResults
from access_review.domain.models import (
    ActionStatus,
    Campaign,
    Entity,
    Item,
    Phase,
    WorkItem,
    WorkItemState,
)
from access_review.errors import DecisionError
from access_review.logging_utils import configure_logging, get_logger
from access_review.phase.handlers import PhaseContext, default_handlers
from access_review.phase.machine import PhaseStateMachine, TransitionReport
from access_review.plan.calculator import RemediationPlanCalculator
from access_review.plan.models import Plan
from access_review.policy.loader import load_policy
from access_review.policy.models import ReviewPolicy
from access_review.remediation.manager import RemediationManager, RemediationPreview

logger = get_logger(__name__)


@dataclass
class ReviewSession:
    """Components bound to one store session."""

    store: InMemoryStore
    calculator: RemediationPlanCalculator
    remediation: RemediationManager
    phases: PhaseStateMachine


@dataclass
class ReviewEngine:
    """Process-wide dependency container.

    Stateless components are shared; anything that holds a working set is built
    per call through ``session()``.
    """

    settings: Settings
    policy: ReviewPolicy
    database: InMemoryDatabase
    auditor: Auditor
    locks: CampaignLockManager
    provisioning: ProvisioningEngine
    notifier: Notifier
    hooks: RuleHooks

    def session(self) -> ReviewSession:
        store = self.database.session()
        calculator = RemediationPlanCalculator(store.directory)
        remediation = RemediationManager(
            store,
            calculator,
            self.provisioning,
            self.notifier,
            self.auditor,
            policy=self.policy,
            settings=self.settings,
        )
        context = PhaseContext(
            store=store,
            remediation=remediation,
            notifier=self.notifier,
            auditor=self.auditor,
            policy=self.policy,
            settings=self.settings,
        )
        phases = PhaseStateMachine(
            store,
            default_handlers(context),
            self.auditor,
            lock_manager=self.locks,
            lock_timeout_seconds=self.settings.decisions.lock_timeout_seconds,
            batch_size=self.settings.remediation.batch_size,
        )
        return ReviewSession(store, calculator, remediation, phases)

    def processor(self, campaign_id: str, decider: str) -> DecisionProcessor:
        session = self.session()
        return DecisionProcessor(
            session.store,
            campaign_id,
            decider,
            lock_manager=self.locks,
            calculator=session.calculator,
            remediation=session.remediation,
            policy=self.policy,
            settings=self.settings,
            hooks=self.hooks,
            phases=session.phases,
        )

    def decide(
        self,
        campaign_id: str,
        decider: str,
        decisions: list[Decision],
        simple_result: bool = False,
    ) -> DecisionResults:
        return self.processor(campaign_id, decider).decide(decisions, simple_result)

    def flush(self, campaign_id: str) -> LockResult[None]:
        session = self.session()

        def work() -> None:
            campaign = session.store.load(Campaign, campaign_id)
            if campaign is not None:
                session.remediation.flush(campaign)

        return self.locks.run_locked(
            campaign_id, work, self.settings.decisions.lock_timeout_seconds
        )

    def change_phase(
        self, campaign_id: str, phase: Phase, actor: str = "system"
    ) -> LockResult[None]:
        session = self.session()

        def work() -> None:
            campaign = session.store.load(Campaign, campaign_id)
            if campaign is not None:
                session.phases.change_phase(campaign, phase, actor)

        return self.locks.run_locked(
            campaign_id, work, self.settings.decisions.lock_timeout_seconds
        )

    def transition_due(self, now: datetime | None = None) -> TransitionReport:
        return self.session().phases.transition_due(now)

    def calculate_plan(self, item_id: str, status: ActionStatus | None = None) -> Plan | None:
        session = self.session()
        item = session.store.load(Item, item_id)
        if item is None:
            return None
        campaign = session.store.load(Campaign, item.campaign_id)
        return session.calculator.calculate_plan(item, status, campaign=campaign)

    def preview_remediation(self, item_id: str) -> RemediationPreview | None:
        session = self.session()
        item = session.store.load(Item, item_id)
        if item is None:
            return None
        campaign = session.store.load(Campaign, item.campaign_id)
        return session.remediation.calculate_remediation_details(campaign, item)

    def respond_to_challenge(
        self,
        item_id: str,
        actor: str,
        *,
        challenge: bool,
        comments: str | None = None,
    ) -> LockResult[None]:
        """Record the affected person's answer to a challenge.

        Challenging hands the task to the item's certifier for a decision;
        accepting lets the revoke stand.
        """
        session = self.session()
        store = session.store
        item = store.load(Item, item_id)
        if item is None:
            raise DecisionError(f"Item {item_id} does not exist.", item_id)
        campaign_id = item.campaign_id

        def work() -> None:
            store.release_working_set()
            current = store.load(Item, item_id)
            record = current.challenge
            if record is None or not record.is_active() or record.challenger_acted():
                raise DecisionError("The item has no open challenge.", item_id)
            if actor != record.owner_name:
                raise DecisionError(f"{actor} does not own the challenge.", item_id)

            work_item = store.load(WorkItem, record.work_item) if record.work_item else None
            if challenge:
                record.challenge(comments)
                if work_item is not None:
                    entity = store.load(Entity, current.entity_id)
                    campaign = store.load(Campaign, campaign_id)
                    work_item.owner = (
                        current.certifier
                        or (entity.certifier if entity else None)
                        or (campaign.certifiers[0] if campaign and campaign.certifiers else actor)
                    )
            else:
                record.accept_decision(comments)
                if work_item is not None:
                    work_item.state = WorkItemState.FINISHED
            if work_item is not None:
                store.save(work_item)
            store.save(current)

            campaign = store.load(Campaign, campaign_id)
            entity = store.load(Entity, current.entity_id)
            if campaign is not None and entity is not None:
                session.phases.handle_rolling_phase_transition(campaign, entity, current)
            store.commit()
            logger.info(
                "%s %s the revoke of item %s",
                actor,
                "challenged" if challenge else "accepted",
                item_id,
            )

        return self.locks.run_locked(
            campaign_id, work, self.settings.decisions.lock_timeout_seconds
        )


def build_engine(
    settings: Settings,
    policy: ReviewPolicy,
    *,
    database: InMemoryDatabase | None = None,
    auditor: Auditor | None = None,
    notifier: Notifier | None = None,
    provisioning: ProvisioningEngine | None = None,
    hooks: RuleHooks | None = None,
) -> ReviewEngine:
    database = database or InMemoryDatabase(max_batch_size=settings.decisions.max_in_query_size)
    if auditor is None:
        auditor = SqliteAuditLog(
            settings.storage.audit_sqlite_path, wal=settings.storage.sqlite_wal
        )
    return ReviewEngine(
        settings=settings,
        policy=policy,
        database=database,
        auditor=auditor,
        locks=CampaignLockManager(),
        provisioning=provisioning or CatalogProvisioningEngine(database.directory),
        notifier=notifier or LoggingNotifier(),
        hooks=hooks or RegisteredRuleHooks(),
    )


@lru_cache(maxsize=1)
def get_engine() -> ReviewEngine:
    """Get or create the process-wide engine from settings and the review policy file."""
    settings = load_settings()
    configure_logging(settings.logging)
    return build_engine(settings, load_policy(settings.policy.path))
