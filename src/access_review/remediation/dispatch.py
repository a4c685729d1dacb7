"""Queued creation of remediation work items.

Work items are collected during a remediation pass and written in batches at
the end. An item's readiness flag is cleared in the same commit that stores
its work item, so an interrupted pass leaves it ready to be picked up again.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from access_review.collaborators.notification import TEMPLATE_REMEDIATION, Notifier
from access_review.collaborators.store import Store
from access_review.domain.models import (
    Campaign,
    Item,
    RemediationItem,
    WorkItem,
    WorkItemType,
    new_id,
)
from access_review.logging_utils import get_logger
from access_review.plan.models import Plan
from access_review.utils.chunking import chunked
from access_review.utils.time import days_from, utc_now

logger = get_logger(__name__)


@dataclass
class _QueuedWorkItem:
    work_item: WorkItem
    item_ids: list[str] = field(default_factory=list)
    follower_ids: list[str] = field(default_factory=list)


class WorkItemDispatcher:
    def __init__(
        self,
        store: Store,
        notifier: Notifier,
        *,
        batch_size: int,
        notify: bool = True,
        duration_days: int | None = None,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._batch_size = batch_size
        self._notify = notify
        self._duration_days = duration_days
        self._queued: dict[tuple[str, str], _QueuedWorkItem] = {}
        self._by_item: dict[str, _QueuedWorkItem] = {}

    def queue(
        self,
        campaign: Campaign,
        item: Item,
        owner: str,
        plan: Plan | None,
        *,
        requester: str | None = None,
        description: str | None = None,
    ) -> WorkItem:
        """Add ``item`` to the open remediation task of ``owner``, creating one if needed."""
        key = (campaign.id, owner)
        queued = self._queued.get(key)
        if queued is None:
            work_item = self._find_open(campaign.id, owner) or WorkItem(
                id=new_id(),
                type=WorkItemType.REMEDIATION,
                owner=owner,
                requester=requester,
                description=description or f"Remediate access revoked in {campaign.name}",
                campaign_id=campaign.id,
                expiration=days_from(utc_now(), self._duration_days),
            )
            queued = self._queued[key] = _QueuedWorkItem(work_item)

        entry = RemediationItem(item_id=item.id, entity_id=item.entity_id, plan=plan)
        # An interrupted earlier pass may already have stored the entry.
        queued.work_item.add_remediation_item(entry)
        if item.id not in queued.item_ids:
            queued.item_ids.append(item.id)
        self._by_item[item.id] = queued
        return queued.work_item

    def follow(self, leader_id: str, follower_id: str) -> WorkItem | None:
        """Give ``follower_id`` the work item queued for ``leader_id``."""
        queued = self._by_item.get(leader_id)
        if queued is None:
            return None
        if follower_id not in queued.follower_ids:
            queued.follower_ids.append(follower_id)
        self._by_item[follower_id] = queued
        return queued.work_item

    def is_queued(self, item_id: str) -> bool:
        return item_id in self._by_item

    def work_item_for(self, item_id: str) -> WorkItem | None:
        queued = self._by_item.get(item_id)
        return queued.work_item if queued else None

    @property
    def pending(self) -> int:
        return len(self._queued)

    def flush(self) -> list[WorkItem]:
        """Store queued work items, kick off their items and notify new owners."""
        written: list[WorkItem] = []
        for batch in chunked(list(self._queued.values()), self._batch_size):
            for queued in batch:
                self._store.save(queued.work_item)
                for item_id in [*queued.item_ids, *queued.follower_ids]:
                    self._kick_off(item_id, queued.work_item)
                written.append(queued.work_item)
            self._store.commit()
            logger.debug("Stored %d remediation work items", len(batch))

        self._queued = {}
        self._by_item = {}
        self._send_notifications(written)
        return written

    def _kick_off(self, item_id: str, work_item: WorkItem) -> None:
        item = self._store.load(Item, item_id)
        if item is None or item.action is None:
            return
        item.action.work_item = work_item.id
        item.action.remediation_kicked_off = True
        item.ready_for_remediation = False
        self._store.save(item)

    def _find_open(self, campaign_id: str, owner: str) -> WorkItem | None:
        matches = self._store.find(
            WorkItem,
            lambda work_item: work_item.type == WorkItemType.REMEDIATION
            and work_item.is_open()
            and work_item.campaign_id == campaign_id
            and work_item.owner == owner,
        )
        if not matches:
            return None
        return self._store.load(WorkItem, matches[0])

    def _send_notifications(self, work_items: list[WorkItem]) -> None:
        pending = [work_item for work_item in work_items if work_item.notification is None]
        if not pending or not self._notify:
            return

        recipients = sorted({work_item.owner for work_item in pending})
        self._notifier.send_batch(
            TEMPLATE_REMEDIATION,
            recipients,
            {"workItems": [work_item.id for work_item in pending]},
        )
        now = utc_now()
        for work_item in pending:
            work_item.notification = now
            self._store.save(work_item)
        self._store.commit()
