"""Per-campaign exclusive locks."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, TypeVar

from access_review.logging_utils import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class LockStatus(str, Enum):
    ACQUIRED = "acquired"
    TIMED_OUT = "timed_out"
    NOT_APPLICABLE = "not_applicable"


@dataclass
class LockResult(Generic[T]):
    status: LockStatus
    value: T | None = None

    @property
    def acquired(self) -> bool:
        return self.status == LockStatus.ACQUIRED

    @property
    def timed_out(self) -> bool:
        return self.status == LockStatus.TIMED_OUT


class CampaignLockManager:
    """Named locks keyed by campaign id, shared by every caller in the process."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, campaign_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(campaign_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[campaign_id] = lock
            return lock

    def is_locked(self, campaign_id: str) -> bool:
        return self._lock_for(campaign_id).locked()

    def run_locked(
        self,
        campaign_id: str | None,
        work: Callable[[], T],
        timeout_seconds: float,
    ) -> LockResult[T]:
        """Run ``work`` while holding the campaign lock.

        Waits at most ``timeout_seconds``. Exceptions raised by ``work`` propagate
        after the lock is released.
        """
        if not campaign_id:
            return LockResult(LockStatus.NOT_APPLICABLE)

        lock = self._lock_for(campaign_id)
        if not lock.acquire(timeout=max(timeout_seconds, 0.0)):
            logger.warning(
                "Timed out after %.1fs waiting for lock on campaign %s",
                timeout_seconds,
                campaign_id,
            )
            return LockResult(LockStatus.TIMED_OUT)
        try:
            return LockResult(LockStatus.ACQUIRED, work())
        finally:
            lock.release()
