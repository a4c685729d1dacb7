"""Notification collaborator."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Protocol

from access_review.logging_utils import get_logger
from access_review.utils.time import utc_now_iso

logger = get_logger(__name__)

TEMPLATE_REMEDIATION = "remediation-work-item"
TEMPLATE_REMEDIATION_NOTIFICATION = "remediation-notification"
TEMPLATE_CHALLENGE_GENERATED = "challenge-generated"
TEMPLATE_CHALLENGE_EXPIRED = "challenge-expired"
TEMPLATE_CHALLENGE_DECISION_EXPIRED = "challenge-decision-expired"


class Notifier(Protocol):
    def send_batch(self, template: str, recipients: list[str], args: dict[str, Any]) -> None: ...


@dataclass
class SentNotification:
    template: str
    recipients: list[str]
    args: dict[str, Any]
    sent_at: str = field(default_factory=utc_now_iso)


class LoggingNotifier:
    """Logs each batch and keeps it for inspection."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.sent: list[SentNotification] = []

    def send_batch(self, template: str, recipients: list[str], args: dict[str, Any]) -> None:
        if not recipients:
            logger.debug("Skipping %s notification with no recipients", template)
            return
        with self._lock:
            self.sent.append(SentNotification(template, list(recipients), dict(args)))
        logger.info("Sent %s to %s", template, ", ".join(recipients))

    def sent_to(self, recipient: str) -> list[SentNotification]:
        return [entry for entry in self.sent if recipient in entry.recipients]
