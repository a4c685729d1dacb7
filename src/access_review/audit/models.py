"""Data models for audit records."""

from __future__ import annotations

from dataclasses import dataclass, field

AUDIT_REMEDIATE = "Remediate"
AUDIT_CAMPAIGN_PHASED = "CampaignPhased"
AUDIT_CHALLENGE_GENERATED = "ChallengeGenerated"
AUDIT_CHALLENGE_EXPIRED = "ChallengeExpired"


@dataclass
class AuditEventRecord:
    event_id: str
    actor: str | None
    action: str
    target: str | None
    classification: str | None
    created_at: str
    extra: dict[str, object] = field(default_factory=dict)
