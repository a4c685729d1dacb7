"""Decision requests and results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, field_validator

from access_review.domain.models import ActionStatus


class DecisionStatus(str, Enum):
    APPROVED = "Approved"
    REMEDIATED = "Remediated"
    REVOKE_ACCOUNT = "RevokeAccount"
    MITIGATED = "Mitigated"
    ACKNOWLEDGED = "Acknowledged"
    DELEGATED = "Delegated"
    CLEARED = "Cleared"
    UNDO = "Undo"
    UNDO_DELEGATION = "UndoDelegation"
    REASSIGN = "Reassign"
    ACCOUNT_REASSIGN = "AccountReassign"
    APPROVE_ACCOUNT = "ApproveAccount"
    ACCEPT_DELEGATION_REVIEW = "AcceptDelegationReview"
    REJECT_DELEGATION_REVIEW = "RejectDelegationReview"

    def action_status(self) -> ActionStatus | None:
        return _ACTION_STATUSES.get(self)


_ACTION_STATUSES = {
    DecisionStatus.APPROVED: ActionStatus.APPROVED,
    DecisionStatus.APPROVE_ACCOUNT: ActionStatus.APPROVED,
    DecisionStatus.REMEDIATED: ActionStatus.REMEDIATED,
    DecisionStatus.REVOKE_ACCOUNT: ActionStatus.REMEDIATED,
    DecisionStatus.MITIGATED: ActionStatus.MITIGATED,
    DecisionStatus.ACKNOWLEDGED: ActionStatus.ACKNOWLEDGED,
}

PRIORITY_STATUSES = frozenset(
    {
        DecisionStatus.UNDO_DELEGATION,
        DecisionStatus.ACCEPT_DELEGATION_REVIEW,
        DecisionStatus.REJECT_DELEGATION_REVIEW,
    }
)


class ChallengeAction(str, Enum):
    ACCEPT = "Accept"
    REJECT = "Reject"


class SelectionCriteria(BaseModel):
    """Which items (or entities) a decision applies to.

    Either an explicit id list, or every candidate accepted by ``filter`` minus
    ``exclusions`` when ``select_all`` is set.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    selections: list[str] = Field(default_factory=list)
    select_all: bool = False
    filter: Callable[[Any], bool] | None = None
    exclusions: list[str] = Field(default_factory=list)

    @property
    def is_bulk(self) -> bool:
        return self.select_all or len(self.selections) > 1

    @property
    def is_empty(self) -> bool:
        return not self.select_all and not self.selections


class Decision(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    status: DecisionStatus
    selection: SelectionCriteria = Field(default_factory=SelectionCriteria)
    criteria_groups: list[SelectionCriteria] = Field(default_factory=list)
    entity_decision: bool = False

    recipient: str | None = None
    description: str | None = None
    comments: str | None = None
    work_item_id: str | None = None

    revoke_delegation: bool = False
    revoke_entity_delegation: bool = False

    challenge_action: ChallengeAction | None = None
    challenge_comments: str | None = None
    one_step_challenge: bool = False

    mitigation_expiration: datetime | None = None
    mitigation_expires_next_cert: bool = False

    provision_missing_roles: bool = False
    revoked_roles: list[str] | None = None
    selected_violation_entitlements: list[tuple[str | None, str, str]] | None = None

    @field_validator("recipient", "comments", "description", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @classmethod
    def for_items(cls, status: DecisionStatus | str, *item_ids: str, **fields: Any) -> Decision:
        return cls(
            status=DecisionStatus(status),
            selection=SelectionCriteria(selections=list(item_ids)),
            **fields,
        )

    @classmethod
    def for_entities(
        cls, status: DecisionStatus | str, *entity_ids: str, **fields: Any
    ) -> Decision:
        return cls(
            status=DecisionStatus(status),
            selection=SelectionCriteria(selections=list(entity_ids)),
            entity_decision=True,
            **fields,
        )

    def is_priority(self) -> bool:
        return self.status in PRIORITY_STATUSES

    def is_bulk(self) -> bool:
        if self.criteria_groups:
            return True
        return self.selection.is_bulk


RESULT_SUCCESS = "success"
RESULT_WARNING = "warning"
RESULT_ERROR = "error"
RESULT_TIMEOUT = "timeout"


@dataclass
class DecisionResults:
    status: str = RESULT_SUCCESS
    timed_out: bool = False
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    invalid_item_ids: list[str] = field(default_factory=list)
    rejections: dict[str, str] = field(default_factory=dict)
    completed_items: int | None = None
    total_items: int | None = None
    completed_entities: int | None = None
    total_entities: int | None = None
    percent_complete: int | None = None
    active_delegations: int | None = None
    ready_for_signoff: bool | None = None
    work_item_complete: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "status": self.status,
            "timedOut": self.timed_out,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "invalidItemIds": list(self.invalid_item_ids),
        }
        if self.completed_items is not None:
            data.update(
                {
                    "completedItems": self.completed_items,
                    "totalItems": self.total_items,
                    "completedEntities": self.completed_entities,
                    "totalEntities": self.total_entities,
                    "percentComplete": self.percent_complete,
                    "activeDelegations": self.active_delegations,
                    "readyForSignoff": self.ready_for_signoff,
                }
            )
        if self.work_item_complete is not None:
            data["workItemComplete"] = self.work_item_complete
        return data
