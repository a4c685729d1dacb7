"""Exception hierarchy for the access review engine.

Only per-item and collaborator failures are raised. Conditions that stop a
whole decision batch (signed campaign, lock timeout) are reported through
``DecisionResults`` instead.
"""

from __future__ import annotations


class ReviewError(RuntimeError):
    """Base class for engine errors."""


class DecisionError(ReviewError):
    """A decision could not be applied to one item.

    Caught at the item boundary by the decision processor; the item id is
    recorded as rejected and the batch continues.
    """

    def __init__(self, message: str, item_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.item_id = item_id


class SelfCertificationError(DecisionError):
    """The chosen recipient would end up reviewing their own access."""

    def __init__(self, recipient: str, item_id: str | None = None) -> None:
        super().__init__(
            f"Cannot delegate to {recipient} because they would certify their own access.",
            item_id,
        )
        self.recipient = recipient


class ReassignmentLimitError(DecisionError):
    """The campaign has used up its reassignments."""


class HookError(ReviewError):
    """A rule hook failed or returned a result outside its contract."""


class PhaseTransitionError(ReviewError):
    """A phase change was requested that the campaign configuration forbids."""


class StoreError(ReviewError):
    """The store was used outside its contract."""
