"""Default remediator resolution."""

from __future__ import annotations

from access_review.domain.directory import Directory
from access_review.domain.models import Item, ItemType
from access_review.domain.owners import NoOwnerFound, OwnerFound, OwnerResolution
from access_review.plan.models import INTERNAL_APPLICATION, Plan


class DefaultRemediatorResolver:
    """Finds who should carry out a remediation nobody was named for.

    Order: the role owner for role items, the single remediator (or owner)
    shared by every application the plan touches, the violation owner, then
    the configured defaults.
    """

    def __init__(
        self,
        directory: Directory,
        policy_default: str | None = None,
        settings_default: str | None = None,
    ) -> None:
        self._directory = directory
        self._defaults = [name for name in (policy_default, settings_default) if name]

    def resolve(self, item: Item, plan: Plan | None) -> OwnerResolution:
        if item.type.is_role_structure or item.type == ItemType.BUNDLE:
            role_name = item.parent_role if item.type.is_role_structure else item.bundle
            role = self._directory.get_role(role_name)
            if role is not None and role.owner:
                return OwnerFound(role.owner)

        if plan is not None:
            found = self._application_remediator(plan)
            if found is not None:
                return found

        if item.type == ItemType.POLICY_VIOLATION and item.violation and item.violation.owner:
            return OwnerFound(item.violation.owner)

        if self._defaults:
            return OwnerFound(self._defaults[0])
        return NoOwnerFound(f"no default remediator for item {item.id}")

    def _application_remediator(self, plan: Plan) -> OwnerResolution | None:
        names = [name for name in plan.applications() if name != INTERNAL_APPLICATION]
        if not names:
            return None

        remediators: set[str] = set()
        owners: set[str | None] = set()
        for name in names:
            application = self._directory.get_application(name)
            if application is None:
                owners.add(None)
                continue
            remediators.update(application.remediators)
            owners.add(application.owner)

        if len(remediators) == 1:
            return OwnerFound(next(iter(remediators)))
        if len(owners) == 1 and None not in owners:
            return OwnerFound(next(iter(owners)))
        return None
