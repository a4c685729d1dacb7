"""Provisioning collaborator.

The engine expands a master plan against the target environment and reports,
per tracking id, which part it can carry out by itself and which part needs a
person.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Protocol

from access_review.domain.directory import Directory
from access_review.logging_utils import get_logger
from access_review.plan.models import (
    INTERNAL_APPLICATION,
    AccountRequest,
    ObjectRequest,
    Plan,
)

logger = get_logger(__name__)


@dataclass
class ItemizedPlan:
    automatable: Plan | None = None
    unmanaged: Plan | None = None

    def is_empty(self) -> bool:
        return self.automatable is None and self.unmanaged is None

    def full_plan(self) -> Plan | None:
        if self.is_empty():
            return None
        plan = Plan()
        plan.merge(self.automatable)
        plan.merge(self.unmanaged)
        return plan


@dataclass
class ProvisioningProject:
    identity: str | None
    plan: Plan
    automatable: Plan = field(default_factory=Plan)
    unmanaged: Plan = field(default_factory=Plan)
    executed: bool = False


class ProvisioningEngine(Protocol):
    def compile(self, plan: Plan, identity: str | None) -> ProvisioningProject: ...

    def itemize(self, project: ProvisioningProject) -> dict[str, ItemizedPlan]: ...

    def execute(self, project: ProvisioningProject) -> None: ...


class CatalogProvisioningEngine:
    """Classifies requests by whether the target application is integrated.

    Role and group definition changes and changes on the internal identity
    store are always automatable. Account requests on applications without an
    integration are left for a person.
    """

    def __init__(self, directory: Directory) -> None:
        self._directory = directory
        self._lock = threading.Lock()
        self.executed: list[Plan] = []

    def is_automatable(self, request: AccountRequest | ObjectRequest) -> bool:
        if isinstance(request, ObjectRequest):
            return True
        if request.application == INTERNAL_APPLICATION:
            return True
        application = self._directory.get_application(request.application)
        return application is not None and application.integrated

    def compile(self, plan: Plan, identity: str | None) -> ProvisioningProject:
        project = ProvisioningProject(identity=identity, plan=plan.copy())
        project.automatable = plan.filter(self.is_automatable)
        project.unmanaged = plan.filter(lambda request: not self.is_automatable(request))
        logger.debug(
            "Compiled plan for %s: %d automatable, %d unmanaged requests",
            identity,
            len(project.automatable.requests()),
            len(project.unmanaged.requests()),
        )
        return project

    def itemize(self, project: ProvisioningProject) -> dict[str, ItemizedPlan]:
        itemized: dict[str, ItemizedPlan] = {}
        for tracking_id in project.plan.tracking_ids():
            itemized[tracking_id] = ItemizedPlan(
                automatable=project.automatable.for_tracking_id(tracking_id),
                unmanaged=project.unmanaged.for_tracking_id(tracking_id),
            )
        return itemized

    def execute(self, project: ProvisioningProject) -> None:
        if project.executed or project.automatable.is_empty():
            return
        with self._lock:
            self.executed.append(project.automatable.copy())
        project.executed = True
        logger.info("Executed provisioning for %s", project.identity)
