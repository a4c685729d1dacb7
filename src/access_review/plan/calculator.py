"""Remediation plan calculation.

Maps a decided item to the plan fragment that would carry out its decision.
Calculation only reads the directory snapshot; it never writes, locks or talks to
a target system, so callers may use it freely for previews.
"""

from __future__ import annotations

import copy
from typing import Iterable

from access_review.domain.directory import Directory, Identity, RoleDefinition
from access_review.domain.models import (
    ActionStatus,
    Campaign,
    Item,
    ItemSubType,
    ItemType,
    PolicyViolation,
)
from access_review.logging_utils import get_logger
from access_review.plan.models import (
    ARG_DEASSIGN_ENTITLEMENTS,
    ARG_PROFILE_DESCRIPTION,
    ARG_PROFILE_ORDINAL,
    ATTR_ASSIGNED_ROLES,
    ATTR_DETECTED_ROLES,
    INTERNAL_APPLICATION,
    OBJECT_TYPE_ROLE,
    ROLE_ATTR_CAPABILITIES,
    ROLE_ATTR_INHERITANCE,
    ROLE_ATTR_PERMITS,
    ROLE_ATTR_PROFILES,
    ROLE_ATTR_REQUIREMENTS,
    ROLE_ATTR_SCOPES,
    AccountRequest,
    AttributeRequest,
    ObjectRequest,
    Operation,
    PermissionRequest,
    Plan,
    PlanSource,
    RequestOperation,
    empty_to_none,
)

logger = get_logger(__name__)

OBJECT_TYPE_GROUP = "group"

_ROLE_RELATIONSHIP_ATTRIBUTES = {
    ItemType.BUSINESS_ROLE_HIERARCHY: ROLE_ATTR_INHERITANCE,
    ItemType.BUSINESS_ROLE_PERMIT: ROLE_ATTR_PERMITS,
    ItemType.BUSINESS_ROLE_REQUIREMENT: ROLE_ATTR_REQUIREMENTS,
}

_ROLE_CATALOG_ATTRIBUTES = {
    ItemType.BUSINESS_ROLE_PROFILE: ROLE_ATTR_PROFILES,
    ItemType.BUSINESS_ROLE_GRANTED_CAPABILITY: ROLE_ATTR_CAPABILITIES,
    ItemType.BUSINESS_ROLE_GRANTED_SCOPE: ROLE_ATTR_SCOPES,
}


class RemediationPlanCalculator:
    """Builds the plan fragment for an item and a desired status."""

    def __init__(self, directory: Directory) -> None:
        self._directory = directory

    def calculate_plan(
        self,
        item: Item,
        status: ActionStatus | None = None,
        *,
        revoke_account: bool | None = None,
        campaign: Campaign | None = None,
        siblings: Iterable[Item] = (),
    ) -> Plan | None:
        """Return the plan for ``item`` in ``status``, or None when nothing applies.

        ``status`` defaults to the item's current action status. ``siblings`` are
        the other items of the same entity; approved role items among them may
        contribute role additions to a policy violation plan.
        """
        action = item.action
        if status is None:
            if action is None:
                return None
            status = action.status
        if revoke_account is None:
            revoke_account = bool(action and action.revoke_account)

        if status == ActionStatus.APPROVED:
            if item.type != ItemType.BUNDLE:
                return None
            plan = self._approval_plan(item)
        elif status == ActionStatus.REMEDIATED:
            plan = self._remediation_plan(item, revoke_account, campaign, siblings)
        else:
            return None

        plan = empty_to_none(plan)
        if plan is None:
            return None

        plan.tracking_id = item.id
        plan.identity = item.identity
        plan.source = PlanSource(
            id=campaign.id if campaign else item.campaign_id,
            name=campaign.name if campaign else None,
        )
        plan.stamp(item.id)
        return plan

    def missing_requirements_plan(self, item: Item) -> Plan | None:
        """Plan adding the required roles an approved role grant is missing."""
        if item.type != ItemType.BUNDLE:
            return None
        role = self._directory.get_role(item.bundle)
        identity = self._directory.get_identity(item.identity)
        if role is None or identity is None:
            return None

        account = AccountRequest(application=INTERNAL_APPLICATION, native_identity=identity.name)
        for required in self._required_role_names(role, set()):
            if not identity.has_role(required):
                account.add(
                    AttributeRequest(
                        name=ATTR_ASSIGNED_ROLES,
                        value=required,
                        operation=Operation.ADD,
                    )
                )
        if not account.has_changes():
            return None
        return Plan(account_requests=[account], identity=identity.name)

    def _approval_plan(self, item: Item) -> Plan | None:
        action = item.action
        if action is None or action.additional_actions is None:
            return None
        return action.additional_actions.copy()

    def _remediation_plan(
        self,
        item: Item,
        revoke_account: bool,
        campaign: Campaign | None,
        siblings: Iterable[Item],
    ) -> Plan | None:
        if item.type.is_account_scoped:
            return self._exception_plan(item, revoke_account, campaign)
        if item.type in _ROLE_RELATIONSHIP_ATTRIBUTES:
            return self._role_relationship_plan(item, _ROLE_RELATIONSHIP_ATTRIBUTES[item.type])
        if item.type in _ROLE_CATALOG_ATTRIBUTES:
            return self._role_catalog_plan(item, _ROLE_CATALOG_ATTRIBUTES[item.type])
        if item.type == ItemType.BUNDLE:
            return self._role_plan(item)
        if item.type == ItemType.POLICY_VIOLATION:
            return self._violation_plan(item, siblings)
        return None

    def _exception_plan(
        self, item: Item, revoke_account: bool, campaign: Campaign | None
    ) -> Plan | None:
        snapshot = item.entitlements
        if snapshot is None:
            return None

        plan = Plan()
        if revoke_account or (item.type == ItemType.ACCOUNT and snapshot.is_account_only()):
            # Account already gone from the identity: nothing left to delete.
            identity = self._directory.get_identity(item.identity)
            if identity is None or identity.get_link(*snapshot.account_key()) is None:
                return None
            plan.add(
                AccountRequest(
                    application=snapshot.application,
                    instance=snapshot.instance,
                    native_identity=snapshot.native_identity,
                    operation=RequestOperation.DELETE,
                )
            )
            return plan

        certifies_identities = campaign.type.certifies_identities if campaign else True
        request: AccountRequest | ObjectRequest
        if item.account_group and not certifies_identities:
            request = ObjectRequest(
                object_type=OBJECT_TYPE_GROUP,
                application=snapshot.application,
                native_identity=item.account_group,
            )
        else:
            request = AccountRequest(
                application=snapshot.application,
                instance=snapshot.instance,
                native_identity=snapshot.native_identity,
            )
        for name, values in snapshot.attributes.items():
            for value in values:
                request.add(AttributeRequest(name=name, value=value))
        for permission in snapshot.permissions:
            request.add(PermissionRequest(target=permission.target, rights=list(permission.rights)))
        plan.add(request)
        return plan

    def _role_relationship_plan(self, item: Item, attribute: str) -> Plan | None:
        child = self._directory.get_role_by_id(item.target_id) or self._directory.get_role(
            item.target_name
        )
        if child is None:
            logger.warning(
                "Role %s referenced by item %s no longer exists", item.target_id, item.id
            )
            return None
        parent = self._directory.get_role(item.parent_role)
        if parent is None:
            return None

        request = ObjectRequest(object_type=OBJECT_TYPE_ROLE, native_identity=parent.name)
        request.add(AttributeRequest(name=attribute, value=child.name))
        return Plan(object_requests=[request])

    def _role_catalog_plan(self, item: Item, attribute: str) -> Plan | None:
        target = self._directory.get_catalog_object(item.target_id)
        if target is None:
            return None
        parent = self._directory.get_role(item.parent_role)
        if parent is None:
            return None

        attribute_request = AttributeRequest(name=attribute, value=target.name)
        if attribute == ROLE_ATTR_PROFILES and target.application:
            # Profiles have no display name of their own.
            attribute_request.display_value = target.application
            if target.ordinal is not None:
                attribute_request.arguments[ARG_PROFILE_ORDINAL] = target.ordinal
            if target.description:
                attribute_request.arguments[ARG_PROFILE_DESCRIPTION] = target.description

        request = ObjectRequest(object_type=OBJECT_TYPE_ROLE, native_identity=parent.name)
        request.add(attribute_request)
        return Plan(object_requests=[request])

    def _role_plan(self, item: Item) -> Plan | None:
        role = self._directory.get_role(item.bundle)
        if role is None:
            return None
        identity = self._directory.get_identity(item.identity)

        account = AccountRequest(application=INTERNAL_APPLICATION, native_identity=item.identity)
        assigned = item.sub_type == ItemSubType.ASSIGNED_ROLE
        account.add(
            AttributeRequest(
                name=ATTR_ASSIGNED_ROLES if assigned else ATTR_DETECTED_ROLES,
                value=role.name,
                operation=self._role_operation(identity, role.name),
                assignment_id=item.bundle_assignment_id,
                arguments={ARG_DEASSIGN_ENTITLEMENTS: True} if assigned else {},
            )
        )
        if assigned:
            self._add_dependent_role_requests(role, identity, item.bundle_assignment_id, account)
        return Plan(account_requests=[account])

    def _violation_plan(self, item: Item, siblings: Iterable[Item]) -> Plan | None:
        violation = item.violation
        if violation is None:
            return None

        if violation.is_entitlement_kind() or (
            violation.entitlements_to_remediate and not violation.roles_marked_for_remediation
        ):
            plan = self._entitlement_violation_plan(violation)
            if plan is None:
                return None
        else:
            plan = self._role_violation_plan(violation)

        added = self._added_assigned_roles(item, siblings)
        if added is not None:
            plan.add(added)
        return plan

    def _role_violation_plan(self, violation: PolicyViolation) -> Plan:
        identity = self._directory.get_identity(violation.identity)
        account = AccountRequest(
            application=INTERNAL_APPLICATION, native_identity=violation.identity
        )

        for role_name in violation.roles_marked_for_remediation:
            assignments = identity.role_assignments_for(role_name) if identity else []
            assignment_id = assignments[0].assignment_id if assignments else None
            account.add(
                AttributeRequest(
                    name=ATTR_ASSIGNED_ROLES if assignments else ATTR_DETECTED_ROLES,
                    value=role_name,
                    operation=self._role_operation(identity, role_name),
                    assignment_id=assignment_id,
                    arguments={ARG_DEASSIGN_ENTITLEMENTS: True},
                )
            )
            if assignments:
                role = self._directory.get_role(role_name)
                if role is not None:
                    self._add_dependent_role_requests(role, identity, assignment_id, account)

        return Plan(account_requests=[account])

    def _entitlement_violation_plan(self, violation: PolicyViolation) -> Plan | None:
        identity = self._directory.get_identity(violation.identity)
        plan = Plan()
        for node in violation.entitlements_to_remediate:
            if node.contributing_entitlements:
                # Effective entitlement: no directly assignable value to remove.
                return None

            leaf: AttributeRequest | PermissionRequest
            if node.permission:
                leaf = PermissionRequest(target=node.name, rights=[node.value])
            else:
                leaf = AttributeRequest(name=node.name, value=node.value)

            application = node.application or INTERNAL_APPLICATION
            added = False
            if application != INTERNAL_APPLICATION and identity is not None:
                for link in identity.links_for(application):
                    if node.value in link.attributes.get(node.name, []):
                        request = AccountRequest(
                            application=application,
                            instance=link.instance,
                            native_identity=link.native_identity,
                        )
                        request.add(copy.deepcopy(leaf))
                        plan.add(request)
                        added = True
            if not added:
                request = AccountRequest(
                    application=application,
                    instance=node.instance,
                    native_identity=node.native_identity,
                )
                request.add(leaf)
                plan.add(request)
        return plan

    def _added_assigned_roles(self, item: Item, siblings: Iterable[Item]) -> AccountRequest | None:
        account = AccountRequest(application=INTERNAL_APPLICATION, native_identity=item.identity)
        for sibling in siblings:
            if sibling.id == item.id or not sibling.has_status(ActionStatus.APPROVED):
                continue
            additional = sibling.action.additional_actions if sibling.action else None
            if additional is None:
                continue
            for request in additional.account_requests:
                for attribute_request in request.attribute_requests:
                    account.add(
                        AttributeRequest(
                            name=attribute_request.name,
                            value=attribute_request.value,
                            operation=attribute_request.operation,
                            assignment_id=attribute_request.assignment_id,
                        )
                    )
        return account if account.has_changes() else None

    def _add_dependent_role_requests(
        self,
        role: RoleDefinition,
        identity: Identity | None,
        assignment_id: str | None,
        account: AccountRequest,
    ) -> None:
        for required in self._required_role_names(role, set()):
            account.add(
                AttributeRequest(
                    name=ATTR_DETECTED_ROLES,
                    value=required,
                    assignment_id=assignment_id,
                    arguments={ARG_DEASSIGN_ENTITLEMENTS: True},
                )
            )
        assignment = identity.assignment_by_id(assignment_id) if identity else None
        if assignment is None:
            return
        for permitted in assignment.permitted_roles:
            account.add(
                AttributeRequest(
                    name=ATTR_DETECTED_ROLES,
                    value=permitted,
                    assignment_id=assignment_id,
                    arguments={ARG_DEASSIGN_ENTITLEMENTS: True},
                )
            )

    def _required_role_names(self, role: RoleDefinition, seen: set[str]) -> list[str]:
        """Required roles of ``role`` and of everything it inherits from."""
        if role.name in seen:
            return []
        seen.add(role.name)
        names: list[str] = []
        for super_name in role.inheritance:
            super_role = self._directory.get_role(super_name)
            if super_role is not None:
                inherited = self._required_role_names(super_role, seen)
                names.extend(n for n in inherited if n not in names)
        for required in role.requirements:
            if required not in names:
                names.append(required)
        return names

    @staticmethod
    def _role_operation(identity: Identity | None, role_name: str) -> Operation:
        # Revoke unless every assignment is manual with a known assigner.
        if identity is None:
            return Operation.REMOVE
        for assignment in identity.role_assignments_for(role_name):
            if not assignment.manual or assignment.assigner is None:
                return Operation.REVOKE
        return Operation.REMOVE

