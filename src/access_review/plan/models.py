"""Target-agnostic entitlement change plans.

A plan is a list of account requests (attribute and permission changes on one
account, or deletion of the account) plus object requests (changes to a role or
group definition). Every leaf request remembers the tracking ids of the items
that asked for it, so a master plan built from many fragments can be split back
per item after compilation.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable

INTERNAL_APPLICATION = "IdentityStore"

ATTR_ASSIGNED_ROLES = "assignedRoles"
ATTR_DETECTED_ROLES = "detectedRoles"

ROLE_ATTR_INHERITANCE = "inheritance"
ROLE_ATTR_PERMITS = "permits"
ROLE_ATTR_REQUIREMENTS = "requirements"
ROLE_ATTR_PROFILES = "profiles"
ROLE_ATTR_CAPABILITIES = "capabilities"
ROLE_ATTR_SCOPES = "authorizedScopes"

OBJECT_TYPE_ROLE = "role"

ARG_PROFILE_ORDINAL = "profileOrdinal"
ARG_PROFILE_DESCRIPTION = "profileDescription"
ARG_DEASSIGN_ENTITLEMENTS = "deassignEntitlements"

SOURCE_CERTIFICATION = "Certification"


class Operation(str, Enum):
    ADD = "Add"
    REMOVE = "Remove"
    REVOKE = "Revoke"
    SET = "Set"


class RequestOperation(str, Enum):
    MODIFY = "Modify"
    DELETE = "Delete"


def _add_tracking(target: list[str], ids: Iterable[str]) -> None:
    for tracking_id in ids:
        if tracking_id not in target:
            target.append(tracking_id)


@dataclass
class AttributeRequest:
    name: str
    value: str
    operation: Operation = Operation.REMOVE
    assignment_id: str | None = None
    display_value: str | None = None
    arguments: dict[str, Any] = field(default_factory=dict)
    tracking_ids: list[str] = field(default_factory=list)

    def key(self) -> tuple:
        return ("attribute", self.name, self.value, self.operation, self.assignment_id)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "value": self.value,
            "op": self.operation.value,
        }
        if self.assignment_id:
            data["assignmentId"] = self.assignment_id
        if self.display_value:
            data["displayValue"] = self.display_value
        if self.arguments:
            data["arguments"] = dict(self.arguments)
        if self.tracking_ids:
            data["trackingIds"] = list(self.tracking_ids)
        return data


@dataclass
class PermissionRequest:
    target: str
    rights: list[str]
    operation: Operation = Operation.REMOVE
    tracking_ids: list[str] = field(default_factory=list)

    def key(self) -> tuple:
        return ("permission", self.target, tuple(sorted(self.rights)), self.operation)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "target": self.target,
            "rights": sorted(self.rights),
            "op": self.operation.value,
        }
        if self.tracking_ids:
            data["trackingIds"] = list(self.tracking_ids)
        return data


@dataclass
class _RequestBase:
    attribute_requests: list[AttributeRequest] = field(default_factory=list)
    permission_requests: list[PermissionRequest] = field(default_factory=list)
    tracking_ids: list[str] = field(default_factory=list)

    def add(self, request: AttributeRequest | PermissionRequest) -> None:
        bucket = (
            self.permission_requests
            if isinstance(request, PermissionRequest)
            else self.attribute_requests
        )
        for existing in bucket:
            if existing.key() == request.key():
                _add_tracking(existing.tracking_ids, request.tracking_ids)
                return
        bucket.append(request)

    def leaf_requests(self) -> list[AttributeRequest | PermissionRequest]:
        return [*self.attribute_requests, *self.permission_requests]

    def has_changes(self) -> bool:
        return bool(self.attribute_requests or self.permission_requests)

    def _merge_leaves(self, other: _RequestBase) -> None:
        for request in other.leaf_requests():
            self.add(copy.deepcopy(request))
        _add_tracking(self.tracking_ids, other.tracking_ids)

    def _stamp(self, tracking_id: str) -> None:
        if not self.tracking_ids:
            self.tracking_ids.append(tracking_id)
        for request in self.leaf_requests():
            if not request.tracking_ids:
                request.tracking_ids.append(tracking_id)

    def _tracked_copy(self, tracking_id: str):
        clone = copy.deepcopy(self)
        clone.attribute_requests = [
            r for r in clone.attribute_requests if tracking_id in r.tracking_ids
        ]
        clone.permission_requests = [
            r for r in clone.permission_requests if tracking_id in r.tracking_ids
        ]
        clone.tracking_ids = [tracking_id]
        return clone


@dataclass
class AccountRequest(_RequestBase):
    application: str = INTERNAL_APPLICATION
    native_identity: str | None = None
    instance: str | None = None
    operation: RequestOperation = RequestOperation.MODIFY

    def key(self) -> tuple:
        return ("account", self.application, self.instance, self.native_identity, self.operation)

    def is_empty(self) -> bool:
        return self.operation == RequestOperation.MODIFY and not self.has_changes()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "application": self.application,
            "op": self.operation.value,
        }
        if self.native_identity:
            data["nativeIdentity"] = self.native_identity
        if self.instance:
            data["instance"] = self.instance
        if self.attribute_requests:
            data["attributes"] = [r.to_dict() for r in self.attribute_requests]
        if self.permission_requests:
            data["permissions"] = [r.to_dict() for r in self.permission_requests]
        return data


@dataclass
class ObjectRequest(_RequestBase):
    object_type: str = OBJECT_TYPE_ROLE
    native_identity: str = ""
    application: str | None = None
    operation: RequestOperation = RequestOperation.MODIFY

    def key(self) -> tuple:
        return ("object", self.object_type, self.application, self.native_identity, self.operation)

    def is_empty(self) -> bool:
        return self.operation == RequestOperation.MODIFY and not self.has_changes()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.object_type,
            "nativeIdentity": self.native_identity,
            "op": self.operation.value,
        }
        if self.application:
            data["application"] = self.application
        if self.attribute_requests:
            data["attributes"] = [r.to_dict() for r in self.attribute_requests]
        if self.permission_requests:
            data["permissions"] = [r.to_dict() for r in self.permission_requests]
        return data


@dataclass
class PlanSource:
    id: str
    name: str | None = None
    type: str = SOURCE_CERTIFICATION


@dataclass
class Plan:
    account_requests: list[AccountRequest] = field(default_factory=list)
    object_requests: list[ObjectRequest] = field(default_factory=list)
    tracking_id: str | None = None
    source: PlanSource | None = None
    identity: str | None = None

    def add(self, request: AccountRequest | ObjectRequest) -> None:
        """Add a request, folding it into an existing one with the same key."""
        requests: list = (
            self.object_requests if isinstance(request, ObjectRequest) else self.account_requests
        )
        for existing in requests:
            if existing.key() == request.key():
                existing._merge_leaves(request)
                return
        requests.append(request)

    def merge(self, other: Plan | None) -> None:
        """Merge ``other`` into this plan.

        Merging is idempotent: a request already present (same account, attribute,
        value and operation) only gains the incoming tracking ids.
        """
        if other is None:
            return
        incoming = other.copy()
        if incoming.tracking_id:
            incoming.stamp(incoming.tracking_id)
        for request in incoming.account_requests:
            self.add(request)
        for request in incoming.object_requests:
            self.add(request)
        if self.source is None:
            self.source = incoming.source
        if self.identity is None:
            self.identity = incoming.identity

    def stamp(self, tracking_id: str) -> None:
        """Tag every request that has no tracking id yet."""
        for request in self.requests():
            request._stamp(tracking_id)

    def requests(self) -> list[AccountRequest | ObjectRequest]:
        return [*self.account_requests, *self.object_requests]

    def is_empty(self) -> bool:
        return all(request.is_empty() for request in self.requests())

    def copy(self) -> Plan:
        return copy.deepcopy(self)

    def tracking_ids(self) -> list[str]:
        ids: list[str] = []
        for request in self.requests():
            _add_tracking(ids, request.tracking_ids)
            for leaf in request.leaf_requests():
                _add_tracking(ids, leaf.tracking_ids)
        return ids

    def for_tracking_id(self, tracking_id: str) -> Plan | None:
        """Return the part of this plan requested by ``tracking_id``."""
        result = Plan(tracking_id=tracking_id, source=self.source, identity=self.identity)
        for request in self.requests():
            if tracking_id not in request.tracking_ids and not any(
                tracking_id in leaf.tracking_ids for leaf in request.leaf_requests()
            ):
                continue
            tracked = request._tracked_copy(tracking_id)
            if not tracked.is_empty():
                result.add(tracked)
        return None if result.is_empty() else result

    def filter(self, predicate: Callable[[AccountRequest | ObjectRequest], bool]) -> Plan:
        """Return a copy holding only the requests accepted by ``predicate``."""
        result = Plan(tracking_id=self.tracking_id, source=self.source, identity=self.identity)
        for request in self.requests():
            if predicate(request):
                result.add(copy.deepcopy(request))
        return result

    def without_attribute(self, name: str) -> Plan:
        """Return a copy with every attribute request named ``name`` dropped."""
        result = self.copy()
        for request in result.requests():
            request.attribute_requests = [r for r in request.attribute_requests if r.name != name]
        result.account_requests = [r for r in result.account_requests if not r.is_empty()]
        result.object_requests = [r for r in result.object_requests if not r.is_empty()]
        return result

    def applications(self) -> list[str]:
        names: list[str] = []
        for request in self.account_requests:
            if request.application and request.application not in names:
                names.append(request.application)
        return names

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "accounts": [r.to_dict() for r in self.account_requests],
            "objects": [r.to_dict() for r in self.object_requests],
        }
        if self.tracking_id:
            data["trackingId"] = self.tracking_id
        if self.identity:
            data["identity"] = self.identity
        if self.source:
            data["source"] = {
                "id": self.source.id,
                "name": self.source.name,
                "type": self.source.type,
            }
        return data


def empty_to_none(plan: Plan | None) -> Plan | None:
    if plan is None or plan.is_empty():
        return None
    return plan
