"""Read-only view of identities, roles and applications referenced by items."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field


@dataclass
class Link:
    application: str
    native_identity: str
    instance: str | None = None
    attributes: dict[str, list[str]] = field(default_factory=dict)

    def key(self) -> tuple[str, str | None, str]:
        return (self.application, self.instance, self.native_identity)


@dataclass
class RoleAssignment:
    role_name: str
    assignment_id: str
    manual: bool = True
    assigner: str | None = None
    permitted_roles: list[str] = field(default_factory=list)


@dataclass
class Identity:
    name: str
    display_name: str | None = None
    email: str | None = None
    manager: str | None = None
    workgroup: bool = False
    workgroups: list[str] = field(default_factory=list)
    links: list[Link] = field(default_factory=list)
    role_assignments: list[RoleAssignment] = field(default_factory=list)
    detected_roles: list[str] = field(default_factory=list)

    def get_link(
        self, application: str, instance: str | None, native_identity: str | None
    ) -> Link | None:
        for link in self.links:
            if link.key() == (application, instance, native_identity):
                return link
        return None

    def links_for(self, application: str) -> list[Link]:
        return [link for link in self.links if link.application == application]

    def role_assignments_for(self, role_name: str) -> list[RoleAssignment]:
        return [a for a in self.role_assignments if a.role_name == role_name]

    def assignment_by_id(self, assignment_id: str | None) -> RoleAssignment | None:
        if assignment_id is None:
            return None
        for assignment in self.role_assignments:
            if assignment.assignment_id == assignment_id:
                return assignment
        return None

    def has_role(self, role_name: str) -> bool:
        return role_name in self.detected_roles or bool(self.role_assignments_for(role_name))


@dataclass
class RoleDefinition:
    name: str
    id: str | None = None
    owner: str | None = None
    inheritance: list[str] = field(default_factory=list)
    requirements: list[str] = field(default_factory=list)
    permits: list[str] = field(default_factory=list)


@dataclass
class CatalogObject:
    """A profile, capability or scope that a role can reference."""

    id: str
    name: str
    application: str | None = None
    description: str | None = None
    ordinal: int | None = None


@dataclass
class Application:
    name: str
    owner: str | None = None
    remediators: list[str] = field(default_factory=list)
    integrated: bool = False


class Directory:
    """In-memory registry of the objects a campaign refers to by name."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._identities: dict[str, Identity] = {}
        self._roles: dict[str, RoleDefinition] = {}
        self._applications: dict[str, Application] = {}
        self._catalog: dict[str, CatalogObject] = {}

    def add_identity(self, identity: Identity) -> Identity:
        with self._lock:
            self._identities[identity.name] = identity
        return identity

    def add_role(self, role: RoleDefinition) -> RoleDefinition:
        if role.id is None:
            role.id = role.name
        with self._lock:
            self._roles[role.name] = role
        return role

    def add_application(self, application: Application) -> Application:
        with self._lock:
            self._applications[application.name] = application
        return application

    def add_catalog_object(self, obj: CatalogObject) -> CatalogObject:
        with self._lock:
            self._catalog[obj.id] = obj
        return obj

    def get_identity(self, name: str | None) -> Identity | None:
        if name is None:
            return None
        return self._identities.get(name)

    def get_role(self, name: str | None) -> RoleDefinition | None:
        if name is None:
            return None
        return self._roles.get(name)

    def get_role_by_id(self, role_id: str | None) -> RoleDefinition | None:
        if role_id is None:
            return None
        for role in self._roles.values():
            if role.id == role_id:
                return role
        return None

    def get_application(self, name: str | None) -> Application | None:
        if name is None:
            return None
        return self._applications.get(name)

    def get_catalog_object(self, object_id: str | None) -> CatalogObject | None:
        if object_id is None:
            return None
        return self._catalog.get(object_id)
