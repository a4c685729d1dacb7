from __future__ import annotations

from typing import Any, Callable

import pytest

from access_review import config
from access_review.audit.db import SqliteAuditLog
from access_review.collaborators.store import InMemoryDatabase
from access_review.config import Settings
from access_review.domain.directory import (
    Application,
    Directory,
    Identity,
    Link,
    RoleAssignment,
    RoleDefinition,
)
from access_review.domain.factories import item_factory_for
from access_review.domain.models import (
    Campaign,
    CampaignType,
    EntitlementSnapshot,
    ItemSubType,
    ItemType,
    Phase,
    PhaseConfig,
)
from access_review.engine import ReviewEngine, build_engine
from access_review.policy.models import ReviewPolicy


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> None:
    config._load_settings_cached.cache_clear()
    yield
    config._load_settings_cached.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def policy() -> ReviewPolicy:
    return ReviewPolicy()


@pytest.fixture
def directory() -> Directory:
    directory = Directory()
    directory.add_identity(
        Identity(
            name="bob",
            manager="mgr",
            workgroups=["eng-team"],
            links=[
                Link("LDAP", "cn=bob", attributes={"memberOf": ["admins"]}),
                Link("HR", "bob01", attributes={"title": ["lead"]}),
            ],
            role_assignments=[RoleAssignment("Engineer", "a1", manual=True, assigner="mgr")],
        )
    )
    directory.add_identity(Identity(name="alice", links=[Link("LDAP", "cn=alice")]))
    directory.add_identity(Identity(name="carol", links=[Link("LDAP", "cn=carol")]))
    directory.add_identity(Identity(name="dave"))
    directory.add_identity(Identity(name="mgr"))
    directory.add_identity(Identity(name="eng-team", workgroup=True))

    directory.add_application(
        Application("LDAP", owner="ldap-owner", remediators=["ldap-admin"], integrated=True)
    )
    directory.add_application(Application("HR", owner="hr-owner"))

    directory.add_role(RoleDefinition("Engineer", owner="role-owner", requirements=["Base"]))
    directory.add_role(RoleDefinition("Base"))
    return directory


@pytest.fixture
def database(directory: Directory) -> InMemoryDatabase:
    return InMemoryDatabase(directory)


@pytest.fixture
def auditor(tmp_path) -> SqliteAuditLog:
    audit_log = SqliteAuditLog(str(tmp_path / "audit.sqlite"))
    yield audit_log
    audit_log.close()


@pytest.fixture
def engine(
    settings: Settings,
    policy: ReviewPolicy,
    database: InMemoryDatabase,
    auditor: SqliteAuditLog,
) -> ReviewEngine:
    return build_engine(settings, policy, database=database, auditor=auditor)


@pytest.fixture
def review_phases() -> dict[Phase, PhaseConfig]:
    return {
        Phase.CHALLENGE: PhaseConfig(Phase.CHALLENGE, duration_days=7),
        Phase.REMEDIATION: PhaseConfig(Phase.REMEDIATION, duration_days=14),
    }


@pytest.fixture
def seed_campaign(database: InMemoryDatabase) -> Callable[..., Campaign]:
    """Identity campaign "c1" certified by alice.

    bob: an LDAP group grant and the LDAP account itself (same account), an HR
    title on an unintegrated application, and the Engineer role.
    alice and carol: one LDAP group grant each.
    """

    def seed(**fields: Any) -> Campaign:
        fields.setdefault("certifiers", ["alice"])
        campaign = Campaign(
            id=fields.pop("id", "c1"),
            name="Quarterly access review",
            type=CampaignType.IDENTITY,
            **fields,
        )
        factory = item_factory_for(campaign.type)

        bob = factory.create_entity(campaign, "bob", id="e-bob", certifier="alice")
        items = [
            factory.create_item(
                campaign,
                bob,
                ItemType.EXCEPTION,
                id="i-ldap-groups",
                entitlements=EntitlementSnapshot(
                    "LDAP", "cn=bob", attributes={"memberOf": ["admins"]}
                ),
            ),
            factory.create_item(
                campaign,
                bob,
                ItemType.ACCOUNT,
                id="i-ldap-acct",
                entitlements=EntitlementSnapshot("LDAP", "cn=bob"),
            ),
            factory.create_item(
                campaign,
                bob,
                ItemType.EXCEPTION,
                id="i-hr",
                entitlements=EntitlementSnapshot("HR", "bob01", attributes={"title": ["lead"]}),
            ),
            factory.create_item(
                campaign,
                bob,
                ItemType.BUNDLE,
                id="i-role",
                bundle="Engineer",
                sub_type=ItemSubType.ASSIGNED_ROLE,
                bundle_assignment_id="a1",
            ),
        ]

        alice = factory.create_entity(campaign, "alice", id="e-alice", certifier="alice")
        items.append(
            factory.create_item(
                campaign,
                alice,
                ItemType.EXCEPTION,
                id="i-alice-ldap",
                entitlements=EntitlementSnapshot(
                    "LDAP", "cn=alice", attributes={"memberOf": ["admins"]}
                ),
            )
        )
        carol = factory.create_entity(campaign, "carol", id="e-carol", certifier="alice")
        items.append(
            factory.create_item(
                campaign,
                carol,
                ItemType.EXCEPTION,
                id="i-carol",
                entitlements=EntitlementSnapshot(
                    "LDAP", "cn=carol", attributes={"memberOf": ["staff"]}
                ),
            )
        )

        database.put(campaign, bob, alice, carol, *items)
        return campaign

    return seed
