import pytest

from access_review.audit.db import SqliteAuditLog
from access_review.audit.models import AUDIT_CAMPAIGN_PHASED, AUDIT_REMEDIATE
from access_review.domain.models import Phase


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "nested" / "audit.db")


@pytest.fixture
def audit_log(db_path):
    sqlite_log = SqliteAuditLog(db_path)
    yield sqlite_log
    sqlite_log.close()


def test_record_and_list(audit_log):
    event = audit_log.record(
        "alice",
        AUDIT_REMEDIATE,
        "i-hr",
        "Work Item",
        campaign="c1",
        owner_before=None,
        owner_after="hr-owner",
    )

    events = audit_log.list_events(AUDIT_REMEDIATE)
    assert [e.event_id for e in events] == [event.event_id]
    stored = events[0]
    assert stored.actor == "alice"
    assert stored.classification == "Work Item"
    assert stored.extra == {"campaign": "c1", "owner_after": "hr-owner", "owner_before": None}


def test_list_filters_by_action_and_target(audit_log):
    audit_log.record("system", AUDIT_CAMPAIGN_PHASED, "c1", previous=Phase.ACTIVE, phase="Closed")
    audit_log.record("alice", AUDIT_REMEDIATE, "i-1")
    audit_log.record("alice", AUDIT_REMEDIATE, "i-2")

    assert len(audit_log.list_events()) == 3
    assert [e.target for e in audit_log.list_events(AUDIT_REMEDIATE)] == ["i-1", "i-2"]
    assert len(audit_log.list_events(target="i-2")) == 1
    phased = audit_log.list_events(AUDIT_CAMPAIGN_PHASED)[0]
    assert phased.extra["previous"] == "Active"


def test_close_is_idempotent(db_path):
    audit_log = SqliteAuditLog(db_path, wal=False)
    audit_log.close()
    audit_log.close()


def test_schema_survives_reopen(db_path):
    first = SqliteAuditLog(db_path)
    first.record(None, AUDIT_REMEDIATE, "i-1")
    first.close()

    second = SqliteAuditLog(db_path)
    try:
        assert len(second.list_events()) == 1
    finally:
        second.close()
