from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from access_review.policy.loader import load_policy
from access_review.policy.models import (
    ReviewPolicy,
    SelfCertificationLevel,
    SelfCertificationPolicy,
    SelfCertificationRelation,
)


def test_load_policy_file_not_found(tmp_path: Path) -> None:
    missing = tmp_path / "missing-policy.yaml"
    with pytest.raises(FileNotFoundError):
        load_policy(str(missing))


def test_load_policy_success(tmp_path: Path) -> None:
    policy = {
        "self_certification": {"level": "certification_admin", "admins": ["root"]},
        "reassignment": {"limit": 3},
        "mitigation": {"default_duration_days": 30},
    }
    path = tmp_path / "policy.yaml"
    path.write_text(yaml.safe_dump(policy), encoding="utf-8")

    loaded = load_policy(str(path))

    assert loaded.self_certification.level == SelfCertificationLevel.CERTIFICATION_ADMIN
    assert loaded.reassignment.limit == 3
    assert loaded.mitigation.default_duration_days == 30
    assert loaded.remediation.default_remediator is None


def test_empty_policy_file_uses_defaults(tmp_path: Path) -> None:
    path = tmp_path / "policy.yaml"
    path.write_text("", encoding="utf-8")

    loaded = load_policy(str(path))

    assert loaded == ReviewPolicy()
    assert loaded.self_certification.relations == [SelfCertificationRelation.IDENTITY]


def test_repository_policy_file_loads() -> None:
    path = Path(__file__).resolve().parents[1] / "review_policy.yaml"

    loaded = load_policy(str(path))

    assert SelfCertificationRelation.WORKGROUP in loaded.self_certification.relations
    assert loaded.remediation.work_item_duration_days == 14


def test_load_policy_accepts_path(tmp_path: Path) -> None:
    path = tmp_path / "policy.yaml"
    path.write_text("reassignment:\n  limit: 2\n", encoding="utf-8")

    assert load_policy(path).reassignment.limit == 2


def test_load_policy_rejects_directory(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_policy(tmp_path)


def test_load_policy_reports_invalid_values(tmp_path: Path) -> None:
    path = tmp_path / "policy.yaml"
    path.write_text("self_certification:\n  level: sometimes\n", encoding="utf-8")

    with pytest.raises(RuntimeError, match="Invalid review policy") as excinfo:
        load_policy(path)

    assert isinstance(excinfo.value.__cause__, ValidationError)


def test_load_policy_rejects_non_mapping(tmp_path: Path) -> None:
    path = tmp_path / "policy.yaml"
    path.write_text("- root\n- alice\n", encoding="utf-8")

    with pytest.raises(RuntimeError, match="must be a mapping, got list"):
        load_policy(path)


def test_load_policy_reports_malformed_yaml(tmp_path: Path) -> None:
    path = tmp_path / "policy.yaml"
    path.write_text("reassignment: [limit: 2\n", encoding="utf-8")

    with pytest.raises(RuntimeError, match="not valid YAML"):
        load_policy(path)


def test_null_lists_become_empty() -> None:
    policy = SelfCertificationPolicy.model_validate({"relations": None, "admins": None})
    assert policy.relations == []
    assert policy.admins == []


def test_invalid_reassignment_limit_rejected() -> None:
    with pytest.raises(ValidationError):
        ReviewPolicy.from_yaml({"reassignment": {"limit": -1}})


@pytest.mark.parametrize(
    ("level", "decider", "allowed"),
    [
        ("none", "root", False),
        ("all", "anyone", True),
        ("certification_admin", "root", True),
        ("certification_admin", "alice", False),
    ],
)
def test_self_certification_allows(level: str, decider: str, allowed: bool) -> None:
    policy = SelfCertificationPolicy(level=level, admins=["root"])
    assert policy.allows(decider) is allowed
