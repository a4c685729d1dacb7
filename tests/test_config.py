from __future__ import annotations

import pytest

from access_review import config


@pytest.fixture
def no_dotenv(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "load_dotenv", lambda **_: None)
    for key in config.ENV_KEYS.values():
        monkeypatch.delenv(key, raising=False)


def test_resolve_path_absolute_inside_project() -> None:
    root = str(config._project_root().resolve())
    absolute = f"{root}/data/test_file"
    assert config._resolve_path(absolute) == absolute


def test_resolve_path_absolute_outside_project_rejected() -> None:
    with pytest.raises(ValueError, match="Path traversal detected"):
        config._resolve_path("/tmp/example")


def test_env_int_uses_default_for_blank(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_INT_VALUE", "")
    assert config._env_int("TEST_INT_VALUE", 7) == 7


def test_env_int_invalid_value_returns_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_INT_INVALID", "not_a_number")
    assert config._env_int("TEST_INT_INVALID", 42) == 42


def test_env_float_invalid_value_returns_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_FLOAT_INVALID", "soon")
    assert config._env_float("TEST_FLOAT_INVALID", 2.5) == 2.5


def test_env_bool(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_BOOL_VALUE", " Yes ")
    assert config._env_bool("TEST_BOOL_VALUE", False) is True
    monkeypatch.setenv("TEST_BOOL_VALUE", "off")
    assert config._env_bool("TEST_BOOL_VALUE", True) is False
    assert config._env_bool("TEST_BOOL_MISSING", True) is True


def test_defaults(no_dotenv: None) -> None:
    settings = config.load_settings()

    assert settings.decisions.batch_size == 20
    assert settings.decisions.max_in_query_size == 1000
    assert settings.remediation.batch_size == 100
    assert settings.remediation.default_remediator is None
    assert settings.policy.path.endswith("review_policy.yaml")
    assert config.load_settings() is settings


def test_environment_overrides(no_dotenv: None, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DECISION_BATCH_SIZE", "5")
    monkeypatch.setenv("DECISION_LOCK_TIMEOUT_SECONDS", "0.5")
    monkeypatch.setenv("REMEDIATION_NOTIFY", "false")
    monkeypatch.setenv("DEFAULT_REMEDIATOR", "  helpdesk ")
    monkeypatch.setenv("CHALLENGE_BATCH_SIZE", "10")

    settings = config.load_settings()

    assert settings.decisions.batch_size == 5
    assert settings.decisions.lock_timeout_seconds == 0.5
    assert settings.remediation.notify_on_remediation is False
    assert settings.remediation.default_remediator == "helpdesk"
    assert settings.phases.challenge_batch_size == 10


def test_blank_default_remediator_is_none(
    no_dotenv: None, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("DEFAULT_REMEDIATOR", "   ")
    assert config.load_settings().remediation.default_remediator is None


def test_load_settings_raises_runtime_error_on_validation(
    no_dotenv: None, monkeypatch: pytest.MonkeyPatch
) -> None:
    # Batch size minimum is 1.
    monkeypatch.setenv("DECISION_BATCH_SIZE", "0")

    with pytest.raises(RuntimeError, match="Invalid configuration"):
        config.load_settings()


def test_audit_path_outside_project_rejected(
    no_dotenv: None, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("AUDIT_SQLITE_PATH", "/tmp/audit.sqlite")

    with pytest.raises(ValueError, match="Path traversal detected"):
        config.load_settings()
