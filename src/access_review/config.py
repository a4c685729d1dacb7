"""Configuration management for the access review engine."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class DecisionSettings(BaseModel):
    batch_size: int = Field(
        default=20,
        ge=1,
        le=1000,
        description="Items applied between commits of the decision working set.",
    )
    lock_timeout_seconds: float = Field(default=5.0, ge=0.0, le=600.0)
    max_in_query_size: int = Field(
        default=1000,
        ge=1,
        le=10_000,
        description="Largest id list passed to a single store query.",
    )


class RemediationSettings(BaseModel):
    batch_size: int = Field(default=100, ge=1, le=10_000)
    notify_on_remediation: bool = Field(default=True)
    default_remediator: str | None = Field(default=None)

    @field_validator("default_remediator")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None


class PhaseSettings(BaseModel):
    challenge_batch_size: int = Field(default=50, ge=1, le=10_000)


class StorageSettings(BaseModel):
    audit_sqlite_path: str = Field(default="./data/access_review_audit.sqlite")
    sqlite_wal: bool = Field(default=True)


class PolicySettings(BaseModel):
    path: str = Field(default="./review_policy.yaml")


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    decisions: DecisionSettings = Field(default_factory=DecisionSettings)
    remediation: RemediationSettings = Field(default_factory=RemediationSettings)
    phases: PhaseSettings = Field(default_factory=PhaseSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    policy: PolicySettings = Field(default_factory=PolicySettings)


ENV_KEYS = {
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "decision_batch_size": "DECISION_BATCH_SIZE",
    "lock_timeout": "DECISION_LOCK_TIMEOUT_SECONDS",
    "max_in_query_size": "MAX_IN_QUERY_SIZE",
    "remediation_batch_size": "REMEDIATION_BATCH_SIZE",
    "remediation_notify": "REMEDIATION_NOTIFY",
    "default_remediator": "DEFAULT_REMEDIATOR",
    "challenge_batch_size": "CHALLENGE_BATCH_SIZE",
    "audit_sqlite_path": "AUDIT_SQLITE_PATH",
    "sqlite_wal": "AUDIT_SQLITE_WAL",
    "policy_path": "REVIEW_POLICY_PATH",
}

_TRUE_VALUES = frozenset({"1", "true", "yes"})


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(path: str) -> str:
    candidate = Path(path)
    root = _project_root().resolve()
    if candidate.is_absolute():
        resolved = candidate.resolve()
    else:
        resolved = (root / candidate).resolve()
    if not resolved.is_relative_to(root):
        raise ValueError(f"Path traversal detected: '{path}' resolves outside project root")
    return str(resolved)


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")
    log_file_env = os.getenv(ENV_KEYS["log_file"])

    settings_data: dict[str, object] = {
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
        "decisions": {
            "batch_size": _env_int(
                ENV_KEYS["decision_batch_size"], DecisionSettings().batch_size
            ),
            "lock_timeout_seconds": _env_float(
                ENV_KEYS["lock_timeout"], DecisionSettings().lock_timeout_seconds
            ),
            "max_in_query_size": _env_int(
                ENV_KEYS["max_in_query_size"], DecisionSettings().max_in_query_size
            ),
        },
        "remediation": {
            "batch_size": _env_int(
                ENV_KEYS["remediation_batch_size"], RemediationSettings().batch_size
            ),
            "notify_on_remediation": _env_bool(
                ENV_KEYS["remediation_notify"],
                RemediationSettings().notify_on_remediation,
            ),
            "default_remediator": os.getenv(ENV_KEYS["default_remediator"]),
        },
        "phases": {
            "challenge_batch_size": _env_int(
                ENV_KEYS["challenge_batch_size"], PhaseSettings().challenge_batch_size
            ),
        },
        "storage": {
            "audit_sqlite_path": _resolve_path(
                os.getenv(ENV_KEYS["audit_sqlite_path"], StorageSettings().audit_sqlite_path)
            ),
            "sqlite_wal": _env_bool(ENV_KEYS["sqlite_wal"], StorageSettings().sqlite_wal),
        },
        "policy": {
            "path": _resolve_path(os.getenv(ENV_KEYS["policy_path"], PolicySettings().path)),
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    Path(settings.storage.audit_sqlite_path).parent.mkdir(parents=True, exist_ok=True)

    return settings
