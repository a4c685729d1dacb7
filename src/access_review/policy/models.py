"""Review policy configuration models."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


def _ensure_list(v: Any) -> list:
    """Convert None to empty list, pass through lists."""
    if v is None:
        return []
    return v


class SelfCertificationLevel(str, Enum):
    NONE = "none"
    CERTIFICATION_ADMIN = "certification_admin"
    ALL = "all"


class SelfCertificationRelation(str, Enum):
    IDENTITY = "identity"
    WORKGROUP = "workgroup"


class SelfCertificationPolicy(BaseModel):
    level: SelfCertificationLevel = Field(default=SelfCertificationLevel.NONE)
    relations: list[SelfCertificationRelation] = Field(
        default_factory=lambda: [SelfCertificationRelation.IDENTITY]
    )
    admins: list[str] = Field(default_factory=list)

    @field_validator("relations", "admins", mode="before")
    @classmethod
    def _validate_lists(cls, v: Any) -> list:
        return _ensure_list(v)

    def allows(self, decider: str) -> bool:
        if self.level == SelfCertificationLevel.ALL:
            return True
        if self.level == SelfCertificationLevel.CERTIFICATION_ADMIN:
            return decider in self.admins
        return False


class ReassignmentPolicy(BaseModel):
    limit: int | None = Field(default=None, ge=0)


class MitigationPolicy(BaseModel):
    default_duration_days: int | None = Field(default=None, ge=1)


class RemediationPolicy(BaseModel):
    default_remediator: str | None = Field(default=None)
    work_item_duration_days: int | None = Field(default=None, ge=1)


class ChallengePolicy(BaseModel):
    work_item_description: str = Field(default="Challenge revocation of {target} in {campaign}")


class ReviewPolicy(BaseModel):
    version: int = Field(default=1)
    self_certification: SelfCertificationPolicy = Field(default_factory=SelfCertificationPolicy)
    reassignment: ReassignmentPolicy = Field(default_factory=ReassignmentPolicy)
    mitigation: MitigationPolicy = Field(default_factory=MitigationPolicy)
    remediation: RemediationPolicy = Field(default_factory=RemediationPolicy)
    challenge: ChallengePolicy = Field(default_factory=ChallengePolicy)

    @classmethod
    def from_yaml(cls, data: dict[str, Any]) -> ReviewPolicy:
        return cls.model_validate(data)
