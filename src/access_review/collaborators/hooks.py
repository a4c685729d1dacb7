"""Rule hook collaborator.

Hooks receive a frozen, versioned parameter object per hook kind and return a
result that is validated against that kind's result model.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol

from pydantic import BaseModel, ConfigDict, ValidationError

from access_review.errors import HookError
from access_review.logging_utils import get_logger

logger = get_logger(__name__)

HOOK_PRE_DELEGATION = "pre-delegation"


@dataclass(frozen=True)
class PreDelegationHookParams:
    campaign_id: str
    campaign_name: str
    entity_id: str
    subject: str | None
    decider: str
    recipient: str | None
    description: str | None = None
    comments: str | None = None
    item_id: str | None = None
    version: int = 1


class DelegationHookResult(BaseModel):
    """What a pre-delegation hook may change."""

    model_config = ConfigDict(extra="forbid")

    recipient: str | None = None
    description: str | None = None
    comments: str | None = None
    reassign: bool = False


class RuleHooks(Protocol):
    def run_hook(self, name: str, params: PreDelegationHookParams) -> Any: ...


class RegisteredRuleHooks:
    """Hooks registered as plain callables by name."""

    def __init__(self) -> None:
        self._hooks: dict[str, Callable[[Any], Any]] = {}

    def register(self, name: str, hook: Callable[[Any], Any]) -> None:
        self._hooks[name] = hook

    def has_hook(self, name: str) -> bool:
        return name in self._hooks

    def run_hook(self, name: str, params: PreDelegationHookParams) -> Any:
        hook = self._hooks.get(name)
        if hook is None:
            return None
        try:
            return hook(params)
        except Exception as exc:
            logger.warning("Rule hook %s failed: %s", name, exc)
            raise HookError(f"Rule hook '{name}' failed: {exc}") from exc


def parse_delegation_result(raw: Any) -> DelegationHookResult | None:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise HookError(f"Pre-delegation hook returned {type(raw).__name__}, expected a mapping")
    try:
        return DelegationHookResult.model_validate(dict(raw))
    except ValidationError as exc:
        raise HookError(f"Invalid pre-delegation hook result: {exc}") from exc
