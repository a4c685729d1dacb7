from __future__ import annotations

import pytest

from access_review.collaborators.hooks import (
    HOOK_PRE_DELEGATION,
    PreDelegationHookParams,
    RegisteredRuleHooks,
    parse_delegation_result,
)
from access_review.errors import HookError


def _params() -> PreDelegationHookParams:
    return PreDelegationHookParams(
        campaign_id="c1",
        campaign_name="Review",
        entity_id="e-bob",
        subject="bob",
        decider="alice",
        recipient="dave",
    )


def test_unregistered_hook_returns_none() -> None:
    hooks = RegisteredRuleHooks()
    assert not hooks.has_hook(HOOK_PRE_DELEGATION)
    assert hooks.run_hook(HOOK_PRE_DELEGATION, _params()) is None


def test_registered_hook_receives_frozen_params() -> None:
    hooks = RegisteredRuleHooks()
    seen: list[PreDelegationHookParams] = []
    hooks.register(HOOK_PRE_DELEGATION, lambda params: seen.append(params) or {"reassign": True})

    raw = hooks.run_hook(HOOK_PRE_DELEGATION, _params())

    assert seen[0].version == 1
    assert parse_delegation_result(raw).reassign is True
    with pytest.raises(AttributeError):
        seen[0].recipient = "mallory"


def test_failing_hook_raises_hook_error() -> None:
    hooks = RegisteredRuleHooks()

    def broken(_params: PreDelegationHookParams) -> None:
        raise KeyError("recipient")

    hooks.register(HOOK_PRE_DELEGATION, broken)

    with pytest.raises(HookError, match="pre-delegation"):
        hooks.run_hook(HOOK_PRE_DELEGATION, _params())


def test_parse_delegation_result_validates_shape() -> None:
    assert parse_delegation_result(None) is None
    result = parse_delegation_result({"recipient": "carol", "comments": "covering"})
    assert result.recipient == "carol"
    assert result.reassign is False

    with pytest.raises(HookError, match="expected a mapping"):
        parse_delegation_result(["carol"])
    with pytest.raises(HookError, match="Invalid pre-delegation hook result"):
        parse_delegation_result({"owner": "carol"})
