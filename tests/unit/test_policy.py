"""Unit tests for enforcer/governance/policy.py — evaluate_bypass precedence."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from enforcer.config import PolicyConfig
from enforcer.governance.policy import BypassDecision, evaluate_bypass
from enforcer.ledger.models import KeyType
from enforcer.platform.models import Principal

ROBOT = Principal(id=5, name="robot")


def _directory(exists: bool = True, member: bool = True) -> AsyncMock:
    directory = AsyncMock()
    directory.group_exists.return_value = exists
    directory.is_member.return_value = member
    return directory


async def test_authorized_user_is_bamboo_without_directory_calls() -> None:
    directory = _directory()

    decision = await evaluate_bypass(ROBOT, PolicyConfig("robot", "ops"), directory)

    assert decision is BypassDecision.BAMBOO
    directory.group_exists.assert_not_awaited()


async def test_group_member_is_bypass() -> None:
    directory = _directory()

    decision = await evaluate_bypass(ROBOT, PolicyConfig(None, "ops"), directory)

    assert decision is BypassDecision.BYPASS
    directory.is_member.assert_awaited_once_with(ROBOT, "ops")


async def test_non_member_is_none() -> None:
    decision = await evaluate_bypass(ROBOT, PolicyConfig(None, "ops"), _directory(member=False))
    assert decision is BypassDecision.NONE


async def test_missing_group_never_matches_even_if_membership_reported() -> None:
    directory = _directory(exists=False, member=True)

    decision = await evaluate_bypass(ROBOT, PolicyConfig(None, "ops"), directory)

    assert decision is BypassDecision.NONE
    directory.is_member.assert_not_awaited()


async def test_unset_policy_never_matches() -> None:
    directory = _directory()

    decision = await evaluate_bypass(ROBOT, PolicyConfig(), directory)

    assert decision is BypassDecision.NONE
    directory.group_exists.assert_not_awaited()


async def test_user_name_match_is_exact() -> None:
    decision = await evaluate_bypass(Principal(id=6, name="Robot"), PolicyConfig("robot"), _directory(exists=False))
    assert decision is BypassDecision.NONE


def test_key_type_mapping() -> None:
    assert BypassDecision.BAMBOO.key_type is KeyType.BAMBOO
    assert BypassDecision.BYPASS.key_type is KeyType.BYPASS
    with pytest.raises(ValueError):
        BypassDecision.NONE.key_type
