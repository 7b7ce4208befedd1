"""Bypass policy evaluation.

Decides whether an externally created key may stay without having been
generated by the enforcer. Precedence is fixed: the authorized automation
account is checked before the authorized group, and the first match wins.
An unset policy element never matches. A configured group that does not
exist never matches, even if the directory would report membership.
"""

from __future__ import annotations

from enum import Enum

from enforcer.config import PolicyConfig
from enforcer.ledger.models import KeyType
from enforcer.platform.models import Principal
from enforcer.platform.protocol import PrincipalDirectory
from enforcer.utils.logger import get_logger

logger = get_logger(__name__)


class BypassDecision(str, Enum):
    NONE = "NONE"
    BAMBOO = "BAMBOO"
    BYPASS = "BYPASS"

    @property
    def key_type(self) -> KeyType:
        """KeyType to record for an accepted key. Invalid for NONE."""
        if self is BypassDecision.NONE:
            raise ValueError("BypassDecision.NONE has no key type")
        return KeyType(self.value)


async def evaluate_bypass(
    principal: Principal,
    policy: PolicyConfig,
    directory: PrincipalDirectory,
) -> BypassDecision:
    """Classify the owner of an untracked key against the bypass policy."""
    if policy.authorized_user is not None and policy.authorized_user == principal.name:
        logger.debug("policy_authorized_user_match", principal=principal.name)
        return BypassDecision.BAMBOO

    group = policy.authorized_group
    if group is not None and await directory.group_exists(group):
        if await directory.is_member(principal, group):
            logger.debug("policy_authorized_group_match", principal=principal.name, group=group)
            return BypassDecision.BYPASS

    logger.debug("policy_no_bypass", principal=principal.name)
    return BypassDecision.NONE
