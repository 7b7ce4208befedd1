"""Governance package: policy evaluation, resource association, the engine.

    from enforcer.governance import GovernanceEngine, InterceptOutcome
"""

from enforcer.governance.engine import GovernanceEngine, InterceptOutcome, SweepResult
from enforcer.governance.policy import BypassDecision, evaluate_bypass

__all__ = [
    "GovernanceEngine",
    "InterceptOutcome",
    "SweepResult",
    "BypassDecision",
    "evaluate_bypass",
]
