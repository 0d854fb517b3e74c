"""Risk policy and planning."""

from atlas.policy.planner import CAPABILITIES, Decision, DecisionAction, Planner
from atlas.policy.risk import ConfidencePolicy, RiskLevel, RiskRule, RiskTable

__all__ = [
    "CAPABILITIES",
    "ConfidencePolicy",
    "Decision",
    "DecisionAction",
    "Planner",
    "RiskLevel",
    "RiskRule",
    "RiskTable",
]
