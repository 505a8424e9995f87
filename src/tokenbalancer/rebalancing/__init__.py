"""Rebalancing module for goal-fraction portfolio management."""

from tokenbalancer.rebalancing.intents import build_intents, limit_amount_for
from tokenbalancer.rebalancing.planner import RebalancePlanner, compute_plan, validate_fractions

__all__ = [
    "RebalancePlanner",
    "compute_plan",
    "validate_fractions",
    "build_intents",
    "limit_amount_for",
]
