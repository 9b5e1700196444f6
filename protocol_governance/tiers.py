"""Tier ledger.

Single definition of the license tier ordering, the price breakpoints
that map a protocol to its minimum tier, and the execution cost formula.
Every function here is pure.
"""

import math
from typing import Dict, Optional

from .types import Protocol, Tier

# ============== TIER ORDERING ==============

TIER_LEVELS: Dict[Tier, int] = {
    Tier.OBSERVER: 0,
    Tier.OPERATOR: 1,
    Tier.COMMANDER: 2,
    Tier.AUTHORITY: 3,
    Tier.SOVEREIGN: 4,
}

_TIERS_BY_LEVEL = {level: tier for tier, level in TIER_LEVELS.items()}

# Inclusive lower bound -> tier. Price 0 is handled separately (Observer).
PRICE_BREAKPOINTS = (
    (500, Tier.SOVEREIGN),
    (200, Tier.AUTHORITY),
    (100, Tier.COMMANDER),
)

COST_PER_WEIGHT = 10
PRICE_PER_CREDIT = 50

# Balance granted when a subscription is activated (None = unlimited)
TIER_ALLOWANCES: Dict[Tier, Optional[int]] = {
    Tier.OBSERVER: 2,
    Tier.OPERATOR: 60,
    Tier.COMMANDER: 300,
    Tier.AUTHORITY: None,
    Tier.SOVEREIGN: None,
}


def level_of(tier: Tier) -> int:
    return TIER_LEVELS[Tier(tier)]


def tier_for_level(level: int) -> Tier:
    if level not in _TIERS_BY_LEVEL:
        raise ValueError(f"Unknown tier level: {level}")
    return _TIERS_BY_LEVEL[level]


def tier_for_price(price: float) -> Tier:
    """Minimum tier for a declared price (breakpoints 0, 100, 200, 500)."""
    if price <= 0:
        return Tier.OBSERVER
    for lower_bound, tier in PRICE_BREAKPOINTS:
        if price >= lower_bound:
            return tier
    return Tier.OPERATOR


def cost_for_price(price: float) -> int:
    """Execution cost for a price with no explicit weight."""
    if price <= 0:
        return 1
    return math.ceil(price / PRICE_PER_CREDIT) + 1


def required_tier(protocol: Protocol) -> Tier:
    """Explicit tier override wins; otherwise derive from price."""
    if protocol.tier_access is not None:
        return protocol.tier_access
    return tier_for_price(protocol.price)


def execution_cost(protocol: Protocol) -> int:
    """Credits charged to start a run. Always >= 1."""
    if protocol.execution_weight is not None:
        return protocol.execution_weight * COST_PER_WEIGHT
    return cost_for_price(protocol.price)


def allowance_for(tier: Tier) -> Optional[int]:
    """Starting balance for a newly activated tier (None = unlimited)."""
    return TIER_ALLOWANCES[Tier(tier)]


def can_author(tier: Tier) -> bool:
    """Protocol creation requires an Operator license or higher."""
    return level_of(tier) >= TIER_LEVELS[Tier.OPERATOR]


def publishes_directly(tier: Tier) -> bool:
    """Sovereign authors skip the review queue."""
    return Tier(tier) == Tier.SOVEREIGN
