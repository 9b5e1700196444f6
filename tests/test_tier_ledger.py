"""Tests for the tier ledger.

Validates:
1. Price breakpoints (0, 100, 200, 500) and monotonicity
2. Explicit tier override
3. Execution cost formula and weight override
4. Subscription allowances and authoring rights
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from protocol_governance import Protocol, Tier, required_tier, execution_cost, level_of
from protocol_governance.tiers import (
    TIER_LEVELS, allowance_for, can_author, publishes_directly, tier_for_level, tier_for_price
)


def _protocol(price, tier_access=None, execution_weight=None):
    return Protocol(
        id="p-1", title="Ledger Test", price=price,
        tier_access=tier_access, execution_weight=execution_weight,
    )


class TestTierOrdering:

    def test_levels_are_zero_to_four(self):
        assert [level_of(t) for t in Tier] == [0, 1, 2, 3, 4]

    def test_tier_for_level_round_trips(self):
        for tier, level in TIER_LEVELS.items():
            assert tier_for_level(level) == tier

    def test_unknown_level_rejected(self):
        with pytest.raises(ValueError):
            tier_for_level(5)

    def test_level_of_accepts_tier_name(self):
        assert level_of("Commander") == 2


class TestRequiredTier:

    @pytest.mark.parametrize("price,expected", [
        (0, Tier.OBSERVER),
        (0.01, Tier.OPERATOR),
        (99.99, Tier.OPERATOR),
        (100, Tier.COMMANDER),
        (199.99, Tier.COMMANDER),
        (200, Tier.AUTHORITY),
        (499.99, Tier.AUTHORITY),
        (500, Tier.SOVEREIGN),
        (10_000, Tier.SOVEREIGN),
    ])
    def test_breakpoints(self, price, expected):
        assert required_tier(_protocol(price)) == expected

    def test_monotonic_in_price(self):
        prices = [0, 1, 50, 99, 100, 150, 199, 200, 350, 499, 500, 1000]
        levels = [level_of(tier_for_price(p)) for p in prices]
        assert levels == sorted(levels)

    def test_explicit_override_returned_verbatim(self):
        # Free protocol locked behind Authority
        assert required_tier(_protocol(0, tier_access=Tier.AUTHORITY)) == Tier.AUTHORITY
        # Expensive protocol opened to Operators
        assert required_tier(_protocol(900, tier_access=Tier.OPERATOR)) == Tier.OPERATOR


class TestExecutionCost:

    def test_free_protocol_costs_one(self):
        assert execution_cost(_protocol(0)) == 1

    def test_price_73(self):
        # ceil(73 / 50) + 1
        assert execution_cost(_protocol(73)) == 3

    @pytest.mark.parametrize("price,expected", [
        (1, 2),
        (50, 2),
        (51, 3),
        (100, 3),
        (150, 4),
        (500, 11),
    ])
    def test_price_formula(self, price, expected):
        assert execution_cost(_protocol(price)) == expected

    @pytest.mark.parametrize("weight", [1, 2, 3, 5])
    def test_weight_overrides_price(self, weight):
        assert execution_cost(_protocol(999, execution_weight=weight)) == weight * 10

    def test_weight_with_zero_price(self):
        assert execution_cost(_protocol(0, execution_weight=2)) == 20

    def test_cost_always_positive(self):
        for price in [0, 0.5, 1, 49, 50, 1000]:
            assert execution_cost(_protocol(price)) >= 1


class TestAllowancesAndAuthoring:

    def test_allowances(self):
        assert allowance_for(Tier.OBSERVER) == 2
        assert allowance_for(Tier.OPERATOR) == 60
        assert allowance_for(Tier.COMMANDER) == 300
        assert allowance_for(Tier.AUTHORITY) is None
        assert allowance_for(Tier.SOVEREIGN) is None

    def test_observer_cannot_author(self):
        assert not can_author(Tier.OBSERVER)
        assert can_author(Tier.OPERATOR)
        assert can_author(Tier.SOVEREIGN)

    def test_only_sovereign_publishes_directly(self):
        assert publishes_directly(Tier.SOVEREIGN)
        assert not publishes_directly(Tier.AUTHORITY)
