"""Entitlement gate.

Decides whether a user may start a run of a protocol and at what cost.
The gate never mutates a balance; callers apply the charge atomically
with starting the run (see ``stores.InMemoryEntitlementStore.charge``).

Check order is fixed: tier first, then balance.
"""

from .errors import InsufficientBalanceError
from .tiers import allowance_for, execution_cost, level_of, required_tier
from .types import AuthorizationResult, DenialReason, Entitlement, Protocol, Tier


def authorize(protocol: Protocol, entitlement: Entitlement) -> AuthorizationResult:
    """Evaluate a run request against the user's entitlement snapshot.

    Args:
        protocol: Protocol the user wants to run
        entitlement: Caller-supplied snapshot of tier level and balance

    Returns:
        AuthorizationResult with decision, cost, required tier, explanation
    """
    tier = required_tier(protocol)
    cost = execution_cost(protocol)

    if entitlement.tier_level < level_of(tier):
        return AuthorizationResult(
            authorized=False,
            cost=cost,
            required_tier=tier,
            reason=DenialReason.INSUFFICIENT_TIER,
            explanation_text=(
                f"Access restricted: protocol '{protocol.id}' requires the {tier.value} "
                f"license (level {level_of(tier)}, user has level {entitlement.tier_level})"
            ),
        )

    if not entitlement.is_unlimited and entitlement.balance < cost:
        return AuthorizationResult(
            authorized=False,
            cost=cost,
            required_tier=tier,
            reason=DenialReason.INSUFFICIENT_BALANCE,
            explanation_text=(
                f"Insufficient execution balance: this run requires {cost} credits "
                f"(available: {entitlement.balance})"
            ),
        )

    balance_text = "unlimited" if entitlement.is_unlimited else str(entitlement.balance)
    return AuthorizationResult(
        authorized=True,
        cost=cost,
        required_tier=tier,
        explanation_text=(
            f"Authorized: {tier.value} license satisfied; "
            f"{cost} credits charged against balance {balance_text}"
        ),
    )


def apply_charge(entitlement: Entitlement, cost: int) -> Entitlement:
    """Return the snapshot after deducting ``cost``. Unlimited stays unlimited."""
    if entitlement.is_unlimited:
        return entitlement
    if cost > entitlement.balance:
        raise InsufficientBalanceError(
            f"Charge of {cost} exceeds balance {entitlement.balance}",
            required=cost,
            available=entitlement.balance,
        )
    return entitlement.model_copy(update={"balance": entitlement.balance - cost})


def entitlement_for(tier: Tier) -> Entitlement:
    """Snapshot for a freshly activated subscription."""
    return Entitlement(tier_level=level_of(tier), balance=allowance_for(tier))
