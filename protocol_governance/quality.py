"""Structural quality scorer and publish gate.

Deterministic 0..100 score from three equally weighted sub-scores.
The weight table and the 80-point minimum are fixed; changing either
changes which protocols may be published.
"""

from decimal import ROUND_HALF_UP, Decimal

from .types import Protocol, PublishResult, QualityBreakdown, StepType

MIN_PUBLISH_SCORE = 80

SUB_THRESHOLD_QUALITY = "SUB_THRESHOLD_QUALITY"

# (points, description) per signal
STRUCTURE_WEIGHTS = {
    "title": (20, "title longer than 5 characters"),
    "id": (10, "identifier set"),
    "purpose": (20, "purpose longer than 20 characters"),
    "scope": (20, "scope includes longer than 10 characters"),
    "roles": (30, "at least one role defined"),
}

LOGIC_WEIGHTS = {
    "step_count": (30, "at least 3 steps"),
    "decision": (40, "at least one decision step"),
    "input": (30, "at least one input step"),
}

RISK_WEIGHTS = {
    "risks": (40, "at least one risk entry"),
    "escalation": (30, "at least one escalation path"),
    "kpis": (30, "at least one KPI"),
}


def _structure_signals(protocol: Protocol) -> dict:
    return {
        "title": len(protocol.title) > 5,
        "id": bool(protocol.id),
        "purpose": len(protocol.purpose) > 20,
        "scope": len(protocol.scope.includes) > 10,
        "roles": len(protocol.roles) > 0,
    }


def _logic_signals(protocol: Protocol) -> dict:
    types = {step.type for step in protocol.steps}
    return {
        "step_count": len(protocol.steps) >= 3,
        "decision": StepType.DECISION in types,
        "input": StepType.INPUT in types,
    }


def _risk_signals(protocol: Protocol) -> dict:
    return {
        "risks": len(protocol.risks) > 0,
        "escalation": len(protocol.escalation) > 0,
        "kpis": len(protocol.kpis) > 0,
    }


def _accumulate(weights: dict, signals: dict) -> int:
    return sum(points for name, (points, _) in weights.items() if signals[name])


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def score(protocol: Protocol) -> QualityBreakdown:
    """Compute the quality breakdown of a draft. Pure."""
    structure = _accumulate(STRUCTURE_WEIGHTS, _structure_signals(protocol))
    logic = _accumulate(LOGIC_WEIGHTS, _logic_signals(protocol))
    risk = _accumulate(RISK_WEIGHTS, _risk_signals(protocol))
    total = _round_half_up(Decimal(structure + logic + risk) / Decimal(3))
    return QualityBreakdown(total=total, structure=structure, logic=logic, risk=risk)


def missing_signals(protocol: Protocol) -> list:
    """Descriptions of every unmet signal, in weight-table order."""
    missing = []
    for weights, signals in (
        (STRUCTURE_WEIGHTS, _structure_signals(protocol)),
        (LOGIC_WEIGHTS, _logic_signals(protocol)),
        (RISK_WEIGHTS, _risk_signals(protocol)),
    ):
        missing.extend(desc for name, (_, desc) in weights.items() if not signals[name])
    return missing


def improvement_tip(breakdown: QualityBreakdown) -> str:
    """Advice pointing the author at the dimension that needs work."""
    if breakdown.logic < 50:
        return "Add at least one 'Decision' or 'Input' step to create real workflow logic."
    if breakdown.risk < 50:
        return "Define Risks, KPIs, and Escalation paths to meet enterprise standards."
    return "Complete all sections including Scope and Definitions."


def is_publishable(breakdown: QualityBreakdown) -> bool:
    return breakdown.total >= MIN_PUBLISH_SCORE


def check_publishable(protocol: Protocol) -> PublishResult:
    """Apply the publish gate without changing status.

    Returns accepted=False with reason SUB_THRESHOLD_QUALITY, the
    breakdown and an improvement tip when the total is below the minimum.
    """
    breakdown = score(protocol)
    if not is_publishable(breakdown):
        return PublishResult(
            accepted=False,
            status=protocol.status,
            breakdown=breakdown,
            reason=SUB_THRESHOLD_QUALITY,
            improvement_tip=improvement_tip(breakdown),
        )
    return PublishResult(
        accepted=True,
        status=protocol.status,
        breakdown=breakdown,
        protocol=protocol,
    )
