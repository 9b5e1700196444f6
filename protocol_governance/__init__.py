"""Protocol Governance & Execution Engine v1.0.

Decides who may run a protocol and at what cost, drives a run through
its gated steps, scores drafts before publication, and renders audit
records of completed or partial runs.
"""

from .types import (
    Tier, StepType, DecisionChoice, RiskClass, ProtocolStatus, RunStatus, DenialReason,
    Step, Protocol, Entitlement, UNLIMITED, AuthorizationResult, CapturedValue,
    LogEntry, RunState, QualityBreakdown, PublishResult
)
from .tiers import required_tier, execution_cost, level_of, TIER_LEVELS
from .entitlement import authorize, apply_charge, entitlement_for
from .run_state import can_advance, new_run, begin, capture, advance, abandon, RunSession
from .quality import score, check_publishable, MIN_PUBLISH_SCORE
from .audit import assemble_report
from .catalog import load_catalog, compute_content_hash, validate_catalog
from .errors import GovernanceError, NoExecutableStepsError, StatusTransitionError

__version__ = "1.0.0"

__all__ = [
    "Tier",
    "StepType",
    "DecisionChoice",
    "RiskClass",
    "ProtocolStatus",
    "RunStatus",
    "DenialReason",
    "Step",
    "Protocol",
    "Entitlement",
    "UNLIMITED",
    "AuthorizationResult",
    "CapturedValue",
    "LogEntry",
    "RunState",
    "QualityBreakdown",
    "PublishResult",
    "required_tier",
    "execution_cost",
    "level_of",
    "TIER_LEVELS",
    "authorize",
    "apply_charge",
    "entitlement_for",
    "can_advance",
    "new_run",
    "begin",
    "capture",
    "advance",
    "abandon",
    "RunSession",
    "score",
    "check_publishable",
    "MIN_PUBLISH_SCORE",
    "assemble_report",
    "load_catalog",
    "compute_content_hash",
    "validate_catalog",
    "GovernanceError",
    "NoExecutableStepsError",
    "StatusTransitionError",
]
