"""Protocol engine type definitions (Pydantic models).

Defines protocols and their steps, user entitlements, run state,
log entries, authorization decisions and quality breakdowns. All
structures are JSON-serializable for reproducibility and audit trails.
"""

from collections import Counter
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Tier(str, Enum):
    """License tiers, lowest first."""
    OBSERVER = "Observer"
    OPERATOR = "Operator"
    COMMANDER = "Commander"
    AUTHORITY = "Authority"
    SOVEREIGN = "Sovereign"


class StepType(str, Enum):
    """Step type; selects the validation gate."""
    ACTION = "action"
    DECISION = "decision"
    INPUT = "input"
    AUTOMATION = "automation"


class DecisionChoice(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class RiskClass(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class ProtocolStatus(str, Enum):
    """Protocol lifecycle status."""
    DRAFT = "Draft"
    PENDING_REVIEW = "Pending_Review"
    ACTIVE = "Active"
    ARCHIVED = "Archived"
    REJECTED = "Rejected"


class RunStatus(str, Enum):
    """Run lifecycle; COMPLETED and ABANDONED are terminal."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class DenialReason(str, Enum):
    INSUFFICIENT_TIER = "INSUFFICIENT_TIER"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"


# ============== PROTOCOL ==============

class Step(BaseModel):
    """One node in a protocol's execution sequence."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    title: str
    description: str = ""
    type: StepType
    required_role: Optional[str] = None
    details: Optional[str] = None
    expected_outcome: Optional[str] = None
    system_interaction: Optional[str] = Field(default=None, description="e.g. ERP, CRM")


class RoleDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: str
    authority: str = "Standard"
    responsibilities: str = ""


class RiskEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    trigger: str
    mitigation: str = ""
    severity: RiskClass = RiskClass.MEDIUM


class EscalationEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    condition: str
    contact: str
    sla: Optional[str] = None


class ChangeLogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: str
    date: str
    author: str
    changes: str


class Scope(BaseModel):
    model_config = ConfigDict(frozen=True)

    includes: str = ""
    excludes: str = ""


class Protocol(BaseModel):
    """Procedural document composed of ordered steps.

    Frozen: status changes produce a new instance via ``model_copy``.
    ``id`` may be empty while the protocol is still being drafted.
    """
    model_config = ConfigDict(frozen=True)

    id: str = ""
    title: str
    description: str = ""
    author: str = ""
    category: str = "Operations"
    version: str = "1.0"
    status: ProtocolStatus = ProtocolStatus.DRAFT

    price: float = Field(..., ge=0, description="Declared price; drives tier and cost")
    tier_access: Optional[Tier] = Field(default=None, description="Explicit tier override")
    execution_weight: Optional[int] = Field(default=None, ge=1, description="Explicit cost weight")
    risk_class: RiskClass = RiskClass.MEDIUM
    jurisdiction: str = "Global"
    review_cycle: str = "Annual"

    effective_date: Optional[str] = None
    next_review_date: Optional[str] = None
    owner: Optional[str] = None
    approved_by: Optional[str] = None

    purpose: str = ""
    scope: Scope = Field(default_factory=Scope)
    definitions: Dict[str, str] = Field(default_factory=dict)
    roles: List[RoleDefinition] = Field(default_factory=list)
    prerequisites: List[str] = Field(default_factory=list)
    inputs: List[str] = Field(default_factory=list)
    steps: List[Step] = Field(default_factory=list)
    compliance_controls: List[str] = Field(default_factory=list)
    outputs: List[str] = Field(default_factory=list)
    kpis: List[str] = Field(default_factory=list)
    risks: List[RiskEntry] = Field(default_factory=list)
    escalation: List[EscalationEntry] = Field(default_factory=list)
    change_log: List[ChangeLogEntry] = Field(default_factory=list)
    related: List[str] = Field(default_factory=list)

    @field_validator("steps")
    @classmethod
    def validate_unique_step_ids(cls, v: List[Step]) -> List[Step]:
        ids = [s.id for s in v]
        if len(ids) != len(set(ids)):
            dups = [item for item, count in Counter(ids).items() if count > 1]
            raise ValueError(f"Duplicate step ids: {dups}")
        return v


# ============== ENTITLEMENT ==============

UNLIMITED: Optional[int] = None


class Entitlement(BaseModel):
    """Snapshot of a user's tier and credit balance.

    ``balance`` of ``None`` (``UNLIMITED``) is always sufficient.
    """
    model_config = ConfigDict(frozen=True)

    tier_level: int = Field(..., ge=0, le=4)
    balance: Optional[int] = Field(default=0, ge=0)

    @property
    def is_unlimited(self) -> bool:
        return self.balance is None


class AuthorizationResult(BaseModel):
    """Result of the entitlement gate."""
    authorized: bool
    cost: int = Field(ge=1)
    required_tier: Tier
    reason: Optional[DenialReason] = None
    explanation_text: str = ""


# ============== RUN STATE ==============

class CapturedValue(BaseModel):
    """Values captured for the current step; reset on every step change."""
    model_config = ConfigDict(frozen=True)

    confirmed: bool = False
    choice: Optional[DecisionChoice] = None
    text: str = ""


class LogEntry(BaseModel):
    """Immutable record of one completed step."""
    model_config = ConfigDict(frozen=True)

    step_id: str
    title: str
    description: str
    role: str
    action: str
    timestamp: datetime


class RunState(BaseModel):
    """State of one execution attempt. Transitions live in ``run_state``."""
    model_config = ConfigDict(frozen=True)

    protocol_id: str
    step_index: int = Field(default=0, ge=0)
    completed_step_ids: Tuple[str, ...] = ()
    captured: CapturedValue = Field(default_factory=CapturedValue)
    status: RunStatus = RunStatus.NOT_STARTED
    log: Tuple[LogEntry, ...] = ()
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (RunStatus.COMPLETED, RunStatus.ABANDONED)


# ============== QUALITY ==============

class QualityBreakdown(BaseModel):
    """Quality score with its three sub-scores (all 0..100)."""
    model_config = ConfigDict(frozen=True)

    total: int = Field(ge=0, le=100)
    structure: int = Field(ge=0, le=100)
    logic: int = Field(ge=0, le=100)
    risk: int = Field(ge=0, le=100)

    @property
    def weakest(self) -> str:
        """Name of the lowest sub-score (ties: structure, logic, risk)."""
        scores = [("structure", self.structure), ("logic", self.logic), ("risk", self.risk)]
        return min(scores, key=lambda item: item[1])[0]


class PublishResult(BaseModel):
    """Outcome of a publish or submit request."""
    accepted: bool
    status: ProtocolStatus
    breakdown: QualityBreakdown
    reason: Optional[str] = None
    improvement_tip: str = ""
    protocol: Optional[Protocol] = None
