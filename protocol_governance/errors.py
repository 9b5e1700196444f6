"""
protocol_governance/errors.py

Structured governance errors for the protocol engine.
All errors include structured data for logging and API responses.

Denials (tier, balance) and sub-threshold publish attempts are returned
as values, not raised; the errors below cover the conditions that stop
an operation before it can produce a result.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class GovernanceError(Exception):
    """Base class for governance errors."""
    message: str
    error_code: str
    protocol_id: Optional[str] = None
    session_id: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "protocol_id": self.protocol_id,
            "session_id": self.session_id,
            "context": self.context
        }

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


@dataclass
class NoExecutableStepsError(GovernanceError):
    """Protocol has no steps; a run must not be started."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            error_code="NO_EXECUTABLE_STEPS",
            **kwargs
        )


@dataclass
class StatusTransitionError(GovernanceError):
    """Requested lifecycle transition is not allowed."""
    from_status: Optional[str] = None
    to_status: Optional[str] = None

    def __init__(
        self,
        message: str,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message=message,
            error_code="INVALID_TRANSITION",
            **kwargs
        )
        self.from_status = from_status
        self.to_status = to_status

    def to_dict(self) -> Dict[str, Any]:
        base = super().to_dict()
        base.update({
            "from_status": self.from_status,
            "to_status": self.to_status
        })
        return base


@dataclass
class InsufficientBalanceError(GovernanceError):
    """A charge would take a balance below zero."""
    required: int = 0
    available: int = 0

    def __init__(self, message: str, required: int = 0, available: int = 0, **kwargs):
        super().__init__(
            message=message,
            error_code="INSUFFICIENT_BALANCE",
            **kwargs
        )
        self.required = required
        self.available = available


@dataclass
class BalanceConflictError(GovernanceError):
    """Stored balance changed between snapshot and charge."""
    expected_balance: Optional[int] = None
    actual_balance: Optional[int] = None

    def __init__(
        self,
        message: str,
        expected_balance: Optional[int] = None,
        actual_balance: Optional[int] = None,
        **kwargs
    ):
        super().__init__(
            message=message,
            error_code="BALANCE_CONFLICT",
            **kwargs
        )
        self.expected_balance = expected_balance
        self.actual_balance = actual_balance


@dataclass
class ProtocolNotFoundError(GovernanceError):
    """No protocol with the requested id."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            error_code="PROTOCOL_NOT_FOUND",
            **kwargs
        )


@dataclass
class RunNotFoundError(GovernanceError):
    """No run session with the requested id."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            error_code="RUN_NOT_FOUND",
            **kwargs
        )


@dataclass
class ProtocolNotActiveError(GovernanceError):
    """Only Active protocols can be executed."""
    status: Optional[str] = None

    def __init__(self, message: str, status: Optional[str] = None, **kwargs):
        super().__init__(
            message=message,
            error_code="PROTOCOL_NOT_ACTIVE",
            **kwargs
        )
        self.status = status

    def to_dict(self) -> Dict[str, Any]:
        base = super().to_dict()
        base["status"] = self.status
        return base
