"""Protocol service.

Orchestrates the engine for the application layer: zero-step check,
entitlement gate, charge, and run sessions; draft scoring and lifecycle
transitions; audit report rendering.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Union

from . import lifecycle
from .audit import assemble_report
from .entitlement import authorize
from .errors import NoExecutableStepsError, ProtocolNotActiveError, RunNotFoundError
from .quality import score
from .run_state import Clock, RunSession
from .stores import InMemoryEntitlementStore, InMemoryProtocolStore
from .types import AuthorizationResult, Protocol, ProtocolStatus, PublishResult, QualityBreakdown, Tier

logger = logging.getLogger(__name__)

DEFAULT_MAX_SESSIONS = 1000


@dataclass
class RunStart:
    """Outcome of a run request: a session when authorized, else the denial."""
    authorization: AuthorizationResult
    session: Optional[RunSession] = None

    @property
    def started(self) -> bool:
        return self.session is not None


class ProtocolService:
    """Facade over stores, gate, state machine, scorer and assembler."""

    def __init__(
        self,
        protocols: InMemoryProtocolStore,
        entitlements: InMemoryEntitlementStore,
        clock: Optional[Clock] = None,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
    ):
        self.protocols = protocols
        self.entitlements = entitlements
        self._clock = clock
        self._max_sessions = max_sessions
        self._sessions: Dict[str, RunSession] = {}
        self._lock = threading.Lock()

    # ---- execution ----

    def preview_access(self, user_id: str, protocol_id: str) -> AuthorizationResult:
        """Authorization decision without charging (e.g. lock badges in a catalog)."""
        protocol = self.protocols.get(protocol_id)
        return authorize(protocol, self.entitlements.snapshot(user_id))

    def start_run(self, user_id: str, protocol_id: str) -> RunStart:
        """Authorize, charge and open a session.

        Raises:
            ProtocolNotFoundError: Unknown protocol id
            NoExecutableStepsError: Protocol has no steps (nothing is charged)
            ProtocolNotActiveError: Protocol is not Active (nothing is charged)
            BalanceConflictError: Entitlement changed between snapshot and charge
        """
        protocol = self.protocols.get(protocol_id)
        if not protocol.steps:
            raise NoExecutableStepsError(
                f"Protocol '{protocol_id}' has no executable steps",
                protocol_id=protocol_id,
            )
        if protocol.status != ProtocolStatus.ACTIVE:
            raise ProtocolNotActiveError(
                f"Protocol '{protocol_id}' is {protocol.status.value}; only Active protocols can be run",
                status=protocol.status.value,
                protocol_id=protocol_id,
            )

        snapshot = self.entitlements.snapshot(user_id)
        decision = authorize(protocol, snapshot)
        if not decision.authorized:
            logger.info(
                "run denied: user=%s protocol=%s reason=%s",
                user_id, protocol_id, decision.reason.value,
            )
            return RunStart(authorization=decision)

        self.entitlements.charge(user_id, decision.cost, expected=snapshot)
        session = RunSession(protocol, user_id=user_id, cost=decision.cost, clock=self._clock)
        with self._lock:
            self._sessions[session.session_id] = session
            self._evict_terminal_sessions()
        logger.info(
            "run authorized: user=%s protocol=%s session=%s cost=%d",
            user_id, protocol_id, session.session_id, decision.cost,
        )
        return RunStart(authorization=decision, session=session)

    def _evict_terminal_sessions(self) -> None:
        """Drop the oldest completed or abandoned sessions beyond the cap.

        Caller holds ``self._lock``. Sessions still running are never dropped.
        """
        excess = len(self._sessions) - self._max_sessions
        if excess <= 0:
            return
        terminal = [sid for sid, s in self._sessions.items() if s.state.is_terminal]
        for session_id in terminal[:excess]:
            del self._sessions[session_id]
        logger.debug("evicted %d terminal sessions", min(excess, len(terminal)))

    @property
    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def get_session(self, session_id: str) -> RunSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise RunNotFoundError(f"Run not found: {session_id}", session_id=session_id)
        return session

    def render_report(self, session_id: str, operator: Optional[str] = None) -> str:
        session = self.get_session(session_id)
        kwargs = {"operator": operator} if operator else {}
        if self._clock is not None:
            kwargs["generated_at"] = self._clock()
        return assemble_report(session.protocol, session.state, session.session_id, **kwargs)

    # ---- authoring ----

    def score_draft(self, draft: Protocol) -> QualityBreakdown:
        return score(draft)

    def submit_draft(self, draft: Protocol, author_tier: Union[Tier, str]) -> PublishResult:
        """Quality-gate a draft; accepted drafts are stored with their new status."""
        result = lifecycle.submit(draft, Tier(author_tier))
        if result.accepted:
            self.protocols.put(result.protocol)
        return result

    def approve(self, protocol_id: str, approver: str) -> PublishResult:
        result = lifecycle.approve(self.protocols.get(protocol_id), approver)
        if result.accepted:
            self.protocols.replace_status(result.protocol)
        return result

    def reject(self, protocol_id: str) -> Protocol:
        return self.protocols.replace_status(lifecycle.reject(self.protocols.get(protocol_id)))

    def archive(self, protocol_id: str) -> Protocol:
        return self.protocols.replace_status(lifecycle.archive(self.protocols.get(protocol_id)))
