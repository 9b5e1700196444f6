"""Run state machine.

NOT_STARTED -> IN_PROGRESS -> {COMPLETED | ABANDONED}

``RunState`` is a frozen value; every transition below returns a new
state (or the same one when the transition does not apply). ``RunSession``
owns the current state for a single execution and is the object the
service layer hands out.

Gate per step type:
- action:     captured.confirmed is True
- decision:   captured.choice is approved or rejected
- input:      captured.text is non-empty after stripping
- automation: always satisfied
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from .errors import NoExecutableStepsError
from .types import (
    CapturedValue, DecisionChoice, LogEntry, Protocol, RunState, RunStatus,
    Step, StepType
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

DEFAULT_ROLE = "General Operator"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def can_advance(step: Step, captured: CapturedValue) -> bool:
    """Return True when the captured value satisfies the step's gate."""
    if step.type == StepType.ACTION:
        return captured.confirmed is True
    if step.type == StepType.DECISION:
        return captured.choice in (DecisionChoice.APPROVED, DecisionChoice.REJECTED)
    if step.type == StepType.INPUT:
        return len(captured.text.strip()) > 0
    if step.type == StepType.AUTOMATION:
        return True
    return False


def describe_action(step: Step, captured: CapturedValue) -> str:
    """Render the captured value for the audit log."""
    if step.type == StepType.ACTION:
        return "Confirmed Checkbox"
    if step.type == StepType.DECISION:
        choice = captured.choice.value.upper() if captured.choice else "NONE"
        return f"Decision: {choice}"
    if step.type == StepType.INPUT:
        return f'Input Value: "{captured.text}"'
    return "Automated Trigger"


def new_run(protocol: Protocol) -> RunState:
    """Create the initial state for a run.

    Raises:
        NoExecutableStepsError: If the protocol has no steps
    """
    if not protocol.steps:
        raise NoExecutableStepsError(
            f"Protocol '{protocol.id}' has no executable steps",
            protocol_id=protocol.id,
        )
    return RunState(protocol_id=protocol.id)


def begin(state: RunState, clock: Optional[Clock] = None) -> RunState:
    """NOT_STARTED -> IN_PROGRESS at step 0."""
    if state.status != RunStatus.NOT_STARTED:
        return state
    now = (clock or _utcnow)()
    return state.model_copy(update={"status": RunStatus.IN_PROGRESS, "started_at": now})


def capture(
    state: RunState,
    *,
    confirmed: Optional[bool] = None,
    choice: Optional[str] = None,
    text: Optional[str] = None,
) -> RunState:
    """Record operator input for the current step.

    Only the slots passed are replaced. No-op unless the run is in progress.
    """
    if state.status != RunStatus.IN_PROGRESS:
        return state
    captured = state.captured
    if confirmed is not None:
        captured = captured.model_copy(update={"confirmed": bool(confirmed)})
    if choice is not None:
        captured = captured.model_copy(update={"choice": DecisionChoice(choice)})
    if text is not None:
        captured = captured.model_copy(update={"text": str(text)})
    return state.model_copy(update={"captured": captured})


def advance(protocol: Protocol, state: RunState, clock: Optional[Clock] = None) -> RunState:
    """Complete the current step if its gate is satisfied.

    Appends a LogEntry, records the step id, then either completes the run
    (last step) or moves to the next step with all captured slots cleared.
    Returns ``state`` unchanged when the gate is unsatisfied or the run is
    not in progress.
    """
    if state.protocol_id != protocol.id:
        raise ValueError(
            f"Run belongs to protocol '{state.protocol_id}', not '{protocol.id}'"
        )
    if state.status != RunStatus.IN_PROGRESS:
        return state

    step = protocol.steps[state.step_index]
    if not can_advance(step, state.captured):
        return state

    now = (clock or _utcnow)()
    entry = LogEntry(
        step_id=step.id,
        title=step.title,
        description=step.description,
        role=step.required_role or DEFAULT_ROLE,
        action=describe_action(step, state.captured),
        timestamp=now,
    )

    completed = state.completed_step_ids
    if step.id not in completed:
        completed = completed + (step.id,)

    update = {"log": state.log + (entry,), "completed_step_ids": completed}
    if state.step_index >= len(protocol.steps) - 1:
        update.update({"status": RunStatus.COMPLETED, "finished_at": now})
    else:
        update.update({"step_index": state.step_index + 1, "captured": CapturedValue()})
    return state.model_copy(update=update)


def abandon(state: RunState, clock: Optional[Clock] = None) -> RunState:
    """Stop a run before completion. Terminal states are returned unchanged."""
    if state.is_terminal:
        return state
    now = (clock or _utcnow)()
    return state.model_copy(update={"status": RunStatus.ABANDONED, "finished_at": now})


def progress(protocol: Protocol, state: RunState) -> int:
    """Percentage of steps completed, rounded half-up."""
    total = len(protocol.steps)
    if total == 0:
        return 0
    done = len(state.completed_step_ids)
    return (200 * done + total) // (2 * total)


def new_session_id() -> str:
    """Short uppercase session token used in audit reports."""
    return uuid.uuid4().hex[:9].upper()


class RunSession:
    """Owns the RunState of a single execution.

    Not shared between runs; a second run of the same protocol by the
    same user gets its own session.
    """

    def __init__(
        self,
        protocol: Protocol,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        cost: int = 0,
        clock: Optional[Clock] = None,
    ):
        self.protocol = protocol
        self.session_id = session_id or new_session_id()
        self.user_id = user_id
        self.cost = cost
        self._clock = clock or _utcnow
        self.state = new_run(protocol)

    @property
    def current_step(self) -> Optional[Step]:
        if self.state.is_terminal:
            return None
        return self.protocol.steps[self.state.step_index]

    @property
    def is_complete(self) -> bool:
        return self.state.status == RunStatus.COMPLETED

    @property
    def progress(self) -> int:
        return progress(self.protocol, self.state)

    @property
    def remaining_steps(self) -> int:
        return len(self.protocol.steps) - len(self.state.completed_step_ids)

    def begin(self) -> RunState:
        self.state = begin(self.state, self._clock)
        logger.info("run %s started: protocol=%s user=%s", self.session_id, self.protocol.id, self.user_id)
        return self.state

    def confirm(self, confirmed: bool = True) -> RunState:
        self.state = capture(self.state, confirmed=confirmed)
        return self.state

    def choose(self, choice: str) -> RunState:
        self.state = capture(self.state, choice=choice)
        return self.state

    def enter_text(self, text: str) -> RunState:
        self.state = capture(self.state, text=text)
        return self.state

    def advance(self) -> bool:
        """Try to move past the current step. Returns whether the state changed."""
        before = self.state
        self.state = advance(self.protocol, before, self._clock)
        moved = self.state is not before
        if not moved:
            logger.debug("run %s: gate unsatisfied at step %d", self.session_id, before.step_index)
        elif self.is_complete:
            logger.info("run %s completed: %d steps", self.session_id, len(self.state.log))
        return moved

    def abandon(self) -> RunState:
        if not self.state.is_terminal:
            logger.info(
                "run %s abandoned at step %d (%d remaining)",
                self.session_id, self.state.step_index, self.remaining_steps,
            )
        self.state = abandon(self.state, self._clock)
        return self.state
