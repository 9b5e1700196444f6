"""Tests for the in-memory stores and the protocol service.

Validates:
1. Compare-and-swap charge rejects stale snapshots
2. Charge happens once, on admission, and never for zero-step protocols
3. Denials do not charge
4. Sessions are independent
5. Lifecycle changes go through the store without rewriting content
6. Only Active protocols run; retired ids cannot be reused
7. Terminal sessions are dropped beyond the session cap
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from protocol_governance import (
    DenialReason, Entitlement, ProtocolStatus, RunStatus, Tier, UNLIMITED, load_catalog
)
from protocol_governance.errors import (
    BalanceConflictError, NoExecutableStepsError, ProtocolNotActiveError,
    ProtocolNotFoundError, RunNotFoundError, StatusTransitionError
)
from protocol_governance.service import ProtocolService
from protocol_governance.stores import InMemoryEntitlementStore, InMemoryProtocolStore
from protocol_governance.types import Protocol, Step, StepType

SHIPPED_CATALOG = Path(__file__).parent.parent / "catalog" / "protocols_v1.json"


# ============== FIXTURES ==============

@pytest.fixture
def service(make_clock):
    return ProtocolService(
        InMemoryProtocolStore(load_catalog(SHIPPED_CATALOG)),
        InMemoryEntitlementStore(default_tier=Tier.OBSERVER),
        clock=make_clock(minutes=2),
    )


@pytest.fixture
def reviewable_draft():
    return Protocol(
        id="draft-ops-2",
        title="Forklift Pre-Use Inspection",
        price=20,
        purpose="Confirm the forklift is safe before each shift.",
        scope={"includes": "All warehouse forklifts"},
        roles=[{"role": "Driver"}],
        steps=[
            Step(id="1", title="Walk Around", type=StepType.ACTION),
            Step(id="2", title="Hour Meter", type=StepType.INPUT),
            Step(id="3", title="Fit For Use", type=StepType.DECISION),
        ],
        risks=[{"trigger": "Hydraulic leak"}],
        escalation=[{"condition": "Brake fault", "contact": "Shift Lead"}],
        kpis=["Inspections completed per shift"],
    )


# ============== STORES ==============

class TestEntitlementStore:

    def test_unknown_user_gets_default_tier(self):
        store = InMemoryEntitlementStore(default_tier=Tier.OPERATOR)
        assert store.snapshot("new-user") == Entitlement(tier_level=1, balance=60)

    def test_charge_with_current_snapshot(self):
        store = InMemoryEntitlementStore()
        store.activate_tier("u1", Tier.COMMANDER)
        snapshot = store.snapshot("u1")
        assert store.charge("u1", 30, expected=snapshot).balance == 270

    def test_stale_snapshot_conflicts(self):
        store = InMemoryEntitlementStore()
        store.activate_tier("u1", Tier.OPERATOR)
        stale = store.snapshot("u1")
        store.charge("u1", 3, expected=stale)
        with pytest.raises(BalanceConflictError) as exc_info:
            store.charge("u1", 3, expected=stale)
        assert exc_info.value.error_code == "BALANCE_CONFLICT"
        assert store.snapshot("u1").balance == 57

    def test_unlimited_charge_keeps_unlimited(self):
        store = InMemoryEntitlementStore()
        store.activate_tier("u1", Tier.SOVEREIGN)
        snapshot = store.snapshot("u1")
        assert store.charge("u1", 99, expected=snapshot).balance is UNLIMITED


class TestProtocolStore:

    def test_get_missing(self):
        with pytest.raises(ProtocolNotFoundError):
            InMemoryProtocolStore().get("nope")

    def test_list_by_status(self):
        store = InMemoryProtocolStore(load_catalog(SHIPPED_CATALOG))
        assert len(store.list(ProtocolStatus.ACTIVE)) == 5
        assert store.list(ProtocolStatus.DRAFT) == []

    def test_active_content_not_overwritten(self):
        store = InMemoryProtocolStore(load_catalog(SHIPPED_CATALOG))
        active = store.get("ops-001")
        with pytest.raises(StatusTransitionError):
            store.put(active.model_copy(update={"title": "Rewritten"}))

    @pytest.mark.parametrize("status", [ProtocolStatus.ARCHIVED, ProtocolStatus.REJECTED])
    def test_terminal_content_not_overwritten(self, status):
        store = InMemoryProtocolStore(load_catalog(SHIPPED_CATALOG))
        retired = store.replace_status(store.get("fin-014").model_copy(update={"status": status}))
        replacement = retired.model_copy(update={
            "status": ProtocolStatus.DRAFT, "title": "Brand New Content",
        })
        with pytest.raises(StatusTransitionError) as exc_info:
            store.put(replacement)
        assert exc_info.value.from_status == status.value
        assert store.get("fin-014").title == "Vendor Payment Approval"

    def test_draft_can_be_replaced(self):
        store = InMemoryProtocolStore()
        store.put(Protocol(id="d-1", title="First Draft", price=0))
        store.put(Protocol(id="d-1", title="Second Draft", price=0))
        assert store.get("d-1").title == "Second Draft"

    def test_replace_status_rejects_content_change(self):
        store = InMemoryProtocolStore(load_catalog(SHIPPED_CATALOG))
        active = store.get("ops-001")
        with pytest.raises(StatusTransitionError):
            store.replace_status(active.model_copy(update={
                "status": ProtocolStatus.ARCHIVED, "title": "Rewritten",
            }))

    def test_put_requires_id(self):
        with pytest.raises(ValueError):
            InMemoryProtocolStore().put(Protocol(title="No Id", price=0))


# ============== SERVICE ==============

class TestStartRun:

    def test_free_protocol_charges_one_credit(self, service):
        outcome = service.start_run("observer", "ops-001")
        assert outcome.started
        assert outcome.authorization.cost == 1
        assert service.entitlements.snapshot("observer").balance == 1
        assert outcome.session.state.status == RunStatus.NOT_STARTED

    def test_denial_does_not_charge(self, service):
        outcome = service.start_run("observer", "fin-014")
        assert not outcome.started
        assert outcome.authorization.reason == DenialReason.INSUFFICIENT_TIER
        assert service.entitlements.snapshot("observer").balance == 2

    def test_balance_denial(self, service):
        service.entitlements.set("op", Entitlement(tier_level=1, balance=2))
        outcome = service.start_run("op", "fin-014")
        assert outcome.authorization.reason == DenialReason.INSUFFICIENT_BALANCE
        assert service.entitlements.snapshot("op").balance == 2

    def test_weighted_protocol_cost(self, service):
        service.entitlements.activate_tier("cmd", Tier.COMMANDER)
        outcome = service.start_run("cmd", "qhse-007")
        assert outcome.authorization.cost == 30
        assert service.entitlements.snapshot("cmd").balance == 270

    def test_zero_step_protocol_not_charged(self, service):
        service.entitlements.activate_tier("op", Tier.OPERATOR)
        with pytest.raises(NoExecutableStepsError):
            service.start_run("op", "hr-020")
        assert service.entitlements.snapshot("op").balance == 60

    @pytest.mark.parametrize("status", [
        ProtocolStatus.DRAFT, ProtocolStatus.PENDING_REVIEW,
        ProtocolStatus.ARCHIVED, ProtocolStatus.REJECTED,
    ])
    def test_only_active_protocols_run(self, status):
        protocols = InMemoryProtocolStore([
            Protocol(id="p1", title="Inactive Protocol", price=0, status=status,
                     steps=[Step(id="s1", title="Only Step", type=StepType.ACTION)]),
        ])
        entitlements = InMemoryEntitlementStore()
        entitlements.activate_tier("u", Tier.OPERATOR)
        service = ProtocolService(protocols, entitlements)
        with pytest.raises(ProtocolNotActiveError) as exc_info:
            service.start_run("u", "p1")
        assert exc_info.value.error_code == "PROTOCOL_NOT_ACTIVE"
        assert exc_info.value.status == status.value
        assert entitlements.snapshot("u").balance == 60
        assert service.session_count == 0

    def test_archived_catalog_protocol_not_runnable(self, service):
        service.archive("ops-001")
        with pytest.raises(ProtocolNotActiveError):
            service.start_run("observer", "ops-001")
        assert service.entitlements.snapshot("observer").balance == 2

    def test_unknown_protocol(self, service):
        with pytest.raises(ProtocolNotFoundError):
            service.start_run("observer", "missing")

    def test_unlimited_user_runs_repeatedly(self, service):
        service.entitlements.activate_tier("sov", Tier.SOVEREIGN)
        for _ in range(3):
            assert service.start_run("sov", "legal-900").started
        assert service.entitlements.snapshot("sov").is_unlimited

    def test_sessions_are_independent(self, service):
        service.entitlements.activate_tier("op", Tier.OPERATOR)
        first = service.start_run("op", "fin-014").session
        second = service.start_run("op", "fin-014").session
        first.begin()
        first.choose("approved")
        assert first.advance()
        assert service.get_session(second.session_id).state.log == ()
        assert service.get_session(first.session_id).state.step_index == 1
        assert service.entitlements.snapshot("op").balance == 54


class TestReports:

    def test_unknown_session(self, service):
        with pytest.raises(RunNotFoundError):
            service.render_report("NOPE")

    def test_partial_report(self, service):
        session = service.start_run("observer", "ops-001").session
        session.begin()
        session.confirm()
        session.advance()
        report = service.render_report(session.session_id, operator="Night Shift")
        assert "HALTED PREMATURELY" in report
        assert "Remaining Steps: 2" in report
        assert "Night Shift" in report

    def test_completed_report(self, service):
        session = service.start_run("observer", "ops-001").session
        session.begin()
        session.confirm()
        session.advance()
        session.enter_text("Conveyor 3 jammed")
        session.advance()
        session.choose("rejected")
        session.advance()
        report = service.render_report(session.session_id)
        assert "PROTOCOL COMPLETED" in report
        assert 'Input Value: "Conveyor 3 jammed"' in report
        assert "Decision: REJECTED" in report


class TestAuthoring:

    def test_submit_then_approve(self, service, reviewable_draft):
        result = service.submit_draft(reviewable_draft, "Operator")
        assert result.accepted
        assert service.protocols.get("draft-ops-2").status == ProtocolStatus.PENDING_REVIEW

        approved = service.approve("draft-ops-2", "Safety Board")
        assert approved.accepted
        stored = service.protocols.get("draft-ops-2")
        assert stored.status == ProtocolStatus.ACTIVE
        assert stored.approved_by == "Safety Board"

    def test_refused_draft_not_stored(self, service):
        result = service.submit_draft(Protocol(id="thin", title="Thin", price=0), Tier.SOVEREIGN)
        assert not result.accepted
        with pytest.raises(ProtocolNotFoundError):
            service.protocols.get("thin")

    def test_archive_active(self, service):
        assert service.archive("fin-014").status == ProtocolStatus.ARCHIVED
        assert service.protocols.get("fin-014").status == ProtocolStatus.ARCHIVED

    def test_archived_cannot_be_rejected(self, service):
        service.archive("fin-014")
        with pytest.raises(StatusTransitionError):
            service.reject("fin-014")

    def test_score_draft(self, service, reviewable_draft):
        assert service.score_draft(reviewable_draft).total == 100

    def test_archived_id_cannot_be_resubmitted(self, service, reviewable_draft):
        service.archive("fin-014")
        draft = reviewable_draft.model_copy(update={"id": "fin-014", "title": "Brand New Content"})
        with pytest.raises(StatusTransitionError):
            service.submit_draft(draft, Tier.SOVEREIGN)
        stored = service.protocols.get("fin-014")
        assert stored.status == ProtocolStatus.ARCHIVED
        assert stored.title == "Vendor Payment Approval"


class TestSessionCap:

    def _capped_service(self, max_sessions):
        entitlements = InMemoryEntitlementStore()
        entitlements.activate_tier("sov", Tier.SOVEREIGN)
        return ProtocolService(
            InMemoryProtocolStore(load_catalog(SHIPPED_CATALOG)), entitlements, max_sessions=max_sessions
        )

    def test_oldest_terminal_sessions_dropped(self):
        service = self._capped_service(max_sessions=2)
        first = service.start_run("sov", "ops-001").session
        second = service.start_run("sov", "ops-001").session
        first.abandon()
        second.abandon()
        third = service.start_run("sov", "ops-001").session

        assert service.session_count == 2
        with pytest.raises(RunNotFoundError):
            service.get_session(first.session_id)
        assert service.get_session(second.session_id) is second
        assert service.get_session(third.session_id) is third

    def test_running_sessions_kept_over_cap(self):
        service = self._capped_service(max_sessions=1)
        sessions = [service.start_run("sov", "ops-001").session for _ in range(3)]
        assert service.session_count == 3
        for session in sessions:
            assert service.get_session(session.session_id) is session
