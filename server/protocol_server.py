"""
protocol_server.py - Protocol Governance Server v1.0

HTTP surface over the protocol engine for the application layer:
- Run authorization (tier, then balance) with charge on admission
- Gated step-by-step execution sessions
- Audit record download for completed or partial runs
- Draft quality scoring and publish lifecycle

State is in memory; the catalog is loaded from PROTOCOL_CATALOG_PATH.
"""

import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

sys.path.insert(0, str(Path(__file__).parent.parent))

from protocol_governance import __version__ as ENGINE_VERSION
from protocol_governance.audit import report_filename
from protocol_governance.catalog import load_catalog
from protocol_governance.config import EngineConfig
from protocol_governance.entitlement import entitlement_for
from protocol_governance.errors import (
    BalanceConflictError, GovernanceError, NoExecutableStepsError,
    ProtocolNotActiveError, ProtocolNotFoundError, RunNotFoundError, StatusTransitionError
)
from protocol_governance.lifecycle import AUTHOR_TIER_TOO_LOW
from protocol_governance.run_state import RunSession
from protocol_governance.service import ProtocolService
from protocol_governance.stores import InMemoryEntitlementStore, InMemoryProtocolStore
from protocol_governance.tiers import level_of
from protocol_governance.types import (
    DecisionChoice, Entitlement, Protocol, ProtocolStatus, PublishResult, Tier
)

# ============== CONFIGURATION ==============

CONFIG = EngineConfig.from_env()

logging.basicConfig(
    level=getattr(logging, CONFIG.log_level.upper(), logging.INFO),
    format="%(message)s",
)
logger = logging.getLogger("protocol_server")

# ============== STRUCTURED LOGGING ==============

def log_structured(level: str, message: str, **fields):
    """Emit structured JSON log line with correlation ids."""
    log_entry = {
        "timestamp": time.time(),
        "level": level,
        "message": message,
        "source": "protocol_server",
        **{k: v for k, v in fields.items() if v is not None},
    }
    logger.log(getattr(logging, level.upper(), logging.INFO), json.dumps(log_entry))


# ============== STATE ==============

def build_service(config: EngineConfig) -> ProtocolService:
    """Create a service with the catalog loaded (empty store if absent)."""
    protocols = InMemoryProtocolStore()
    if config.catalog_path.exists():
        for protocol in load_catalog(config.catalog_path):
            protocols.put(protocol)
        log_structured("info", "catalog loaded", path=str(config.catalog_path), protocols=len(protocols))
    else:
        log_structured("warning", "catalog not found; starting empty", path=str(config.catalog_path))
    return ProtocolService(
        protocols,
        InMemoryEntitlementStore(default_tier=config.default_tier),
        max_sessions=config.max_sessions,
    )


SERVICE = build_service(CONFIG)

# ============== APP ==============

app = FastAPI(title="Protocol Governance Server v1.0", version=ENGINE_VERSION)

_STATUS_CODES = {
    ProtocolNotFoundError: 404,
    RunNotFoundError: 404,
    NoExecutableStepsError: 409,
    ProtocolNotActiveError: 409,
    BalanceConflictError: 409,
    StatusTransitionError: 409,
}


def _http_error(exc: GovernanceError) -> HTTPException:
    status_code = _STATUS_CODES.get(type(exc), 400)
    log_structured(
        "warning", exc.message,
        error_code=exc.error_code, protocol_id=exc.protocol_id, session_id=exc.session_id,
    )
    return HTTPException(status_code=status_code, detail=exc.to_dict())


def _session_view(session: RunSession) -> Dict[str, Any]:
    state = session.state
    step = session.current_step
    return {
        "session_id": session.session_id,
        "protocol_id": state.protocol_id,
        "user_id": session.user_id,
        "cost": session.cost,
        "status": state.status.value,
        "step_index": state.step_index,
        "current_step": step.model_dump(mode="json") if step else None,
        "captured": state.captured.model_dump(mode="json"),
        "completed_step_ids": list(state.completed_step_ids),
        "progress": session.progress,
        "remaining_steps": session.remaining_steps,
        "log": [entry.model_dump(mode="json") for entry in state.log],
    }


def _publish_view(result: PublishResult) -> Dict[str, Any]:
    return {
        "accepted": result.accepted,
        "status": result.status.value,
        "reason": result.reason,
        "breakdown": result.breakdown.model_dump(),
        "weakest": result.breakdown.weakest,
        "improvement_tip": result.improvement_tip,
        "protocol_id": result.protocol.id if result.protocol else None,
    }


# ============== REQUEST MODELS ==============

class EntitlementUpdate(BaseModel):
    tier: Tier
    balance: Optional[int] = Field(default=None, ge=0, description="Omit for the tier allowance; null = unlimited")


class RunRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    protocol_id: str = Field(..., min_length=1)


class CaptureRequest(BaseModel):
    confirmed: Optional[bool] = None
    choice: Optional[DecisionChoice] = None
    text: Optional[str] = None


class SubmitDraftRequest(BaseModel):
    protocol: Protocol
    author_tier: Tier


class ApproveRequest(BaseModel):
    approver: str = Field(..., min_length=1)


# ============== ENDPOINTS ==============

@app.get("/")
def root():
    """Root endpoint."""
    return {
        "service": "Protocol Governance Server",
        "version": ENGINE_VERSION,
        "endpoints": [
            "GET /v1/protocols",
            "GET /v1/protocols/{protocol_id}/access",
            "PUT /v1/entitlements/{user_id}",
            "POST /v1/runs",
            "POST /v1/runs/{session_id}/capture",
            "POST /v1/runs/{session_id}/advance",
            "GET /v1/runs/{session_id}/report",
            "POST /v1/drafts/score",
            "POST /v1/drafts/submit",
        ],
    }


@app.get("/v1/protocols")
def list_protocols(status: Optional[ProtocolStatus] = ProtocolStatus.ACTIVE):
    return [
        {"id": p.id, "title": p.title, "category": p.category, "price": p.price, "status": p.status.value}
        for p in SERVICE.protocols.list(status)
    ]


@app.get("/v1/protocols/{protocol_id}")
def get_protocol(protocol_id: str):
    try:
        return SERVICE.protocols.get(protocol_id).model_dump(mode="json")
    except GovernanceError as e:
        raise _http_error(e)


@app.get("/v1/protocols/{protocol_id}/access")
def preview_access(protocol_id: str, user_id: str):
    try:
        decision = SERVICE.preview_access(user_id, protocol_id)
    except GovernanceError as e:
        raise _http_error(e)
    return decision.model_dump(mode="json")


@app.put("/v1/entitlements/{user_id}")
def set_entitlement(user_id: str, req: EntitlementUpdate):
    """Billing event: activate a tier, optionally with an explicit balance."""
    if "balance" in req.model_fields_set:
        entitlement = Entitlement(tier_level=level_of(req.tier), balance=req.balance)
    else:
        entitlement = entitlement_for(req.tier)
    SERVICE.entitlements.set(user_id, entitlement)
    log_structured("info", "entitlement set", user_id=user_id, tier=req.tier.value, balance=entitlement.balance)
    return entitlement.model_dump()


@app.get("/v1/entitlements/{user_id}")
def get_entitlement(user_id: str):
    return SERVICE.entitlements.snapshot(user_id).model_dump()


@app.post("/v1/runs", status_code=201)
def start_run(req: RunRequest):
    try:
        outcome = SERVICE.start_run(req.user_id, req.protocol_id)
    except GovernanceError as e:
        raise _http_error(e)

    if not outcome.started:
        decision = outcome.authorization
        log_structured(
            "info", "run denied",
            user_id=req.user_id, protocol_id=req.protocol_id, reason=decision.reason.value,
        )
        raise HTTPException(status_code=403, detail=decision.model_dump(mode="json"))

    session = outcome.session
    log_structured(
        "info", "run started",
        user_id=req.user_id, protocol_id=req.protocol_id, session_id=session.session_id,
        cost=outcome.authorization.cost,
    )
    return _session_view(session)


@app.get("/v1/runs/{session_id}")
def get_run(session_id: str):
    try:
        return _session_view(SERVICE.get_session(session_id))
    except GovernanceError as e:
        raise _http_error(e)


@app.post("/v1/runs/{session_id}/begin")
def begin_run(session_id: str):
    try:
        session = SERVICE.get_session(session_id)
    except GovernanceError as e:
        raise _http_error(e)
    session.begin()
    return _session_view(session)


@app.post("/v1/runs/{session_id}/capture")
def capture_value(session_id: str, req: CaptureRequest):
    try:
        session = SERVICE.get_session(session_id)
    except GovernanceError as e:
        raise _http_error(e)
    if req.confirmed is not None:
        session.confirm(req.confirmed)
    if req.choice is not None:
        session.choose(req.choice)
    if req.text is not None:
        session.enter_text(req.text)
    return _session_view(session)


@app.post("/v1/runs/{session_id}/advance")
def advance_run(session_id: str):
    """Unsatisfied gate is not an error: the unchanged state comes back with advanced=false."""
    try:
        session = SERVICE.get_session(session_id)
    except GovernanceError as e:
        raise _http_error(e)
    moved = session.advance()
    if moved and session.is_complete:
        log_structured("info", "run completed", session_id=session_id, protocol_id=session.protocol.id)
    return {"advanced": moved, **_session_view(session)}


@app.post("/v1/runs/{session_id}/abandon")
def abandon_run(session_id: str):
    try:
        session = SERVICE.get_session(session_id)
    except GovernanceError as e:
        raise _http_error(e)
    session.abandon()
    log_structured(
        "info", "run abandoned",
        session_id=session_id, protocol_id=session.protocol.id, remaining_steps=session.remaining_steps,
    )
    return _session_view(session)


@app.get("/v1/runs/{session_id}/report", response_class=PlainTextResponse)
def get_report(session_id: str):
    try:
        session = SERVICE.get_session(session_id)
        report = SERVICE.render_report(session_id)
    except GovernanceError as e:
        raise _http_error(e)
    filename = report_filename(session.protocol)
    return PlainTextResponse(
        report, headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@app.post("/v1/drafts/score")
def score_draft(draft: Protocol):
    breakdown = SERVICE.score_draft(draft)
    return {**breakdown.model_dump(), "weakest": breakdown.weakest}


@app.post("/v1/drafts/submit")
def submit_draft(req: SubmitDraftRequest):
    if not req.protocol.id:
        raise HTTPException(status_code=400, detail="Protocol id is required to submit")
    try:
        result = SERVICE.submit_draft(req.protocol, req.author_tier)
    except GovernanceError as e:
        raise _http_error(e)

    view = _publish_view(result)
    if not result.accepted:
        status_code = 403 if result.reason == AUTHOR_TIER_TOO_LOW else 422
        log_structured("info", "draft refused", protocol_id=req.protocol.id, reason=result.reason)
        raise HTTPException(status_code=status_code, detail=view)
    log_structured("info", "draft accepted", protocol_id=req.protocol.id, status=result.status.value)
    return view


@app.post("/v1/protocols/{protocol_id}/approve")
def approve_protocol(protocol_id: str, req: ApproveRequest):
    try:
        result = SERVICE.approve(protocol_id, req.approver)
    except GovernanceError as e:
        raise _http_error(e)
    if not result.accepted:
        raise HTTPException(status_code=422, detail=_publish_view(result))
    return _publish_view(result)


@app.post("/v1/protocols/{protocol_id}/reject")
def reject_protocol(protocol_id: str):
    try:
        protocol = SERVICE.reject(protocol_id)
    except GovernanceError as e:
        raise _http_error(e)
    return {"id": protocol.id, "status": protocol.status.value}


@app.post("/v1/protocols/{protocol_id}/archive")
def archive_protocol(protocol_id: str):
    try:
        protocol = SERVICE.archive(protocol_id)
    except GovernanceError as e:
        raise _http_error(e)
    return {"id": protocol.id, "status": protocol.status.value}


@app.get("/v1/health")
def health():
    """Health check."""
    return {
        "status": "healthy",
        "protocols": len(SERVICE.protocols),
        "engine_version": ENGINE_VERSION,
    }

# ============== MAIN ==============

if __name__ == "__main__":
    import uvicorn
    log_structured("info", "starting", version=ENGINE_VERSION, port=CONFIG.port)
    uvicorn.run(app, host="0.0.0.0", port=CONFIG.port)
