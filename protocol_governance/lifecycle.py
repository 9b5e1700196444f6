"""Protocol lifecycle transitions.

Draft -> Pending_Review -> Active -> Archived, with Rejected reachable
from review or from Active. Every move into Active re-applies the
quality gate. Content of an Active protocol is never rewritten here;
only ``status`` and ``approved_by`` change.
"""

import logging
from typing import Dict, FrozenSet, Optional

from .errors import StatusTransitionError
from .quality import check_publishable
from .tiers import can_author, publishes_directly
from .types import Protocol, ProtocolStatus, PublishResult, Tier

logger = logging.getLogger(__name__)

AUTHOR_TIER_TOO_LOW = "AUTHOR_TIER_TOO_LOW"

ALLOWED_TRANSITIONS: Dict[ProtocolStatus, FrozenSet[ProtocolStatus]] = {
    ProtocolStatus.DRAFT: frozenset({ProtocolStatus.PENDING_REVIEW, ProtocolStatus.ACTIVE}),
    ProtocolStatus.PENDING_REVIEW: frozenset({
        ProtocolStatus.ACTIVE, ProtocolStatus.REJECTED, ProtocolStatus.DRAFT,
    }),
    ProtocolStatus.ACTIVE: frozenset({ProtocolStatus.ARCHIVED, ProtocolStatus.REJECTED}),
    ProtocolStatus.ARCHIVED: frozenset(),
    ProtocolStatus.REJECTED: frozenset(),
}


def can_transition(from_status: ProtocolStatus, to_status: ProtocolStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS[from_status]


def _transition(protocol: Protocol, to_status: ProtocolStatus, **extra) -> Protocol:
    if not can_transition(protocol.status, to_status):
        raise StatusTransitionError(
            f"Cannot move protocol '{protocol.id}' from {protocol.status.value} to {to_status.value}",
            from_status=protocol.status.value,
            to_status=to_status.value,
            protocol_id=protocol.id,
        )
    logger.info("protocol %s: %s -> %s", protocol.id, protocol.status.value, to_status.value)
    return protocol.model_copy(update={"status": to_status, **extra})


def submit(protocol: Protocol, author_tier: Tier) -> PublishResult:
    """Submit a draft for publication.

    Authors below Operator are refused. Below the quality minimum the
    draft is refused with its breakdown. Otherwise Sovereign authors
    publish straight to Active and everyone else enters the review queue.
    """
    gate = check_publishable(protocol)
    if not can_author(author_tier):
        return gate.model_copy(update={
            "accepted": False,
            "reason": AUTHOR_TIER_TOO_LOW,
            "improvement_tip": "Protocol creation requires an Operator license or higher.",
            "protocol": None,
        })
    if not gate.accepted:
        logger.info(
            "protocol %s refused: quality %d (weakest: %s)",
            protocol.id, gate.breakdown.total, gate.breakdown.weakest,
        )
        return gate

    target = ProtocolStatus.ACTIVE if publishes_directly(author_tier) else ProtocolStatus.PENDING_REVIEW
    updated = _transition(protocol, target)
    return PublishResult(accepted=True, status=updated.status, breakdown=gate.breakdown, protocol=updated)


def approve(protocol: Protocol, approver: str) -> PublishResult:
    """Pending_Review -> Active; the quality gate is checked again."""
    if protocol.status != ProtocolStatus.PENDING_REVIEW:
        raise StatusTransitionError(
            f"Only protocols in review can be approved (protocol '{protocol.id}' is {protocol.status.value})",
            from_status=protocol.status.value,
            to_status=ProtocolStatus.ACTIVE.value,
            protocol_id=protocol.id,
        )
    gate = check_publishable(protocol)
    if not gate.accepted:
        return gate
    updated = _transition(protocol, ProtocolStatus.ACTIVE, approved_by=approver)
    return PublishResult(accepted=True, status=updated.status, breakdown=gate.breakdown, protocol=updated)


def reject(protocol: Protocol) -> Protocol:
    return _transition(protocol, ProtocolStatus.REJECTED)


def archive(protocol: Protocol) -> Protocol:
    return _transition(protocol, ProtocolStatus.ARCHIVED)


def return_to_draft(protocol: Protocol, notes: Optional[str] = None) -> Protocol:
    """Send a protocol under review back to its author."""
    if notes:
        logger.info("protocol %s returned to draft: %s", protocol.id, notes)
    return _transition(protocol, ProtocolStatus.DRAFT)
