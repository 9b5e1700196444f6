"""In-memory protocol and entitlement stores.

Reference implementations of the external collaborators the engine
talks to. Both are thread-safe; the entitlement store applies charges
with a compare-and-swap on the balance so two authorizations made from
the same snapshot cannot both be charged.
"""

import threading
from typing import Dict, Iterable, List, Optional

from .errors import BalanceConflictError, ProtocolNotFoundError, StatusTransitionError
from .entitlement import apply_charge, entitlement_for
from .types import Entitlement, Protocol, ProtocolStatus, Tier


# Statuses whose content an author may still replace
EDITABLE_STATUSES = frozenset({ProtocolStatus.DRAFT, ProtocolStatus.PENDING_REVIEW})


class InMemoryProtocolStore:
    """Protocols keyed by id. Content past review is never overwritten."""

    def __init__(self, protocols: Optional[Iterable[Protocol]] = None):
        self._protocols: Dict[str, Protocol] = {}
        self._lock = threading.Lock()
        for protocol in protocols or []:
            self.put(protocol)

    def __len__(self) -> int:
        return len(self._protocols)

    def get(self, protocol_id: str) -> Protocol:
        with self._lock:
            protocol = self._protocols.get(protocol_id)
        if protocol is None:
            raise ProtocolNotFoundError(
                f"Protocol not found: {protocol_id}", protocol_id=protocol_id
            )
        return protocol

    def list(self, status: Optional[ProtocolStatus] = None) -> List[Protocol]:
        with self._lock:
            protocols = list(self._protocols.values())
        if status is None:
            return protocols
        return [p for p in protocols if p.status == status]

    def put(self, protocol: Protocol) -> Protocol:
        """Insert a protocol, or replace one still in Draft or Pending_Review."""
        if not protocol.id:
            raise ValueError("Protocol id is required to store a protocol")
        with self._lock:
            existing = self._protocols.get(protocol.id)
            if existing is not None and existing.status not in EDITABLE_STATUSES:
                raise StatusTransitionError(
                    f"Protocol '{protocol.id}' is {existing.status.value}; its content is immutable",
                    from_status=existing.status.value,
                    to_status=protocol.status.value,
                    protocol_id=protocol.id,
                )
            self._protocols[protocol.id] = protocol
        return protocol

    def replace_status(self, protocol: Protocol) -> Protocol:
        """Store a lifecycle transition of an existing protocol.

        Only ``status`` and ``approved_by`` may differ from the stored copy.
        """
        with self._lock:
            existing = self._protocols.get(protocol.id)
            if existing is None:
                raise ProtocolNotFoundError(
                    f"Protocol not found: {protocol.id}", protocol_id=protocol.id
                )
            unchanged = existing.model_copy(
                update={"status": protocol.status, "approved_by": protocol.approved_by}
            )
            if unchanged != protocol:
                raise StatusTransitionError(
                    f"Status update for '{protocol.id}' also changes its content",
                    from_status=existing.status.value,
                    to_status=protocol.status.value,
                    protocol_id=protocol.id,
                )
            self._protocols[protocol.id] = protocol
        return protocol


class InMemoryEntitlementStore:
    """Entitlement snapshots keyed by user id."""

    def __init__(self, default_tier: Tier = Tier.OBSERVER):
        self._default_tier = default_tier
        self._entitlements: Dict[str, Entitlement] = {}
        self._lock = threading.Lock()

    def snapshot(self, user_id: str) -> Entitlement:
        """Current entitlement; unknown users start on the default tier."""
        with self._lock:
            if user_id not in self._entitlements:
                self._entitlements[user_id] = entitlement_for(self._default_tier)
            return self._entitlements[user_id]

    def set(self, user_id: str, entitlement: Entitlement) -> Entitlement:
        with self._lock:
            self._entitlements[user_id] = entitlement
        return entitlement

    def activate_tier(self, user_id: str, tier: Tier) -> Entitlement:
        """Billing event: switch tier and reset balance to its allowance."""
        return self.set(user_id, entitlement_for(tier))

    def charge(self, user_id: str, cost: int, expected: Entitlement) -> Entitlement:
        """Deduct ``cost`` if the stored snapshot still equals ``expected``.

        Raises:
            BalanceConflictError: If the stored entitlement changed since ``expected``
            InsufficientBalanceError: If the charge exceeds the balance
        """
        with self._lock:
            current = self._entitlements.get(user_id)
            if current != expected:
                raise BalanceConflictError(
                    f"Entitlement for '{user_id}' changed before charge",
                    expected_balance=expected.balance,
                    actual_balance=current.balance if current else None,
                )
            updated = apply_charge(current, cost)
            self._entitlements[user_id] = updated
        return updated
