"""Payment request status transitions, expiry and pay-view state."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional

from ..models.payment import PaymentRequest, PaymentStatus, ensure_aware
from ..store.base import Snapshot

ALLOWED_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.COMPLETED: frozenset(),
    PaymentStatus.FAILED: frozenset(),
}


class InvalidStatusTransition(Exception):
    def __init__(self, current: PaymentStatus, target: PaymentStatus) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Cannot move a {current.value} request to {target.value}")


class ViewState(str, Enum):
    LOADING = "loading"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    READY = "ready"


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def transition(current: PaymentStatus, target: PaymentStatus) -> PaymentStatus:
    """Return the new status or raise. Terminal states reject every move, including a repeat."""
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStatusTransition(current, target)
    return target


def is_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if expires_at is None:
        return False
    now = now or utcnow()
    return now > ensure_aware(expires_at)


def resolve_view_state(snapshot: Snapshot[PaymentRequest], now: Optional[datetime] = None) -> ViewState:
    # An absent or unreadable document is reported before expiry is considered,
    # and expiry wins over status once the document is known.
    if snapshot.loading:
        return ViewState.LOADING
    if snapshot.error is not None or snapshot.data is None:
        return ViewState.NOT_FOUND
    if is_expired(snapshot.data.expires_at, now):
        return ViewState.EXPIRED
    return ViewState.READY
