"""Allowed status transitions for each entity.

Every status change in the services is checked here. Entities loaded in the
session move with ``transition``; updates that must not race (using or
expiring a ticket, deciding a receipt) call ``check_transition`` and then
issue a conditional UPDATE on the current status.
"""
from __future__ import annotations

from app.core.errors import InvalidTransition

TICKET_TRANSITIONS: dict[str, frozenset[str]] = {
    "active": frozenset({"used", "cancelled", "expired"}),
    "used": frozenset(),
    "cancelled": frozenset(),
    "expired": frozenset(),
}

RECEIPT_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"confirmed", "rejected"}),
    "confirmed": frozenset(),
    "rejected": frozenset(),
}

BOOKING_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"confirmed", "cancelled"}),
    "confirmed": frozenset({"checked-in", "cancelled"}),
    "checked-in": frozenset(),
    "cancelled": frozenset(),
}

EVENT_TRANSITIONS: dict[str, frozenset[str]] = {
    "draft": frozenset({"published", "cancelled"}),
    "published": frozenset({"postponed", "cancelled"}),
    # postponing again moves the date a second time
    "postponed": frozenset({"published", "postponed", "cancelled"}),
    "cancelled": frozenset(),
}

TRANSITIONS = {
    "ticket": TICKET_TRANSITIONS,
    "receipt": RECEIPT_TRANSITIONS,
    "booking": BOOKING_TRANSITIONS,
    "event": EVENT_TRANSITIONS,
}


def can_transition(kind: str, current: str, target: str) -> bool:
    table = TRANSITIONS[kind]
    return target in table.get(current, frozenset())


def check_transition(kind: str, current: str, target: str) -> None:
    if target not in TRANSITIONS[kind]:
        raise InvalidTransition(f"Unknown {kind} status '{target}'", current=current, target=target)
    if not can_transition(kind, current, target):
        raise InvalidTransition(
            f"Cannot move {kind} from '{current}' to '{target}'",
            current=current,
            target=target,
        )


def transition(kind: str, entity, target: str) -> str:
    """Validate and apply ``entity.status = target``. Returns the previous status."""
    previous = entity.status
    check_transition(kind, previous, target)
    entity.status = target
    return previous


def is_terminal(kind: str, status: str) -> bool:
    return not TRANSITIONS[kind].get(status)
