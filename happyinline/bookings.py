"""Booking lifecycle rules."""
from __future__ import annotations

from datetime import date, time

from .models import Booking

# action -> (statuses it may start from, resulting status)
TRANSITIONS: dict[str, tuple[frozenset[str], str]] = {
    "confirm": (frozenset({"pending"}), "confirmed"),
    "reject": (frozenset({"pending"}), "rejected"),
    "cancel": (frozenset({"pending", "confirmed"}), "cancelled"),
    "complete": (frozenset({"confirmed"}), "completed"),
    "no_show": (frozenset({"confirmed"}), "no_show"),
    "reschedule": (frozenset({"pending", "confirmed"}), "confirmed"),
}

# Actions a shop member may take, by minimum role set.
STAFF_ROLES = frozenset({"owner", "admin", "manager", "barber"})
ACTION_ROLES: dict[str, frozenset[str]] = {
    "confirm": STAFF_ROLES,
    "reject": STAFF_ROLES,
    "cancel": STAFF_ROLES,
    "complete": STAFF_ROLES,
    "reschedule": STAFF_ROLES,
    "no_show": frozenset({"owner", "admin"}),
}
CUSTOMER_ACTIONS = frozenset({"cancel", "reschedule"})


class InvalidTransition(ValueError):
    def __init__(self, action: str, status: str) -> None:
        super().__init__(f"cannot {action.replace('_', ' ')} a booking that is {status}")
        self.action = action
        self.status = status


def can_transition(status: str, action: str) -> bool:
    allowed = TRANSITIONS.get(action)
    return allowed is not None and status in allowed[0]


def apply_transition(
    booking: Booking,
    action: str,
    reason: str | None = None,
    new_date: date | None = None,
    new_time: time | None = None,
) -> Booking:
    """Move ``booking`` through ``action`` or raise ``InvalidTransition``."""
    if action not in TRANSITIONS:
        raise InvalidTransition(action, booking.status)
    sources, target = TRANSITIONS[action]
    if booking.status not in sources:
        raise InvalidTransition(action, booking.status)

    if action == "reschedule":
        if new_date is None or new_time is None:
            raise ValueError("new date and time are required to reschedule")
        booking.appointment_date = new_date
        booking.appointment_time = new_time
    if action == "cancel" and reason:
        booking.customer_notes = reason

    booking.status = target
    return booking


def group_customer_bookings(bookings: list[Booking], today: date) -> dict[str, list[dict[str, object]]]:
    """Split a customer's bookings into upcoming, past and cancelled."""
    grouped: dict[str, list[dict[str, object]]] = {"upcoming": [], "past": [], "cancelled": []}
    for booking in bookings:
        if booking.status == "cancelled":
            grouped["cancelled"].append(booking.to_dict())
        elif booking.status in {"pending", "confirmed"} and booking.appointment_date >= today:
            grouped["upcoming"].append(booking.to_dict())
        elif booking.appointment_date < today or booking.status in {"completed", "no_show"}:
            grouped["past"].append(booking.to_dict())

    grouped["upcoming"].sort(key=lambda b: (b["appointment_date"], b["appointment_time"]))
    grouped["past"].sort(key=lambda b: (b["appointment_date"], b["appointment_time"]), reverse=True)
    return grouped


def group_by_status(bookings: list[Booking]) -> dict[str, list[dict[str, object]]]:
    grouped: dict[str, list[dict[str, object]]] = {
        "pending": [],
        "confirmed": [],
        "completed": [],
        "rejected": [],
    }
    for booking in bookings:
        if booking.status in grouped:
            grouped[booking.status].append(booking.to_dict())
    return grouped
