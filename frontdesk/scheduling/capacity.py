"""Capacity split between advance bookings and walk-ins.

At most ``floor(total * ratio)`` slots of a session may be held by active
advance bookings; the remainder is kept for walk-ins. The limit is a count
of active bookings, not a range of positions, because a cancellation frees
a booking without freeing the last index that was claimed.
"""

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from frontdesk.core import config
from frontdesk.core.errors import AdvanceCapacityReached
from frontdesk.models.appointment import Appointment
from frontdesk.scheduling.slot_grid import Slot


@dataclass(frozen=True)
class SessionCapacity:
    total_slots: int
    advance_capacity: int
    walk_in_capacity: int


def _ratio(ratio: float | None) -> float:
    return config.ADVANCE_BOOKING_RATIO if ratio is None else ratio


def calculate_session_capacity(total_slots: int, ratio: float | None = None) -> SessionCapacity:
    advance_capacity = math.floor(total_slots * _ratio(ratio))
    return SessionCapacity(
        total_slots=total_slots,
        advance_capacity=advance_capacity,
        walk_in_capacity=total_slots - advance_capacity,
    )


def is_slot_in_advance_zone(position: int, total_slots: int, ratio: float | None = None) -> bool:
    return position < calculate_session_capacity(total_slots, ratio).advance_capacity


def bookable_slot_count(slots: Sequence[Slot], session_index: int) -> int:
    return sum(1 for slot in slots if slot.session_index == session_index and not slot.is_blocked)


def count_active_advance(appointments: Iterable[Appointment], session_index: int) -> int:
    return sum(
        1
        for appointment in appointments
        if appointment.is_advance and appointment.is_active and appointment.session_index == session_index
    )


def can_book_advance(current_advance: int, total_slots: int, ratio: float | None = None) -> bool:
    return current_advance < calculate_session_capacity(total_slots, ratio).advance_capacity


def sessions_with_advance_capacity(
    slots: Sequence[Slot],
    appointments: Sequence[Appointment],
    ratio: float | None = None,
) -> set[int]:
    session_indexes = {slot.session_index for slot in slots}
    return {
        session_index
        for session_index in session_indexes
        if can_book_advance(
            count_active_advance(appointments, session_index),
            bookable_slot_count(slots, session_index),
            ratio,
        )
    }


def ensure_advance_capacity(
    slots: Sequence[Slot],
    appointments: Sequence[Appointment],
    ratio: float | None = None,
    session_index: int | None = None,
) -> set[int]:
    """Return the sessions that can still take an advance booking.

    Raises ``AdvanceCapacityReached`` when the requested session (or every
    session, when none is requested) has reached its advance capacity.
    """
    open_sessions = sessions_with_advance_capacity(slots, appointments, ratio)
    if session_index is not None:
        if session_index not in open_sessions:
            raise AdvanceCapacityReached()
        return {session_index}
    if not open_sessions:
        raise AdvanceCapacityReached()
    return open_sessions
