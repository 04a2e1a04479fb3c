"""Candidate slot selection for advance bookings and walk-ins.

Advance bookings see an ungapped, forward-looking timeline starting one
lead window after now. Walk-ins first fill free slots inside the lead
window; beyond it they are spread out to one walk-in per ``spacing``
advance bookings, and fall back to any free slot so they are never
starved.
"""

from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta

from frontdesk.core import config
from frontdesk.models.appointment import Appointment, BookingType
from frontdesk.scheduling.slot_grid import Slot


def _lead(lead_minutes: int | None) -> timedelta:
    return timedelta(minutes=config.BOOKING_LEAD_MINUTES if lead_minutes is None else lead_minutes)


def occupied_slot_indices(
    slots: Sequence[Slot],
    appointments: Iterable[Appointment],
    exclude_appointment_id: int | None = None,
    exclude_slot_indices: Iterable[int] = (),
) -> set[int]:
    occupied = {slot.index for slot in slots if slot.is_blocked}
    for appointment in appointments:
        if exclude_appointment_id is not None and appointment.id == exclude_appointment_id:
            continue
        if appointment.slot_index is not None and appointment.is_active:
            occupied.add(appointment.slot_index)
    occupied.update(exclude_slot_indices)
    return occupied


def select_advance_candidates(
    slots: Sequence[Slot],
    now: datetime,
    occupied: set[int],
    preferred_slot_index: int | None = None,
    session_indexes: set[int] | None = None,
    lead_minutes: int | None = None,
) -> list[int]:
    horizon = now + _lead(lead_minutes)
    candidates = [
        slot.index
        for slot in slots
        if slot.time > horizon
        and slot.index not in occupied
        and (session_indexes is None or slot.session_index in session_indexes)
    ]

    if preferred_slot_index is not None and preferred_slot_index in candidates:
        candidates.remove(preferred_slot_index)
        candidates.insert(0, preferred_slot_index)

    return candidates


def _nth_or_last(indexes: list[int], spacing: int) -> int:
    if not indexes:
        return -1
    if spacing > 0 and len(indexes) >= spacing:
        return indexes[spacing - 1]
    return indexes[-1]


def compute_walk_in_floor(appointments: Iterable[Appointment], spacing: int) -> int:
    """Highest slot index a spaced walk-in must be placed after."""
    active = [
        appointment
        for appointment in appointments
        if appointment.is_active and appointment.slot_index is not None
    ]
    advance_indexes = sorted(appointment.slot_index for appointment in active if appointment.is_advance)
    walk_in_indexes = [appointment.slot_index for appointment in active if not appointment.is_advance]

    if not walk_in_indexes:
        return _nth_or_last(advance_indexes, spacing)

    last_walk_in = max(walk_in_indexes)
    advance_after_walk_in = [index for index in advance_indexes if index > last_walk_in]
    if not advance_after_walk_in:
        return last_walk_in

    return _nth_or_last(advance_after_walk_in, spacing)


def select_walk_in_candidates(
    slots: Sequence[Slot],
    now: datetime,
    occupied: set[int],
    appointments: Sequence[Appointment],
    spacing: int | None = None,
    lead_minutes: int | None = None,
) -> list[int]:
    horizon = now + _lead(lead_minutes)
    free_slots = [slot for slot in slots if slot.index not in occupied]

    immediate = [slot.index for slot in free_slots if now <= slot.time <= horizon]
    if immediate:
        return immediate

    spaced = [slot.index for slot in free_slots if slot.time > horizon]
    floor = compute_walk_in_floor(
        appointments,
        config.WALK_IN_TOKEN_ALLOTMENT if spacing is None else spacing,
    )
    return [index for index in spaced if index > floor] or spaced


def select_candidates(
    booking_type: BookingType,
    slots: Sequence[Slot],
    now: datetime,
    occupied: set[int],
    appointments: Sequence[Appointment] = (),
    preferred_slot_index: int | None = None,
    spacing: int | None = None,
    session_indexes: set[int] | None = None,
) -> list[int]:
    if booking_type == BookingType.ADVANCE:
        return select_advance_candidates(
            slots,
            now,
            occupied,
            preferred_slot_index=preferred_slot_index,
            session_indexes=session_indexes,
        )
    return select_walk_in_candidates(slots, now, occupied, appointments, spacing=spacing)
