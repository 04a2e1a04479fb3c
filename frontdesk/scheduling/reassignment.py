"""Move arrived patients forward into vacated slots.

When a same-day appointment is cancelled or marked no-show, confirmed
patients further down the same session are pulled into the earliest
empty slots before them. Pending bookings never move. Walk-ins are placed
first, preferring empty slots inside the booking lead window, then
confirmed advance bookings, each group in slot order.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from frontdesk.core import config
from frontdesk.models.appointment import Appointment, AppointmentStatus
from frontdesk.models.clinic import Doctor
from frontdesk.models.reservation import SlotReservation
from frontdesk.scheduling.appointments import appointment_deadlines
from frontdesk.scheduling.candidates import occupied_slot_indices
from frontdesk.scheduling.reservation import load_day_appointments
from frontdesk.scheduling.slot_grid import DaySchedule, Slot, load_day_schedule
from frontdesk.storage import TransactionalStore

logger = logging.getLogger(__name__)


@dataclass
class Reassignment:
    appointment_id: int
    token_number: str
    from_slot_index: int
    to_slot_index: int
    time: datetime


def find_vacant_slots(
    schedule: DaySchedule,
    appointments: list[Appointment],
    session_index: int,
    now: datetime,
    reserved: set[int] = frozenset(),
) -> tuple[list[Slot], list[Slot]]:
    """Split a session's empty slots into those inside the lead window and those already past."""
    occupied = occupied_slot_indices(schedule.slots, appointments) | set(reserved)
    horizon = now + timedelta(minutes=config.BOOKING_LEAD_MINUTES)

    upcoming, past = [], []
    for slot in schedule.slots_for_session(session_index):
        if slot.index in occupied:
            continue
        if now <= slot.time <= horizon:
            upcoming.append(slot)
        elif slot.time < now:
            past.append(slot)
    return upcoming, past


def plan_reassignments(
    schedule: DaySchedule,
    appointments: list[Appointment],
    session_index: int,
    now: datetime,
    reserved: set[int] = frozenset(),
) -> list[tuple[Appointment, Slot]]:
    upcoming, past = find_vacant_slots(schedule, appointments, session_index, now, reserved)
    if not upcoming and not past:
        return []

    arrived = [
        appointment
        for appointment in appointments
        if appointment.session_index == session_index
        and appointment.status == AppointmentStatus.CONFIRMED.value
        and appointment.slot_index is not None
    ]

    def has_earlier(slots: list[Slot], appointment: Appointment) -> bool:
        return any(slot.index < appointment.slot_index for slot in slots)

    def priority(appointment: Appointment) -> tuple[int, int]:
        if not appointment.is_advance:
            return (0 if has_earlier(upcoming, appointment) else 1, appointment.slot_index)
        return (2, appointment.slot_index)

    movable = sorted(
        (appointment for appointment in arrived if has_earlier(upcoming + past, appointment)),
        key=priority,
    )

    used: set[int] = set()
    plan = []
    for appointment in movable:
        if appointment.is_advance:
            pools = [sorted(upcoming + past, key=lambda slot: slot.index)]
        else:
            pools = [upcoming, past]

        for pool in pools:
            target = next(
                (slot for slot in pool if slot.index < appointment.slot_index and slot.index not in used),
                None,
            )
            if target is not None:
                used.add(target.index)
                plan.append((appointment, target))
                break

    return plan


def reassign_to_vacated_slots(
    store: TransactionalStore,
    doctor: Doctor,
    target_date: date,
    session_index: int,
    now: datetime | None = None,
) -> list[Reassignment]:
    now = now or datetime.now()
    if target_date != now.date():
        return []

    def apply(tx: TransactionalStore) -> list[Reassignment]:
        schedule = load_day_schedule(tx, doctor, target_date)
        appointments = load_day_appointments(tx, doctor, target_date)
        live_reservations = tx.find(
            SlotReservation,
            clinic_id=doctor.clinic_id,
            doctor_name=doctor.name,
            date=target_date,
        )
        reserved = {
            record.slot_index
            for record in live_reservations
            if record.expires_at is None or record.expires_at > now
        }

        moved = []
        for appointment, slot in plan_reassignments(schedule, appointments, session_index, now, reserved):
            previous = appointment.slot_index
            cut_off_time, no_show_time = appointment_deadlines(slot.time)
            tx.update(
                appointment,
                slot_index=slot.index,
                time=slot.time,
                cut_off_time=cut_off_time,
                no_show_time=no_show_time + timedelta(minutes=appointment.delay_minutes or 0),
                updated_at=now,
            )
            moved.append(
                Reassignment(
                    appointment_id=appointment.id,
                    token_number=appointment.token_number,
                    from_slot_index=previous,
                    to_slot_index=slot.index,
                    time=slot.time,
                )
            )
        return moved

    moved = store.run_atomic(apply)
    for item in moved:
        logger.info(
            'Moved %s from slot %s to slot %s (%s).',
            item.token_number,
            item.from_slot_index,
            item.to_slot_index,
            item.time,
        )
    return moved
