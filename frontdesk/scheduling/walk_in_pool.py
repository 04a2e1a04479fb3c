"""Walk-in pool.

Walk-ins registered before a session's consultation starts wait here in
FIFO order and are placed into the timeline once the session has begun.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime

from frontdesk.core.errors import PoolEntryNotFound, SchedulingError, SlotOutsideAvailability
from frontdesk.models.appointment import Appointment, AppointmentStatus, BookingType
from frontdesk.models.clinic import Doctor
from frontdesk.models.walk_in_pool import WalkInPoolEntry
from frontdesk.notifications import NotificationEvent, NotificationKind, NotificationSink, publish_safely
from frontdesk.patients import record_visit
from frontdesk.scheduling.appointments import create_appointment
from frontdesk.scheduling.policy import resolve_policy
from frontdesk.scheduling.reservation import ReservationResult, allocate_slot
from frontdesk.scheduling.slot_grid import DaySchedule, has_consultation_started, load_day_schedule
from frontdesk.storage import TransactionalStore

logger = logging.getLogger(__name__)

POOL_WAITING = 'waiting'


@dataclass
class PoolAssignment:
    entry_id: int
    patient_id: int | None
    appointment_id: int
    token_number: str
    slot_index: int
    time: datetime


@dataclass
class PoolDrainResult:
    placed: list[PoolAssignment] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)


def get_walk_in_pool(
    store: TransactionalStore,
    clinic_id: str,
    doctor_id: int,
    target_date: date,
    session_index: int,
) -> list[WalkInPoolEntry]:
    return store.find(
        WalkInPoolEntry,
        clinic_id=clinic_id,
        doctor_id=doctor_id,
        date=target_date,
        session_index=session_index,
        status=POOL_WAITING,
        order_by=[WalkInPoolEntry.registered_at.asc(), WalkInPoolEntry.id.asc()],
    )


def add_to_walk_in_pool(
    store: TransactionalStore,
    doctor: Doctor,
    target_date: date,
    session_index: int,
    patient_id: int | None,
    patient_name: str,
    phone: str | None = None,
    now: datetime | None = None,
) -> WalkInPoolEntry:
    now = now or datetime.now()

    def append(tx: TransactionalStore) -> WalkInPoolEntry:
        waiting = get_walk_in_pool(tx, doctor.clinic_id, doctor.id, target_date, session_index)
        return tx.create(
            WalkInPoolEntry(
                clinic_id=doctor.clinic_id,
                doctor_id=doctor.id,
                doctor_name=doctor.name,
                date=target_date,
                session_index=session_index,
                patient_id=patient_id,
                patient_name=patient_name,
                phone=phone,
                registered_at=now,
                status=POOL_WAITING,
                position=len(waiting) + 1,
            )
        )

    entry = store.run_atomic(append)
    logger.info('Added %s to the walk-in pool of %s at position %s.', patient_name, doctor.name, entry.position)
    return entry


def remove_from_walk_in_pool(store: TransactionalStore, entry_id: int) -> None:
    def remove(tx: TransactionalStore) -> None:
        entry = tx.get(WalkInPoolEntry, entry_id)
        if entry is None:
            raise PoolEntryNotFound()
        tx.delete(entry)

    store.run_atomic(remove)


def compute_pool_target_index(appointments: list[Appointment], session_index: int, spacing: int) -> int | None:
    """Slot index the next pooled walk-in of a session should land on.

    Returns ``None`` when the session has no active appointments to count
    from, in which case the walk-in takes the first free slot.
    """
    session_appointments = sorted(
        (
            appointment
            for appointment in appointments
            if appointment.session_index == session_index
            and appointment.is_active
            and appointment.slot_index is not None
        ),
        key=lambda appointment: appointment.slot_index,
    )
    advance_indexes = [appointment.slot_index for appointment in session_appointments if appointment.is_advance]
    walk_in_indexes = [appointment.slot_index for appointment in session_appointments if not appointment.is_advance]

    if not walk_in_indexes:
        if not advance_indexes:
            return None
        counted = advance_indexes
        anchor = None
    else:
        anchor = max(walk_in_indexes)
        counted = [appointment.slot_index for appointment in session_appointments if appointment.slot_index > anchor]

    if not counted:
        target = anchor + 1
    elif spacing > 0 and len(counted) >= spacing:
        target = counted[spacing - 1] + 1
    else:
        target = counted[-1] + 1

    # Past the last advance booking there is nothing left to interleave with.
    if advance_indexes and target > advance_indexes[-1]:
        target = advance_indexes[-1] + 1

    return target


def _pool_candidates(session_index: int, spacing: int, now: datetime):
    def prioritize(
        schedule: DaySchedule,
        appointments: list[Appointment],
        occupied: set[int],
        general: list[int],
    ) -> list[int]:
        session_slots = schedule.slots_for_session(session_index)
        if not session_slots:
            raise SlotOutsideAvailability()

        target = compute_pool_target_index(appointments, session_index, spacing)
        if target is None:
            target = session_slots[0].index
        # A booking on the session's last slot pushes the target past the end.
        target = min(target, session_slots[-1].index)

        targeted = [
            slot.index
            for slot in session_slots
            if slot.index >= target and slot.index not in occupied and slot.time >= now
        ]
        candidates = targeted + [index for index in general if index not in targeted]
        if not candidates:
            raise SlotOutsideAvailability()
        return candidates

    return prioritize


def assign_walk_ins_from_pool(
    store: TransactionalStore,
    doctor: Doctor,
    target_date: date,
    session_index: int,
    now: datetime | None = None,
    spacing: int | None = None,
) -> PoolDrainResult:
    """Place every waiting walk-in of a started session, in FIFO order.

    Each entry commits on its own; an entry that cannot be placed stays in
    the pool and is reported in ``failed``.
    """
    now = now or datetime.now()
    result = PoolDrainResult()

    schedule = load_day_schedule(store, doctor, target_date)
    session = schedule.session(session_index)
    if session is None or not has_consultation_started(session, now):
        return result

    if spacing is None:
        spacing = resolve_policy(store, doctor.clinic_id).walk_in_spacing

    for entry in get_walk_in_pool(store, doctor.clinic_id, doctor.id, target_date, session_index):
        entry_id = entry.id
        patient_id = entry.patient_id
        patient_name = entry.patient_name

        def place(tx: TransactionalStore, claimed: ReservationResult) -> Appointment:
            appointment = create_appointment(
                tx, doctor, claimed, patient_id, patient_name, AppointmentStatus.PENDING, now
            )
            if patient_id is not None:
                record_visit(tx, patient_id, appointment.id, doctor.clinic_id, now)
            pooled = tx.get(WalkInPoolEntry, entry_id)
            if pooled is not None:
                tx.delete(pooled)
            return appointment

        try:
            claimed = allocate_slot(
                store,
                doctor,
                target_date,
                BookingType.WALK_IN,
                now=now,
                spacing=spacing,
                reserved_by=f'pool:{entry_id}',
                on_claimed=place,
                prioritize=_pool_candidates(session_index, spacing, now),
            )
        except SchedulingError as exc:
            logger.exception('Could not place pooled walk-in %s for %s.', entry_id, doctor.name)
            result.failed[entry_id] = exc.message
            continue

        appointment = claimed.payload
        result.placed.append(
            PoolAssignment(
                entry_id=entry_id,
                patient_id=patient_id,
                appointment_id=appointment.id,
                token_number=claimed.token_number,
                slot_index=claimed.slot_index,
                time=claimed.time,
            )
        )
        logger.info('Placed pooled walk-in %s at slot %s (%s).', patient_name, claimed.slot_index, claimed.token_number)

    return result


def drain_pool_if_started(
    store: TransactionalStore,
    doctor: Doctor,
    target_date: date,
    now: datetime | None = None,
    notifier: NotificationSink | None = None,
) -> PoolDrainResult:
    """Drain the pools of every session that has started and still has waiting entries."""
    now = now or datetime.now()
    combined = PoolDrainResult()

    schedule = load_day_schedule(store, doctor, target_date)
    clinic_name = resolve_policy(store, doctor.clinic_id).clinic_name
    for session in schedule.sessions:
        if not has_consultation_started(session, now):
            continue
        if not get_walk_in_pool(store, doctor.clinic_id, doctor.id, target_date, session.index):
            continue

        drained = assign_walk_ins_from_pool(store, doctor, target_date, session.index, now)
        combined.placed.extend(drained.placed)
        combined.failed.update(drained.failed)

        for placement in drained.placed:
            publish_safely(
                notifier,
                NotificationEvent(
                    kind=NotificationKind.CONSULTATION_STARTED,
                    patient_id=placement.patient_id,
                    doctor_name=doctor.name,
                    clinic_name=clinic_name,
                    date=target_date,
                    time=placement.time,
                    token_number=placement.token_number,
                ),
            )

    return combined
