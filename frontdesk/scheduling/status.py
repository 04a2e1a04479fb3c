"""Appointment status transitions and the time-based status sweep.

Transitions are single-record writes; they never touch slot
reservations. Moving an appointment into the status it already has is a
no-op. A cancellation or no-show is followed by delay reduction and slot
reassignment for the rest of the session.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from frontdesk.core.errors import InvalidStatusTransition, SchedulingError
from frontdesk.models.appointment import Appointment, AppointmentStatus
from frontdesk.models.clinic import Doctor
from frontdesk.notifications import NotificationEvent, NotificationKind, NotificationSink, publish_safely
from frontdesk.scheduling.appointments import get_appointment
from frontdesk.scheduling.delays import reduce_delay_on_slot_vacancy
from frontdesk.scheduling.policy import resolve_policy
from frontdesk.scheduling.queue_state import increment_consultation_counter, load_queue_state
from frontdesk.scheduling.reassignment import reassign_to_vacated_slots
from frontdesk.scheduling.slot_grid import resolve_slot_duration
from frontdesk.storage import TransactionalStore, WriteConflict

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[AppointmentStatus, tuple[AppointmentStatus, ...]] = {
    AppointmentStatus.CONFIRMED: (AppointmentStatus.PENDING,),
    AppointmentStatus.COMPLETED: (AppointmentStatus.CONFIRMED,),
    AppointmentStatus.SKIPPED: (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED),
    AppointmentStatus.CANCELLED: (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED, AppointmentStatus.SKIPPED),
    AppointmentStatus.NO_SHOW: (AppointmentStatus.SKIPPED,),
}


@dataclass
class TransitionResult:
    appointment: Appointment
    changed: bool


@dataclass
class SweepResult:
    skipped: list[int] = field(default_factory=list)
    no_shows: list[int] = field(default_factory=list)


def _transition(
    store: TransactionalStore,
    appointment_id: int,
    target: AppointmentStatus,
    now: datetime,
    on_changed=None,
) -> TransitionResult:
    def apply(tx: TransactionalStore) -> TransitionResult:
        appointment = get_appointment(tx, appointment_id, for_update=True)
        if appointment.status == target.value:
            return TransitionResult(appointment=appointment, changed=False)

        allowed = {status.value for status in ALLOWED_TRANSITIONS[target]}
        if appointment.status not in allowed:
            raise InvalidStatusTransition(
                f'Cannot move an appointment from {appointment.status} to {target.value}.'
            )

        tx.update(appointment, status=target.value, updated_at=now)
        if on_changed is not None:
            on_changed(tx, appointment)
        return TransitionResult(appointment=appointment, changed=True)

    result = store.run_atomic(apply)
    if result.changed:
        logger.info('Appointment %s moved to %s.', appointment_id, target.value)
    return result


def _event(
    store: TransactionalStore,
    kind: NotificationKind,
    appointment: Appointment,
    **extra,
) -> NotificationEvent:
    return NotificationEvent(
        kind=kind,
        patient_id=appointment.patient_id,
        doctor_name=appointment.doctor_name,
        clinic_name=resolve_policy(store, appointment.clinic_id).clinic_name,
        date=appointment.date,
        time=appointment.time,
        token_number=appointment.token_number,
        extra=extra,
    )


def confirm_arrival(store: TransactionalStore, appointment_id: int, now: datetime | None = None) -> TransitionResult:
    return _transition(store, appointment_id, AppointmentStatus.CONFIRMED, now or datetime.now())


def complete_appointment(
    store: TransactionalStore,
    appointment_id: int,
    now: datetime | None = None,
    notifier: NotificationSink | None = None,
) -> TransitionResult:
    """Mark a consultation done and advance the session's consultation counter.

    The counter is incremented in the same transaction as the status change,
    so repeating the call cannot count the consultation twice.
    """
    now = now or datetime.now()

    def count_consultation(tx: TransactionalStore, appointment: Appointment) -> None:
        increment_consultation_counter(
            tx,
            appointment.clinic_id,
            appointment.doctor_id,
            appointment.date,
            appointment.session_index or 0,
            now,
        )

    result = _transition(store, appointment_id, AppointmentStatus.COMPLETED, now, on_changed=count_consultation)
    if not result.changed:
        return result

    appointment = result.appointment
    doctor = store.get(Doctor, appointment.doctor_id)
    if doctor is None:
        return result

    queue = load_queue_state(store, appointment.clinic_id, doctor, appointment.date, appointment.session_index or 0)
    if queue.current_consultation is not None:
        publish_safely(notifier, _event(store, NotificationKind.TOKEN_CALLED, queue.current_consultation))
    for ahead, waiting in enumerate(queue.arrived_queue[1:], start=1):
        publish_safely(notifier, _event(store, NotificationKind.PEOPLE_AHEAD, waiting, people_ahead=ahead))

    return result


def skip_appointment(
    store: TransactionalStore,
    appointment_id: int,
    now: datetime | None = None,
    notifier: NotificationSink | None = None,
) -> TransitionResult:
    result = _transition(store, appointment_id, AppointmentStatus.SKIPPED, now or datetime.now())
    if result.changed:
        publish_safely(notifier, _event(store, NotificationKind.APPOINTMENT_SKIPPED, result.appointment))
    return result


def fill_vacancy(store: TransactionalStore, appointment: Appointment, now: datetime) -> None:
    """Give back delay and pull arrived patients forward after a slot frees up.

    Runs after the status change has committed; a failure here is logged
    and leaves the cancellation or no-show in place.
    """
    if appointment.slot_index is None:
        return
    doctor = store.get(Doctor, appointment.doctor_id)
    if doctor is None:
        return

    try:
        reduce_delay_on_slot_vacancy(store, appointment.id, resolve_slot_duration(doctor), now)
        reassign_to_vacated_slots(store, doctor, appointment.date, appointment.session_index or 0, now)
    except (SchedulingError, WriteConflict, SQLAlchemyError):
        logger.exception('Could not refill the slot vacated by appointment %s.', appointment.id)


def cancel_appointment(
    store: TransactionalStore,
    appointment_id: int,
    now: datetime | None = None,
    notifier: NotificationSink | None = None,
) -> TransitionResult:
    now = now or datetime.now()
    result = _transition(store, appointment_id, AppointmentStatus.CANCELLED, now)
    if result.changed:
        publish_safely(notifier, _event(store, NotificationKind.APPOINTMENT_CANCELLED, result.appointment))
        fill_vacancy(store, result.appointment, now)
    return result


def mark_no_show(store: TransactionalStore, appointment_id: int, now: datetime | None = None) -> TransitionResult:
    now = now or datetime.now()
    result = _transition(store, appointment_id, AppointmentStatus.NO_SHOW, now)
    if result.changed:
        fill_vacancy(store, result.appointment, now)
    return result


def delete_appointment(store: TransactionalStore, appointment_id: int) -> None:
    def remove(tx: TransactionalStore) -> None:
        tx.delete(get_appointment(tx, appointment_id))

    store.run_atomic(remove)
    logger.info('Appointment %s deleted.', appointment_id)


def sweep_statuses(
    store: TransactionalStore,
    clinic_id: str,
    now: datetime | None = None,
    notifier: NotificationSink | None = None,
) -> SweepResult:
    """Skip patients who missed their arrive-by time and mark late skips as no-shows."""
    now = now or datetime.now()
    result = SweepResult()

    def sweep(tx: TransactionalStore) -> None:
        overdue = tx.find(
            Appointment,
            Appointment.cut_off_time.is_not(None),
            Appointment.cut_off_time <= now,
            clinic_id=clinic_id,
            status=AppointmentStatus.PENDING.value,
        )
        for appointment in overdue:
            tx.update(appointment, status=AppointmentStatus.SKIPPED.value, updated_at=now)
            result.skipped.append(appointment.id)

        absent = tx.find(
            Appointment,
            Appointment.no_show_time.is_not(None),
            Appointment.no_show_time <= now,
            clinic_id=clinic_id,
            status=AppointmentStatus.SKIPPED.value,
        )
        for appointment in absent:
            if appointment.id in result.skipped:
                continue
            tx.update(appointment, status=AppointmentStatus.NO_SHOW.value, updated_at=now)
            result.no_shows.append(appointment.id)

    store.run_atomic(sweep)
    for appointment_id in result.skipped:
        skipped = store.get(Appointment, appointment_id)
        if skipped is not None:
            publish_safely(notifier, _event(store, NotificationKind.APPOINTMENT_SKIPPED, skipped))
    for appointment_id in result.no_shows:
        absent = store.get(Appointment, appointment_id)
        if absent is not None:
            fill_vacancy(store, absent, now)

    if result.skipped or result.no_shows:
        logger.info(
            'Status sweep for clinic %s: %s skipped, %s no-show.',
            clinic_id,
            len(result.skipped),
            len(result.no_shows),
        )
    return result
