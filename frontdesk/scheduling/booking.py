"""Booking flows: advance booking, rescheduling and walk-in registration."""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from frontdesk.core import config
from frontdesk.core.errors import (
    DuplicateBooking,
    InvalidStatusTransition,
    WalkInNotYetOpen,
    WalkInWindowClosed,
)
from frontdesk.models.appointment import Appointment, AppointmentStatus, BookingType
from frontdesk.models.clinic import Doctor
from frontdesk.notifications import NotificationEvent, NotificationKind, NotificationSink, publish_safely
from frontdesk.patients import PatientDetails, record_visit, upsert_patient
from frontdesk.scheduling.appointments import apply_reservation, create_appointment, get_appointment, get_doctor
from frontdesk.scheduling.capacity import (
    bookable_slot_count,
    calculate_session_capacity,
    count_active_advance,
    is_slot_in_advance_zone,
)
from frontdesk.scheduling.candidates import occupied_slot_indices
from frontdesk.scheduling.delays import running_delay, set_delay
from frontdesk.scheduling.policy import resolve_policy
from frontdesk.scheduling.reservation import ReservationResult, allocate_slot, load_day_appointments, release_reservation
from frontdesk.scheduling.slot_grid import (
    SessionWindow,
    current_or_next_session,
    find_slot_by_time,
    has_consultation_started,
    load_day_schedule,
)
from frontdesk.scheduling.walk_in_pool import add_to_walk_in_pool, drain_pool_if_started
from frontdesk.storage import TransactionalStore

logger = logging.getLogger(__name__)

DUPLICATE_CHECK_STATUSES = (
    AppointmentStatus.PENDING.value,
    AppointmentStatus.CONFIRMED.value,
    AppointmentStatus.COMPLETED.value,
    AppointmentStatus.SKIPPED.value,
)


@dataclass
class WalkInRegistration:
    status: str  # assigned/pooled
    patient_id: int
    appointment_id: int | None = None
    token_number: str | None = None
    numeric_token: int | None = None
    slot_index: int | None = None
    estimated_time: datetime | None = None
    patients_ahead: int = 0
    pool_position: int | None = None


@dataclass
class SlotOverview:
    index: int
    time: datetime
    session_index: int
    is_blocked: bool
    is_booked: bool
    in_advance_zone: bool


@dataclass
class SessionOverview:
    index: int
    start: datetime
    end: datetime
    total_slots: int
    advance_capacity: int
    walk_in_capacity: int
    advance_booked: int
    consultation_started: bool


@dataclass
class DayOverview:
    doctor_id: int
    date: date
    slot_duration: int
    sessions: list[SessionOverview] = field(default_factory=list)
    slots: list[SlotOverview] = field(default_factory=list)


def ensure_not_duplicate(
    store: TransactionalStore,
    patient_id: int,
    doctor: Doctor,
    target_date: date,
    exclude_appointment_id: int | None = None,
) -> None:
    existing = store.find(
        Appointment,
        Appointment.status.in_(DUPLICATE_CHECK_STATUSES),
        patient_id=patient_id,
        doctor_id=doctor.id,
        date=target_date,
    )
    if any(appointment.id != exclude_appointment_id for appointment in existing):
        raise DuplicateBooking()


def _booked_event(doctor: Doctor, clinic_name: str, appointment: Appointment) -> NotificationEvent:
    return NotificationEvent(
        kind=NotificationKind.APPOINTMENT_BOOKED,
        patient_id=appointment.patient_id,
        doctor_name=doctor.name,
        clinic_name=clinic_name,
        date=appointment.date,
        time=appointment.time,
        token_number=appointment.token_number,
    )


def book_advance_appointment(
    store: TransactionalStore,
    doctor_id: int,
    target_date: date,
    patient: PatientDetails,
    preferred_time: datetime | None = None,
    preferred_slot_index: int | None = None,
    now: datetime | None = None,
    notifier: NotificationSink | None = None,
) -> Appointment:
    now = now or datetime.now()
    doctor = get_doctor(store, doctor_id)

    if preferred_time is not None and preferred_slot_index is None:
        slot = find_slot_by_time(load_day_schedule(store, doctor, target_date).slots, preferred_time)
        preferred_slot_index = slot.index if slot is not None else None

    def write_appointment(tx: TransactionalStore, claimed: ReservationResult) -> Appointment:
        patient_id = upsert_patient(tx, patient, now)
        ensure_not_duplicate(tx, patient_id, doctor, target_date)
        appointment = create_appointment(
            tx, doctor, claimed, patient_id, patient.name.strip(), AppointmentStatus.PENDING, now
        )
        record_visit(tx, patient_id, appointment.id, doctor.clinic_id, now)
        return appointment

    claimed = allocate_slot(
        store,
        doctor,
        target_date,
        BookingType.ADVANCE,
        now=now,
        preferred_slot_index=preferred_slot_index,
        reserved_by=patient.phone or patient.name,
        on_claimed=write_appointment,
    )
    release_reservation(store, claimed)

    appointment = claimed.payload
    publish_safely(notifier, _booked_event(doctor, resolve_policy(store, doctor.clinic_id).clinic_name, appointment))
    return appointment


def reschedule_appointment(
    store: TransactionalStore,
    appointment_id: int,
    target_date: date,
    preferred_slot_index: int | None = None,
    preferred_time: datetime | None = None,
    now: datetime | None = None,
    notifier: NotificationSink | None = None,
) -> Appointment:
    now = now or datetime.now()
    appointment = get_appointment(store, appointment_id)
    if not appointment.is_active or not appointment.is_advance:
        raise InvalidStatusTransition('Only pending or confirmed advance bookings can be rescheduled.')

    doctor = get_doctor(store, appointment.doctor_id)
    if preferred_time is not None and preferred_slot_index is None:
        slot = find_slot_by_time(load_day_schedule(store, doctor, target_date).slots, preferred_time)
        preferred_slot_index = slot.index if slot is not None else None

    def rewrite(tx: TransactionalStore, claimed: ReservationResult) -> Appointment:
        current = get_appointment(tx, appointment_id, for_update=True)
        if not current.is_active:
            raise InvalidStatusTransition('Only pending or confirmed advance bookings can be rescheduled.')
        if current.patient_id is not None:
            ensure_not_duplicate(tx, current.patient_id, doctor, target_date, exclude_appointment_id=appointment_id)
        apply_reservation(tx, current, claimed, now)
        return tx.update(current, status=AppointmentStatus.PENDING.value)

    claimed = allocate_slot(
        store,
        doctor,
        target_date,
        BookingType.ADVANCE,
        now=now,
        preferred_slot_index=preferred_slot_index,
        exclude_appointment_id=appointment_id,
        reserved_by=f'reschedule:{appointment_id}',
        on_claimed=rewrite,
    )
    release_reservation(store, claimed)

    rescheduled = claimed.payload
    logger.info('Rescheduled appointment %s to %s (%s).', appointment_id, rescheduled.time, rescheduled.token_number)
    publish_safely(notifier, _booked_event(doctor, resolve_policy(store, doctor.clinic_id).clinic_name, rescheduled))
    return rescheduled


def walk_in_window(sessions: list[SessionWindow]) -> tuple[datetime, datetime]:
    """Return when walk-in registration opens and closes for a day."""
    usable = [session for session in sessions if session.start < session.end]
    opens = usable[0].start - timedelta(minutes=config.WALK_IN_OPENS_BEFORE_MINUTES)
    closes = usable[-1].end - timedelta(minutes=config.WALK_IN_CLOSES_BEFORE_MINUTES)
    return opens, closes


def count_patients_ahead(appointments: list[Appointment], now: datetime, estimated_time: datetime) -> int:
    return sum(
        1
        for appointment in appointments
        if appointment.is_active
        and appointment.estimated_time is not None
        and now <= appointment.estimated_time < estimated_time
    )


def register_walk_in(
    store: TransactionalStore,
    doctor_id: int,
    patient: PatientDetails,
    now: datetime | None = None,
    notifier: NotificationSink | None = None,
) -> WalkInRegistration:
    now = now or datetime.now()
    target_date = now.date()
    doctor = get_doctor(store, doctor_id)
    schedule = load_day_schedule(store, doctor, target_date)

    opens, closes = walk_in_window(schedule.sessions)
    if now < opens:
        raise WalkInNotYetOpen()
    if now > closes:
        raise WalkInWindowClosed()

    session = current_or_next_session(schedule.sessions, now)
    if session is None:
        raise WalkInWindowClosed()

    if not has_consultation_started(session, now):
        patient_id = store.run_atomic(lambda tx: upsert_patient(tx, patient, now))
        ensure_not_duplicate(store, patient_id, doctor, target_date)
        entry = add_to_walk_in_pool(
            store,
            doctor,
            target_date,
            session.index,
            patient_id,
            patient.name.strip(),
            phone=patient.phone,
            now=now,
        )
        return WalkInRegistration(status='pooled', patient_id=patient_id, pool_position=entry.position)

    drain_pool_if_started(store, doctor, target_date, now, notifier)

    def write_appointment(tx: TransactionalStore, claimed: ReservationResult) -> Appointment:
        patient_id = upsert_patient(tx, patient, now)
        ensure_not_duplicate(tx, patient_id, doctor, target_date)
        appointment = create_appointment(
            tx, doctor, claimed, patient_id, patient.name.strip(), AppointmentStatus.CONFIRMED, now
        )
        inherited = running_delay(load_day_appointments(tx, doctor, target_date), claimed.slot_index)
        if inherited:
            set_delay(tx, appointment, inherited, now)
        record_visit(tx, patient_id, appointment.id, doctor.clinic_id, now)
        return appointment

    claimed = allocate_slot(
        store,
        doctor,
        target_date,
        BookingType.WALK_IN,
        now=now,
        reserved_by=patient.phone or patient.name,
        on_claimed=write_appointment,
    )
    release_reservation(store, claimed)

    appointment = claimed.payload
    patients_ahead = count_patients_ahead(
        load_day_appointments(store, doctor, target_date), now, appointment.estimated_time
    )
    publish_safely(notifier, _booked_event(doctor, resolve_policy(store, doctor.clinic_id).clinic_name, appointment))

    return WalkInRegistration(
        status='assigned',
        patient_id=appointment.patient_id,
        appointment_id=appointment.id,
        token_number=claimed.token_number,
        numeric_token=claimed.numeric_token,
        slot_index=claimed.slot_index,
        estimated_time=appointment.estimated_time,
        patients_ahead=patients_ahead,
    )


def describe_day(store: TransactionalStore, doctor_id: int, target_date: date, now: datetime | None = None) -> DayOverview:
    now = now or datetime.now()
    doctor = get_doctor(store, doctor_id)
    schedule = load_day_schedule(store, doctor, target_date)
    appointments = load_day_appointments(store, doctor, target_date)
    ratio = resolve_policy(store, doctor.clinic_id).advance_ratio
    booked = occupied_slot_indices([], appointments)

    overview = DayOverview(doctor_id=doctor.id, date=target_date, slot_duration=schedule.slot_duration)
    for session in schedule.sessions:
        total = bookable_slot_count(schedule.slots, session.index)
        capacity = calculate_session_capacity(total, ratio)
        overview.sessions.append(
            SessionOverview(
                index=session.index,
                start=session.start,
                end=session.end,
                total_slots=total,
                advance_capacity=capacity.advance_capacity,
                walk_in_capacity=capacity.walk_in_capacity,
                advance_booked=count_active_advance(appointments, session.index),
                consultation_started=has_consultation_started(session, now),
            )
        )

        for position, slot in enumerate(schedule.slots_for_session(session.index)):
            overview.slots.append(
                SlotOverview(
                    index=slot.index,
                    time=slot.time,
                    session_index=slot.session_index,
                    is_blocked=slot.is_blocked,
                    is_booked=slot.index in booked,
                    in_advance_zone=is_slot_in_advance_zone(position, total, ratio),
                )
            )

    return overview
