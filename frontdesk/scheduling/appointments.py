"""Shared appointment record helpers for the booking flows."""

from datetime import datetime, timedelta

from frontdesk.core import config
from frontdesk.core.errors import AppointmentNotFound, DoctorNotFound
from frontdesk.models.appointment import Appointment, AppointmentStatus
from frontdesk.models.clinic import Doctor
from frontdesk.scheduling.reservation import ReservationResult
from frontdesk.storage import TransactionalStore


def appointment_deadlines(appointment_time: datetime) -> tuple[datetime, datetime]:
    """Return the arrive-by cut-off and the no-show deadline for a slot time."""
    return (
        appointment_time - timedelta(minutes=config.ARRIVAL_CUT_OFF_MINUTES),
        appointment_time + timedelta(minutes=config.NO_SHOW_AFTER_MINUTES),
    )


def get_doctor(store: TransactionalStore, doctor_id: int) -> Doctor:
    doctor = store.get(Doctor, doctor_id)
    if doctor is None:
        raise DoctorNotFound()
    return doctor


def get_appointment(store: TransactionalStore, appointment_id: int, for_update: bool = False) -> Appointment:
    appointment = store.get(Appointment, appointment_id, for_update=for_update)
    if appointment is None:
        raise AppointmentNotFound()
    return appointment


def create_appointment(
    store: TransactionalStore,
    doctor: Doctor,
    result: ReservationResult,
    patient_id: int | None,
    patient_name: str,
    status: AppointmentStatus,
    now: datetime,
) -> Appointment:
    cut_off_time, no_show_time = appointment_deadlines(result.time)
    return store.create(
        Appointment(
            clinic_id=doctor.clinic_id,
            doctor_id=doctor.id,
            doctor_name=doctor.name,
            date=result.time.date(),
            slot_index=result.slot_index,
            session_index=result.session_index,
            time=result.time,
            booked_via=result.booking_type.value,
            status=status.value,
            token_number=result.token_number,
            numeric_token=result.numeric_token,
            patient_id=patient_id,
            patient_name=patient_name,
            cut_off_time=cut_off_time,
            no_show_time=no_show_time,
            created_at=now,
            updated_at=now,
        )
    )


def apply_reservation(store: TransactionalStore, appointment: Appointment, result: ReservationResult, now: datetime) -> Appointment:
    cut_off_time, no_show_time = appointment_deadlines(result.time)
    return store.update(
        appointment,
        date=result.time.date(),
        slot_index=result.slot_index,
        session_index=result.session_index,
        time=result.time,
        booked_via=result.booking_type.value,
        token_number=result.token_number,
        numeric_token=result.numeric_token,
        cut_off_time=cut_off_time,
        no_show_time=no_show_time,
        updated_at=now,
    )
