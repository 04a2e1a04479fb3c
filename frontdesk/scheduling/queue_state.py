"""Queue state computed from a session's appointments.

Nothing here is persisted except the consultation counter; the queues
are rebuilt from appointment records on every read.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime

from frontdesk.core import config
from frontdesk.models.appointment import Appointment, AppointmentStatus
from frontdesk.models.clinic import Doctor
from frontdesk.models.reservation import ConsultationCounter
from frontdesk.scheduling.reservation import scoped_id
from frontdesk.storage import DocumentExists, TransactionalStore, WriteConflict


@dataclass
class QueueState:
    arrived_queue: list[Appointment] = field(default_factory=list)
    buffer_queue: list[Appointment] = field(default_factory=list)
    skipped_queue: list[Appointment] = field(default_factory=list)
    current_consultation: Appointment | None = None
    consultation_count: int = 0


def queue_sort_key(appointment: Appointment) -> tuple[datetime, int]:
    """Order by appointment time; an advance booking goes first at the same time."""
    return (appointment.time or datetime.min, 0 if appointment.is_advance else 1)


def compute_queue_state(
    appointments: Iterable[Appointment],
    consultation_count: int = 0,
    session_index: int | None = None,
    buffer_size: int | None = None,
) -> QueueState:
    relevant = [
        appointment
        for appointment in appointments
        if session_index is None or appointment.session_index is None or appointment.session_index == session_index
    ]
    arrived = sorted(
        (appointment for appointment in relevant if appointment.status == AppointmentStatus.CONFIRMED.value),
        key=queue_sort_key,
    )
    skipped = sorted(
        (appointment for appointment in relevant if appointment.status == AppointmentStatus.SKIPPED.value),
        key=queue_sort_key,
    )
    buffer = arrived[: config.BUFFER_QUEUE_SIZE if buffer_size is None else buffer_size]

    return QueueState(
        arrived_queue=arrived,
        buffer_queue=buffer,
        skipped_queue=skipped,
        current_consultation=buffer[0] if buffer else None,
        consultation_count=consultation_count,
    )


def consultation_counter_id(clinic_id: str, doctor_id: int, target_date: date, session_index: int) -> str:
    return scoped_id(clinic_id, doctor_id, target_date.isoformat(), session_index)


def get_consultation_count(
    store: TransactionalStore,
    clinic_id: str,
    doctor_id: int,
    target_date: date,
    session_index: int,
) -> int:
    counter = store.get(ConsultationCounter, consultation_counter_id(clinic_id, doctor_id, target_date, session_index))
    return counter.count if counter is not None else 0


def increment_consultation_counter(
    store: TransactionalStore,
    clinic_id: str,
    doctor_id: int,
    target_date: date,
    session_index: int,
    now: datetime | None = None,
) -> int:
    now = now or datetime.now()
    counter_id = consultation_counter_id(clinic_id, doctor_id, target_date, session_index)
    counter = store.get(ConsultationCounter, counter_id, for_update=True)
    if counter is None:
        try:
            store.conditional_create(
                ConsultationCounter(
                    id=counter_id,
                    clinic_id=clinic_id,
                    doctor_id=doctor_id,
                    date=target_date,
                    session_index=session_index,
                    count=1,
                    last_updated=now,
                )
            )
        except DocumentExists as exc:
            raise WriteConflict(f'Consultation counter {counter_id!r} was created concurrently.') from exc
        return 1

    store.update(counter, count=counter.count + 1, last_updated=now)
    return counter.count


def load_queue_state(
    store: TransactionalStore,
    clinic_id: str,
    doctor: Doctor,
    target_date: date,
    session_index: int,
) -> QueueState:
    appointments = store.find(
        Appointment,
        clinic_id=clinic_id,
        doctor_id=doctor.id,
        date=target_date,
        order_by=Appointment.time.asc(),
    )
    return compute_queue_state(
        appointments,
        get_consultation_count(store, clinic_id, doctor.id, target_date, session_index),
        session_index=session_index,
    )


def estimate_walk_in_position(consultation_count: int, allotment: int | None = None) -> int:
    """Position in the arrived queue a new walk-in is expected to take."""
    allotment = config.WALK_IN_TOKEN_ALLOTMENT if allotment is None else allotment
    return consultation_count + allotment


def calculate_skipped_rejoin_position(arrived_queue: Sequence[Appointment], recurrence: int | None = None) -> int:
    recurrence = config.SKIPPED_TOKEN_RECURRENCE if recurrence is None else recurrence
    return min(len(arrived_queue), recurrence)


def next_token(buffer_queue: Sequence[Appointment], arrived_queue: Sequence[Appointment]) -> Appointment | None:
    if buffer_queue:
        return buffer_queue[0]
    if arrived_queue:
        return arrived_queue[0]
    return None
