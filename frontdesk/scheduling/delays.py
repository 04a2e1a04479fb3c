"""Running-late bookkeeping for a doctor's day.

An appointment keeps its slot time; how far the doctor is behind is
carried in ``delay_minutes`` and folded into ``estimated_time`` and the
no-show deadline, so late patients are not marked absent for the
doctor's own delay.
"""

import logging
from datetime import date, datetime, timedelta

from frontdesk.models.appointment import ACTIVE_STATUSES, Appointment, AppointmentStatus
from frontdesk.scheduling.appointments import appointment_deadlines, get_appointment, get_doctor
from frontdesk.scheduling.slot_grid import resolve_slot_duration
from frontdesk.storage import TransactionalStore

logger = logging.getLogger(__name__)


def _later_active(
    store: TransactionalStore,
    doctor_id: int,
    target_date: date,
    slot_index: int,
    inclusive: bool = False,
) -> list[Appointment]:
    bound = Appointment.slot_index >= slot_index if inclusive else Appointment.slot_index > slot_index
    return store.find(
        Appointment,
        bound,
        Appointment.status.in_(ACTIVE_STATUSES),
        doctor_id=doctor_id,
        date=target_date,
        order_by=Appointment.slot_index.asc(),
    )


def set_delay(store: TransactionalStore, appointment: Appointment, delay_minutes: int, now: datetime) -> Appointment:
    delay_minutes = max(0, delay_minutes)
    _, no_show_time = appointment_deadlines(appointment.time)
    return store.update(
        appointment,
        delay_minutes=delay_minutes,
        no_show_time=no_show_time + timedelta(minutes=delay_minutes),
        updated_at=now,
    )


def running_delay(appointments: list[Appointment], slot_index: int) -> int:
    """Delay carried by the closest active appointment before ``slot_index``."""
    earlier = [
        appointment
        for appointment in appointments
        if appointment.is_active and appointment.slot_index is not None and appointment.slot_index < slot_index
    ]
    if not earlier:
        return 0
    return max(earlier, key=lambda appointment: appointment.slot_index).delay_minutes or 0


def propagate_delay(
    store: TransactionalStore,
    appointment_id: int,
    delay_minutes: int,
    now: datetime | None = None,
) -> list[int]:
    """Push every later active appointment of the day back by ``delay_minutes``.

    Used when a consultation overruns. Returns the ids that were shifted.
    """
    now = now or datetime.now()
    if delay_minutes <= 0:
        return []

    def apply(tx: TransactionalStore) -> list[int]:
        current = get_appointment(tx, appointment_id)
        if current.slot_index is None:
            return []
        shifted = []
        for appointment in _later_active(tx, current.doctor_id, current.date, current.slot_index):
            set_delay(tx, appointment, (appointment.delay_minutes or 0) + delay_minutes, now)
            shifted.append(appointment.id)
        return shifted

    shifted = store.run_atomic(apply)
    if shifted:
        logger.info('Delayed %s appointments after %s by %s minutes.', len(shifted), appointment_id, delay_minutes)
    return shifted


def propagate_doctor_late_delay(
    store: TransactionalStore,
    doctor_id: int,
    target_date: date,
    now: datetime | None = None,
) -> int:
    """Delay the day by however late the doctor is for the first arrived patient.

    Lateness is measured against that patient's estimated time, so calling
    this again at the same moment adds nothing. Returns the minutes added.
    """
    now = now or datetime.now()
    doctor = get_doctor(store, doctor_id)

    def apply(tx: TransactionalStore) -> int:
        arrived = tx.find(
            Appointment,
            Appointment.slot_index.is_not(None),
            doctor_id=doctor.id,
            date=target_date,
            status=AppointmentStatus.CONFIRMED.value,
            order_by=Appointment.slot_index.asc(),
        )
        if not arrived:
            return 0

        first = arrived[0]
        late_minutes = int((now - first.estimated_time).total_seconds() // 60)
        if late_minutes <= 0:
            return 0

        for appointment in _later_active(tx, doctor.id, target_date, first.slot_index, inclusive=True):
            set_delay(tx, appointment, (appointment.delay_minutes or 0) + late_minutes, now)
        return late_minutes

    late_minutes = store.run_atomic(apply)
    if late_minutes:
        logger.warning('%s is running %s minutes late on %s.', doctor.name, late_minutes, target_date)
    return late_minutes


def reduce_delay_on_slot_vacancy(
    store: TransactionalStore,
    appointment_id: int,
    slot_duration: int | None = None,
    now: datetime | None = None,
) -> list[int]:
    """Give one slot's worth of delay back to everyone after a vacated slot."""
    now = now or datetime.now()

    def apply(tx: TransactionalStore) -> list[int]:
        vacated = get_appointment(tx, appointment_id)
        if vacated.slot_index is None:
            return []
        minutes = slot_duration or resolve_slot_duration(get_doctor(tx, vacated.doctor_id))
        reduced = []
        for appointment in _later_active(tx, vacated.doctor_id, vacated.date, vacated.slot_index):
            if not appointment.delay_minutes:
                continue
            set_delay(tx, appointment, appointment.delay_minutes - minutes, now)
            reduced.append(appointment.id)
        return reduced

    reduced = store.run_atomic(apply)
    if reduced:
        logger.info('Reduced the delay of %s appointments after vacated appointment %s.', len(reduced), appointment_id)
    return reduced
