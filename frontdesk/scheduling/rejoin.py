import logging
from datetime import datetime

from frontdesk.core.errors import InvalidStatusTransition
from frontdesk.models.appointment import Appointment, AppointmentStatus, BookingType
from frontdesk.scheduling.appointments import apply_reservation, get_appointment, get_doctor
from frontdesk.scheduling.reservation import ReservationResult, allocate_slot, release_reservation
from frontdesk.storage import TransactionalStore

logger = logging.getLogger(__name__)


def rejoin_skipped_appointment(
    store: TransactionalStore,
    appointment_id: int,
    now: datetime | None = None,
) -> Appointment:
    """Put a skipped patient back into the timeline as a fresh walk-in.

    The appointment keeps its id but never its previous slot index.
    """
    now = now or datetime.now()
    appointment = get_appointment(store, appointment_id)
    if appointment.status != AppointmentStatus.SKIPPED.value:
        raise InvalidStatusTransition('Only skipped appointments can rejoin the queue.')

    doctor = get_doctor(store, appointment.doctor_id)
    previous_slot_index = appointment.slot_index
    excluded = (previous_slot_index,) if previous_slot_index is not None else ()

    def rewrite(tx: TransactionalStore, claimed: ReservationResult) -> Appointment:
        current = get_appointment(tx, appointment_id, for_update=True)
        if current.status != AppointmentStatus.SKIPPED.value:
            raise InvalidStatusTransition('Only skipped appointments can rejoin the queue.')
        apply_reservation(tx, current, claimed, now)
        return tx.update(current, status=AppointmentStatus.CONFIRMED.value)

    claimed = allocate_slot(
        store,
        doctor,
        appointment.date,
        BookingType.WALK_IN,
        now=now,
        exclude_appointment_id=appointment_id,
        exclude_slot_indices=excluded,
        reserved_by=f'rejoin:{appointment_id}',
        on_claimed=rewrite,
    )
    release_reservation(store, claimed)

    logger.info(
        'Appointment %s rejoined at slot %s (was %s) with token %s.',
        appointment_id,
        claimed.slot_index,
        previous_slot_index,
        claimed.token_number,
    )
    return claimed.payload
