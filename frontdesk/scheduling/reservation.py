"""Reservation transaction.

Claims exactly one slot index for a booking. The claim is a
``SlotReservation`` created at an id derived from (clinic, doctor, date,
slot index), so whichever writer creates it first owns the slot. Advance
claims are released once their appointment commits, after which the
unique index on active appointments keeps the slot exclusive: a writer
that read the day before that commit fails its insert with
``WriteConflict``. Every attempt re-reads the day's appointments;
conflicts restart the attempt up to ``MAX_RESERVATION_ATTEMPTS`` times.
"""

import logging
import re
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Any, Callable

from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt

from frontdesk.core import config
from frontdesk.core.errors import NoMatchingCandidateSlot, ReservationConflict
from frontdesk.models.appointment import Appointment, BookingType
from frontdesk.models.clinic import Doctor
from frontdesk.models.reservation import SlotReservation, TokenCounter
from frontdesk.scheduling.candidates import occupied_slot_indices, select_candidates
from frontdesk.scheduling.capacity import ensure_advance_capacity
from frontdesk.scheduling.policy import resolve_policy
from frontdesk.scheduling.slot_grid import DaySchedule, load_day_schedule
from frontdesk.storage import DocumentExists, TransactionalStore, WriteConflict

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r'\s+')
_UNSAFE_ID_CHARACTERS = re.compile(r'[^a-zA-Z0-9_]')


@dataclass(frozen=True)
class ReservationResult:
    reservation_id: str
    booking_type: BookingType
    slot_index: int
    session_index: int
    time: datetime
    numeric_token: int
    token_number: str
    payload: Any = None


def scoped_id(*parts: Any) -> str:
    raw = '_'.join(str(part) for part in parts)
    return _UNSAFE_ID_CHARACTERS.sub('', _WHITESPACE.sub('_', raw))


def reservation_id(clinic_id: str, doctor_name: str, target_date: date, slot_index: int) -> str:
    return scoped_id(clinic_id, doctor_name, target_date.isoformat(), slot_index)


def token_counter_id(clinic_id: str, doctor_name: str, target_date: date, booking_type: BookingType) -> str:
    suffix = 'A' if booking_type == BookingType.ADVANCE else 'W'
    return scoped_id(clinic_id, doctor_name, target_date.isoformat(), suffix)


def format_token(booking_type: BookingType, numeric_token: int) -> str:
    if booking_type == BookingType.ADVANCE:
        return f'A{numeric_token:03d}'
    return f'{numeric_token:03d}W'


def load_day_appointments(store: TransactionalStore, doctor: Doctor, target_date: date) -> list[Appointment]:
    return store.find(
        Appointment,
        doctor_id=doctor.id,
        date=target_date,
        order_by=Appointment.slot_index.asc(),
    )


def purge_expired_reservations(
    store: TransactionalStore,
    clinic_id: str,
    doctor_name: str,
    target_date: date,
    now: datetime,
) -> int:
    expired = store.find(
        SlotReservation,
        SlotReservation.expires_at.is_not(None),
        SlotReservation.expires_at <= now,
        clinic_id=clinic_id,
        doctor_name=doctor_name,
        date=target_date,
    )
    for record in expired:
        store.delete(record)
    return len(expired)


def next_token_counter_value(store: TransactionalStore, counter_id: str) -> int:
    counter = store.get(TokenCounter, counter_id, for_update=True)
    if counter is None:
        try:
            store.conditional_create(TokenCounter(id=counter_id, count=1))
        except DocumentExists as exc:
            raise WriteConflict(f'Token counter {counter_id!r} was created concurrently.') from exc
        return 1

    store.update(counter, count=counter.count + 1)
    return counter.count


def claim_slot(
    store: TransactionalStore,
    doctor: Doctor,
    schedule: DaySchedule,
    booking_type: BookingType,
    candidates: list[int],
    now: datetime,
    reserved_by: str | None = None,
) -> ReservationResult:
    """Claim the first unreserved candidate inside the caller's transaction."""
    counter_value = None
    if booking_type == BookingType.WALK_IN:
        counter_value = next_token_counter_value(
            store,
            token_counter_id(doctor.clinic_id, doctor.name, schedule.date, booking_type),
        )

    expires_at = now + timedelta(seconds=config.WALK_IN_RESERVATION_GRACE_SECONDS)

    for slot_index in candidates:
        record_id = reservation_id(doctor.clinic_id, doctor.name, schedule.date, slot_index)
        try:
            store.conditional_create(
                SlotReservation(
                    id=record_id,
                    clinic_id=doctor.clinic_id,
                    doctor_name=doctor.name,
                    date=schedule.date,
                    slot_index=slot_index,
                    booking_type=booking_type.value,
                    reserved_by=reserved_by,
                    created_at=now,
                    expires_at=expires_at,
                )
            )
        except DocumentExists:
            continue

        slot = schedule.find_slot(slot_index)
        if booking_type == BookingType.ADVANCE:
            numeric_token = slot_index + 1
        else:
            numeric_token = len(schedule.slots) + counter_value

        return ReservationResult(
            reservation_id=record_id,
            booking_type=booking_type,
            slot_index=slot_index,
            session_index=slot.session_index,
            time=slot.time,
            numeric_token=numeric_token,
            token_number=format_token(booking_type, numeric_token),
        )

    raise ReservationConflict()


def allocate_slot(
    store: TransactionalStore,
    doctor: Doctor,
    target_date: date,
    booking_type: BookingType,
    now: datetime | None = None,
    preferred_slot_index: int | None = None,
    exclude_appointment_id: int | None = None,
    exclude_slot_indices: tuple[int, ...] = (),
    spacing: int | None = None,
    advance_ratio: float | None = None,
    max_attempts: int | None = None,
    reserved_by: str | None = None,
    on_claimed: Callable[[TransactionalStore, ReservationResult], Any] | None = None,
    prioritize: Callable[[DaySchedule, list[Appointment], set[int], list[int]], list[int]] | None = None,
) -> ReservationResult:
    """Reserve one slot and its token for a booking.

    ``prioritize`` may reorder or replace the general candidate list before
    it is claimed; it receives the schedule, the day's appointments, the
    occupied indices and the general candidates.

    ``on_claimed`` runs inside the same transaction as the claim, so the
    appointment written there commits together with the reservation and
    the token counter, or not at all. Its return value is exposed as
    ``ReservationResult.payload``.
    """
    now = now or datetime.now()
    attempts = max_attempts or config.MAX_RESERVATION_ATTEMPTS
    policy = resolve_policy(store, doctor.clinic_id)
    spacing = policy.walk_in_spacing if spacing is None else spacing
    advance_ratio = policy.advance_ratio if advance_ratio is None else advance_ratio

    def attempt_claim(tx: TransactionalStore) -> ReservationResult:
        purge_expired_reservations(tx, doctor.clinic_id, doctor.name, target_date, now)

        schedule = load_day_schedule(tx, doctor, target_date)
        appointments = [
            appointment
            for appointment in load_day_appointments(tx, doctor, target_date)
            if exclude_appointment_id is None or appointment.id != exclude_appointment_id
        ]
        occupied = occupied_slot_indices(schedule.slots, appointments, exclude_slot_indices=exclude_slot_indices)

        session_indexes = None
        if booking_type == BookingType.ADVANCE:
            preferred_slot = (
                schedule.find_slot(preferred_slot_index) if preferred_slot_index is not None else None
            )
            session_indexes = ensure_advance_capacity(
                schedule.slots,
                appointments,
                advance_ratio,
                session_index=preferred_slot.session_index if preferred_slot else None,
            )

        candidates = select_candidates(
            booking_type,
            schedule.slots,
            now,
            occupied,
            appointments=appointments,
            preferred_slot_index=preferred_slot_index,
            spacing=spacing,
            session_indexes=session_indexes,
        )
        if prioritize is not None:
            candidates = prioritize(schedule, appointments, occupied, candidates)
        if not candidates:
            raise NoMatchingCandidateSlot()

        result = claim_slot(tx, doctor, schedule, booking_type, candidates, now, reserved_by)
        if on_claimed is not None:
            result = replace(result, payload=on_claimed(tx, result))
        return result

    def log_conflict(retry_state: RetryCallState) -> None:
        logger.warning(
            'Slot reservation conflict for %s on %s (attempt %s of %s).',
            doctor.name,
            target_date,
            retry_state.attempt_number,
            attempts,
        )

    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        retry=retry_if_exception_type((ReservationConflict, WriteConflict)),
        after=log_conflict,
        reraise=True,
    )
    try:
        result = retrying(store.run_atomic, attempt_claim)
    except WriteConflict as exc:
        raise ReservationConflict() from exc

    logger.info(
        'Reserved slot %s (%s) for %s on %s.',
        result.slot_index,
        result.token_number,
        doctor.name,
        target_date,
    )
    return result


def release_reservation(store: TransactionalStore, result: ReservationResult, immediate: bool = False) -> None:
    """Drop the mutex record once the appointment is durable.

    Walk-in reservations are left to expire after the grace window unless
    ``immediate`` is set, so the slot is not offered to another writer
    before the appointment becomes visible to it.
    """
    if result.booking_type == BookingType.WALK_IN and not immediate:
        return

    def delete_reservation(tx: TransactionalStore) -> None:
        record = tx.get(SlotReservation, result.reservation_id)
        if record is not None:
            tx.delete(record)

    store.run_atomic(delete_reservation)
