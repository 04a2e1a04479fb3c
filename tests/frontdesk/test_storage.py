from datetime import date, datetime

import pytest

from frontdesk.models.appointment import Appointment
from frontdesk.models.reservation import SlotReservation, TokenCounter
from frontdesk.storage import DocumentExists, SqlAlchemyStore, WriteConflict

MONDAY = date(2026, 1, 5)


def reservation(record_id: str, slot_index: int = 0) -> SlotReservation:
    return SlotReservation(
        id=record_id,
        clinic_id='clinic-1',
        doctor_name='Dr. Asha Menon',
        date=MONDAY,
        slot_index=slot_index,
        booking_type='Advance',
        created_at=datetime(2026, 1, 5, 7, 0),
    )


def test_conditional_create_rejects_existing_id(store, scheduler_db) -> None:
    store.run_atomic(lambda tx: tx.conditional_create(reservation('slot-0')))

    with pytest.raises(DocumentExists):
        store.conditional_create(reservation('slot-0'))

    assert scheduler_db.query(SlotReservation).count() == 1


def test_run_atomic_rolls_back_every_write_on_failure(store, scheduler_db) -> None:
    def work(tx: SqlAlchemyStore) -> None:
        tx.conditional_create(reservation('slot-0'))
        tx.conditional_create(TokenCounter(id='counter', count=1))
        raise RuntimeError('boom')

    with pytest.raises(RuntimeError):
        store.run_atomic(work)

    assert scheduler_db.query(SlotReservation).count() == 0
    assert scheduler_db.query(TokenCounter).count() == 0


def test_nested_run_atomic_joins_outer_transaction(store, scheduler_db) -> None:
    def inner(tx: SqlAlchemyStore) -> None:
        tx.conditional_create(reservation('slot-1', 1))

    def outer(tx: SqlAlchemyStore) -> None:
        tx.conditional_create(reservation('slot-0'))
        tx.run_atomic(inner)
        raise RuntimeError('boom')

    with pytest.raises(RuntimeError):
        store.run_atomic(outer)

    assert scheduler_db.query(SlotReservation).count() == 0


def test_find_filters_and_orders(store) -> None:
    store.run_atomic(lambda tx: [tx.create(reservation(f'slot-{index}', index)) for index in (2, 0, 1)])

    found = store.find(
        SlotReservation,
        SlotReservation.slot_index >= 1,
        clinic_id='clinic-1',
        order_by=SlotReservation.slot_index.desc(),
    )

    assert [record.slot_index for record in found] == [2, 1]


def test_update_and_delete(store) -> None:
    counter = store.run_atomic(lambda tx: tx.create(TokenCounter(id='counter', count=1)))

    store.run_atomic(lambda tx: tx.update(counter, count=counter.count + 1))
    assert store.get(TokenCounter, 'counter').count == 2

    store.run_atomic(lambda tx: tx.delete(tx.get(TokenCounter, 'counter')))
    assert store.get(TokenCounter, 'counter') is None


def active_appointment(slot_index: int) -> Appointment:
    return Appointment(
        clinic_id='clinic-1',
        doctor_id=1,
        date=MONDAY,
        slot_index=slot_index,
        booked_via='Advance',
        status='Pending',
    )


def test_second_active_appointment_on_a_slot_is_a_write_conflict(store, scheduler_db) -> None:
    store.run_atomic(lambda tx: tx.create(active_appointment(0)))
    moved = store.run_atomic(lambda tx: tx.create(active_appointment(1)))

    with pytest.raises(WriteConflict):
        store.run_atomic(lambda tx: tx.create(active_appointment(0)))
    with pytest.raises(WriteConflict):
        store.run_atomic(lambda tx: tx.update(moved, slot_index=0))

    store.run_atomic(lambda tx: tx.update(tx.get(Appointment, moved.id), status='Cancelled', slot_index=0))
    assert sorted(record.slot_index for record in scheduler_db.query(Appointment).all()) == [0, 0]
