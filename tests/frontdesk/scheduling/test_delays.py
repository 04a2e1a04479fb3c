from datetime import date, datetime

from frontdesk.models.appointment import Appointment, AppointmentStatus, BookingType
from frontdesk.patients import PatientDetails
from frontdesk.scheduling.booking import book_advance_appointment
from frontdesk.scheduling.delays import (
    propagate_delay,
    propagate_doctor_late_delay,
    reduce_delay_on_slot_vacancy,
    running_delay,
)
from frontdesk.scheduling.status import cancel_appointment, confirm_arrival

MONDAY = date(2026, 1, 5)
EARLY = datetime(2026, 1, 5, 7, 0)


def book(store, doctor, index: int = 1) -> Appointment:
    return book_advance_appointment(
        store,
        doctor.id,
        MONDAY,
        PatientDetails(name=f'Patient {index}', phone=f'98470000{index:02d}'),
        now=EARLY,
    )


def test_propagate_delay_shifts_later_active_appointments(store, make_doctor) -> None:
    doctor = make_doctor()
    first, second, third, fourth = [book(store, doctor, index) for index in range(4)]
    cancel_appointment(store, fourth.id, now=EARLY)

    shifted = propagate_delay(store, first.id, 10, now=datetime(2026, 1, 5, 9, 5))

    assert shifted == [second.id, third.id]
    delayed = store.get(Appointment, second.id)
    assert delayed.delay_minutes == 10
    assert delayed.time == datetime(2026, 1, 5, 9, 15)
    assert delayed.estimated_time == datetime(2026, 1, 5, 9, 25)
    assert delayed.no_show_time == datetime(2026, 1, 5, 9, 40)
    assert store.get(Appointment, first.id).delay_minutes == 0
    assert store.get(Appointment, fourth.id).delay_minutes == 0


def test_propagate_delay_ignores_non_positive_delay(store, make_doctor) -> None:
    doctor = make_doctor()
    first = book(store, doctor, 1)
    book(store, doctor, 2)

    assert propagate_delay(store, first.id, 0, now=EARLY) == []


def test_doctor_late_delay_is_measured_from_first_arrival(store, make_doctor) -> None:
    doctor = make_doctor()
    appointments = [book(store, doctor, index) for index in range(3)]
    for appointment in appointments[:2]:
        confirm_arrival(store, appointment.id, now=datetime(2026, 1, 5, 8, 40))

    late = propagate_doctor_late_delay(store, doctor.id, MONDAY, now=datetime(2026, 1, 5, 9, 20))
    repeated = propagate_doctor_late_delay(store, doctor.id, MONDAY, now=datetime(2026, 1, 5, 9, 20))

    assert (late, repeated) == (20, 0)
    assert [store.get(Appointment, appointment.id).delay_minutes for appointment in appointments] == [20, 20, 20]


def test_doctor_late_delay_without_arrivals_is_zero(store, make_doctor) -> None:
    doctor = make_doctor()
    book(store, doctor)

    assert propagate_doctor_late_delay(store, doctor.id, MONDAY, now=datetime(2026, 1, 5, 9, 30)) == 0


def test_cancellation_gives_back_one_slot_of_delay(store, make_doctor) -> None:
    doctor = make_doctor()
    first, second, third = [book(store, doctor, index) for index in range(3)]
    propagate_delay(store, first.id, 20, now=datetime(2026, 1, 5, 8, 0))

    cancel_appointment(store, second.id, now=datetime(2026, 1, 5, 8, 0))

    remaining = store.get(Appointment, third.id)
    assert remaining.delay_minutes == 5
    assert remaining.no_show_time == datetime(2026, 1, 5, 9, 50)

    assert reduce_delay_on_slot_vacancy(store, second.id, 15, now=datetime(2026, 1, 5, 8, 1)) == [third.id]
    assert store.get(Appointment, third.id).delay_minutes == 0
    assert reduce_delay_on_slot_vacancy(store, second.id, 15, now=datetime(2026, 1, 5, 8, 2)) == []


def test_running_delay_comes_from_closest_earlier_active_appointment() -> None:
    appointments = [
        Appointment(slot_index=0, booked_via=BookingType.ADVANCE.value, status=AppointmentStatus.CONFIRMED.value, delay_minutes=5),
        Appointment(slot_index=1, booked_via=BookingType.ADVANCE.value, status=AppointmentStatus.PENDING.value, delay_minutes=12),
        Appointment(slot_index=2, booked_via=BookingType.ADVANCE.value, status=AppointmentStatus.CANCELLED.value, delay_minutes=30),
    ]

    assert running_delay(appointments, 3) == 12
    assert running_delay(appointments, 1) == 5
    assert running_delay(appointments, 0) == 0
