from datetime import date, datetime

import pytest
from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from frontdesk.models.appointment import Appointment
from frontdesk.notifications import NotificationKind, RecordingNotificationSink
from frontdesk.routes.scheduling_routes import (
    AdvanceBookingRequest,
    DelayRequest,
    RescheduleRequest,
    WalkInRequest,
    book_advance,
    cancel_appointment,
    complete_appointment,
    confirm_appointment,
    delay_following_appointments,
    delete_appointment,
    get_queue,
    list_doctor_slots,
    list_walk_in_pool,
    register_walk_in,
    rejoin_appointment,
    remove_walk_in_pool_entry,
    report_doctor_late,
    reschedule,
    run_status_sweep,
    skip_appointment,
)

MONDAY = date(2026, 1, 5)


@pytest.fixture
def routes(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr('frontdesk.routes.scheduling_routes.ensure_database_ready', lambda: None)

    def set_now(value: datetime) -> None:
        monkeypatch.setattr('frontdesk.routes.scheduling_routes.current_time', lambda: value)

    set_now(datetime(2026, 1, 5, 7, 0))
    return set_now


def advance_request(doctor_id: int, index: int = 1, **overrides) -> AdvanceBookingRequest:
    payload = {
        'patient_name': f'Patient {index}',
        'phone': f'98470 000{index:02d}',
        'doctor_id': doctor_id,
        'date': MONDAY,
    }
    payload.update(overrides)
    return AdvanceBookingRequest(**payload)


def test_patient_request_normalizes_name_and_phone() -> None:
    request = WalkInRequest(patient_name='  Anil   Kumar ', phone=' +91 98470-12345 ', doctor_id=1)

    assert request.patient_name == 'Anil Kumar'
    assert request.phone == '+919847012345'


@pytest.mark.parametrize(
    'payload',
    [
        {'patient_name': '   ', 'doctor_id': 1},
        {'patient_name': 'Anil', 'phone': '98470-ABCDE', 'doctor_id': 1},
        {'patient_name': 'Anil', 'age': 200, 'doctor_id': 1},
    ],
)
def test_walk_in_request_rejects_invalid_patient_details(payload: dict) -> None:
    with pytest.raises(ValidationError):
        WalkInRequest(**payload)


def test_reschedule_request_rejects_negative_slot_index() -> None:
    with pytest.raises(ValidationError):
        RescheduleRequest(date=MONDAY, preferred_slot_index=-1)


def test_delay_request_rejects_non_positive_minutes() -> None:
    with pytest.raises(ValidationError):
        DelayRequest(delay_minutes=0)


def test_book_advance_returns_created_appointment(routes, scheduler_db, make_doctor) -> None:
    doctor = make_doctor()
    notifier = RecordingNotificationSink()

    response = book_advance(data=advance_request(doctor.id), db=scheduler_db, notifier=notifier)

    assert response.token_number == 'A001'
    assert response.slot_index == 0
    assert response.status == 'Pending'
    assert response.time == datetime(2026, 1, 5, 9, 0)
    assert notifier.kinds() == [NotificationKind.APPOINTMENT_BOOKED]


def test_book_advance_maps_missing_doctor_to_not_found(routes, scheduler_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        book_advance(data=advance_request(999), db=scheduler_db, notifier=RecordingNotificationSink())

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Doctor not found.'


def test_book_advance_maps_capacity_to_conflict(routes, scheduler_db, make_doctor) -> None:
    doctor = make_doctor()
    for index in range(10):
        book_advance(data=advance_request(doctor.id, index), db=scheduler_db, notifier=RecordingNotificationSink())

    with pytest.raises(HTTPException) as exception_info:
        book_advance(data=advance_request(doctor.id, 42), db=scheduler_db, notifier=RecordingNotificationSink())

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail.startswith('Advance bookings have reached the limit for this session.')


def test_book_advance_maps_database_errors_to_service_unavailable(routes, scheduler_db, make_doctor, monkeypatch: pytest.MonkeyPatch) -> None:
    doctor = make_doctor()

    def broken_booking(*args, **kwargs):
        raise OperationalError('SELECT 1', {}, Exception('connection refused'))

    monkeypatch.setattr('frontdesk.routes.scheduling_routes.booking.book_advance_appointment', broken_booking)

    with pytest.raises(HTTPException) as exception_info:
        book_advance(data=advance_request(doctor.id), db=scheduler_db, notifier=RecordingNotificationSink())

    assert exception_info.value.status_code == 503
    assert exception_info.value.detail == 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'


def test_list_doctor_slots_describes_day(routes, scheduler_db, make_doctor) -> None:
    doctor = make_doctor()
    book_advance(data=advance_request(doctor.id), db=scheduler_db, notifier=RecordingNotificationSink())

    response = list_doctor_slots(doctor_id=doctor.id, target_date=MONDAY, db=scheduler_db)

    assert len(response.slots) == 12
    assert response.slots[0].is_booked
    assert response.sessions[0].advance_capacity == 10


def test_list_doctor_slots_on_day_off_is_conflict(routes, scheduler_db, make_doctor) -> None:
    doctor = make_doctor()

    with pytest.raises(HTTPException) as exception_info:
        list_doctor_slots(doctor_id=doctor.id, target_date=date(2026, 1, 6), db=scheduler_db)

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'Doctor is not available on this date.'


def test_reschedule_route_moves_appointment(routes, scheduler_db, make_doctor) -> None:
    doctor = make_doctor()
    booked = book_advance(data=advance_request(doctor.id), db=scheduler_db, notifier=RecordingNotificationSink())

    response = reschedule(
        appointment_id=booked.id,
        data=RescheduleRequest(date=MONDAY, preferred_time=datetime(2026, 1, 5, 11, 0)),
        db=scheduler_db,
        notifier=RecordingNotificationSink(),
    )

    assert response.slot_index == 8
    assert response.token_number == 'A009'


def test_walk_in_registration_pools_then_assigns(routes, scheduler_db, make_doctor) -> None:
    doctor = make_doctor()
    notifier = RecordingNotificationSink()

    routes(datetime(2026, 1, 5, 8, 0))
    pooled = register_walk_in(data=WalkInRequest(patient_name='Ravi', doctor_id=doctor.id), db=scheduler_db, notifier=notifier)
    pool = list_walk_in_pool(doctor_id=doctor.id, session_index=0, target_date=MONDAY, db=scheduler_db)

    assert pooled.status == 'pooled'
    assert [entry.patient_name for entry in pool] == ['Ravi']

    routes(datetime(2026, 1, 5, 9, 5))
    queue = get_queue(doctor_id=doctor.id, session_index=None, target_date=None, db=scheduler_db, notifier=notifier)

    assert queue.session_index == 0
    assert queue.arrived_queue == []
    assert list_walk_in_pool(doctor_id=doctor.id, session_index=0, target_date=MONDAY, db=scheduler_db) == []
    assert notifier.kinds() == [NotificationKind.CONSULTATION_STARTED]


def test_walk_in_registration_outside_window_is_forbidden(routes, scheduler_db, make_doctor) -> None:
    doctor = make_doctor()
    routes(datetime(2026, 1, 5, 11, 50))

    with pytest.raises(HTTPException) as exception_info:
        register_walk_in(data=WalkInRequest(patient_name='Ravi', doctor_id=doctor.id), db=scheduler_db, notifier=RecordingNotificationSink())

    assert exception_info.value.status_code == 403


def test_remove_walk_in_pool_entry_not_found(routes, scheduler_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        remove_walk_in_pool_entry(entry_id=404, db=scheduler_db)

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Walk-in pool entry not found.'


def test_queue_flow_through_status_routes(routes, scheduler_db, make_doctor) -> None:
    doctor = make_doctor()
    notifier = RecordingNotificationSink()
    first = book_advance(data=advance_request(doctor.id, 1), db=scheduler_db, notifier=notifier)
    second = book_advance(data=advance_request(doctor.id, 2), db=scheduler_db, notifier=notifier)

    routes(datetime(2026, 1, 5, 8, 40))
    confirm_appointment(appointment_id=first.id, db=scheduler_db)
    confirm_appointment(appointment_id=second.id, db=scheduler_db)

    routes(datetime(2026, 1, 5, 9, 10))
    queue = get_queue(doctor_id=doctor.id, session_index=0, target_date=MONDAY, db=scheduler_db, notifier=notifier)
    assert queue.current_consultation.token_number == 'A001'
    assert [item.token_number for item in queue.buffer_queue] == ['A001', 'A002']

    completed = complete_appointment(appointment_id=first.id, db=scheduler_db, notifier=notifier)
    queue = get_queue(doctor_id=doctor.id, session_index=0, target_date=MONDAY, db=scheduler_db, notifier=notifier)

    assert completed.status == 'Completed'
    assert queue.consultation_count == 1
    assert queue.current_consultation.token_number == 'A002'
    assert queue.estimated_walk_in_position == 6


def test_skip_rejoin_and_cancel_routes(routes, scheduler_db, make_doctor) -> None:
    doctor = make_doctor()
    booked = book_advance(data=advance_request(doctor.id), db=scheduler_db, notifier=RecordingNotificationSink())

    routes(datetime(2026, 1, 5, 9, 0))
    skipped = skip_appointment(appointment_id=booked.id, db=scheduler_db, notifier=RecordingNotificationSink())
    rejoined = rejoin_appointment(appointment_id=booked.id, db=scheduler_db)

    assert skipped.status == 'Skipped'
    assert rejoined.status == 'Confirmed'
    assert rejoined.booked_via == 'Walk-in'
    assert rejoined.slot_index != booked.slot_index

    cancelled = cancel_appointment(appointment_id=booked.id, db=scheduler_db, notifier=RecordingNotificationSink())
    assert cancelled.status == 'Cancelled'

    with pytest.raises(HTTPException) as exception_info:
        confirm_appointment(appointment_id=booked.id, db=scheduler_db)
    assert exception_info.value.status_code == 409


def test_delete_appointment_route(routes, scheduler_db, make_doctor) -> None:
    doctor = make_doctor()
    booked = book_advance(data=advance_request(doctor.id), db=scheduler_db, notifier=RecordingNotificationSink())

    delete_appointment(appointment_id=booked.id, db=scheduler_db)

    assert scheduler_db.query(Appointment).count() == 0
    with pytest.raises(HTTPException) as exception_info:
        delete_appointment(appointment_id=booked.id, db=scheduler_db)
    assert exception_info.value.status_code == 404


def test_status_sweep_route(routes, scheduler_db, make_doctor) -> None:
    doctor = make_doctor()
    booked = book_advance(data=advance_request(doctor.id), db=scheduler_db, notifier=RecordingNotificationSink())

    routes(datetime(2026, 1, 5, 8, 50))
    response = run_status_sweep(clinic_id=doctor.clinic_id, db=scheduler_db, notifier=RecordingNotificationSink())

    assert response.skipped == [booked.id]
    assert response.no_shows == []


def test_delay_routes_push_back_estimated_times(routes, scheduler_db, make_doctor) -> None:
    doctor = make_doctor()
    first = book_advance(data=advance_request(doctor.id, 1), db=scheduler_db, notifier=RecordingNotificationSink())
    second = book_advance(data=advance_request(doctor.id, 2), db=scheduler_db, notifier=RecordingNotificationSink())

    routes(datetime(2026, 1, 5, 8, 40))
    confirm_appointment(appointment_id=first.id, db=scheduler_db)

    routes(datetime(2026, 1, 5, 9, 10))
    late = report_doctor_late(doctor_id=doctor.id, target_date=None, db=scheduler_db)
    delayed = delay_following_appointments(appointment_id=first.id, data=DelayRequest(delay_minutes=5), db=scheduler_db)

    assert late.delay_minutes == 10
    assert delayed.delayed_appointment_ids == [second.id]
    assert scheduler_db.get(Appointment, second.id).estimated_time == datetime(2026, 1, 5, 9, 30)


def test_delay_route_for_missing_appointment_is_not_found(routes, scheduler_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        delay_following_appointments(appointment_id=404, data=DelayRequest(delay_minutes=5), db=scheduler_db)

    assert exception_info.value.status_code == 404
