from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from frontdesk.core.errors import SchedulingError
from frontdesk.database import SessionLocal, ensure_appointment_schema, ensure_reservation_schema
from frontdesk.notifications import LoggingNotificationSink, NotificationSink
from frontdesk.patients import PatientDetails
from frontdesk.scheduling import booking, delays, rejoin, status as appointment_status, walk_in_pool
from frontdesk.scheduling.appointments import get_doctor
from frontdesk.scheduling.policy import resolve_policy
from frontdesk.scheduling.queue_state import (
    calculate_skipped_rejoin_position,
    estimate_walk_in_position,
    load_queue_state,
    next_token,
)
from frontdesk.scheduling.slot_grid import current_or_next_session, load_day_schedule
from frontdesk.storage import SqlAlchemyStore

router = APIRouter(tags=['scheduling'])

MAX_PATIENT_NAME_LENGTH = 120
DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'

_default_notifier = LoggingNotificationSink()


class PatientRequest(BaseModel):
    patient_name: str
    phone: str | None = None
    age: int | None = None
    sex: str | None = None
    place: str | None = None

    @field_validator('patient_name')
    @classmethod
    def validate_patient_name(cls, value: str) -> str:
        normalized = ' '.join(value.split())
        if not normalized:
            raise ValueError('Patient name is required.')
        if len(normalized) > MAX_PATIENT_NAME_LENGTH:
            raise ValueError(f'Patient name must be {MAX_PATIENT_NAME_LENGTH} characters or fewer.')
        return normalized

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = ''.join(character for character in value if not character.isspace() and character != '-')
        if not normalized:
            return None
        if not normalized.lstrip('+').isdigit():
            raise ValueError('Phone number may only contain digits.')
        return normalized

    @field_validator('age')
    @classmethod
    def validate_age(cls, value: int | None) -> int | None:
        if value is not None and not 0 <= value <= 150:
            raise ValueError('Age must be between 0 and 150.')
        return value

    def to_details(self) -> PatientDetails:
        return PatientDetails(name=self.patient_name, phone=self.phone, age=self.age, sex=self.sex, place=self.place)


class AdvanceBookingRequest(PatientRequest):
    doctor_id: int
    date: date
    preferred_time: datetime | None = None
    preferred_slot_index: int | None = None

    @field_validator('preferred_slot_index')
    @classmethod
    def validate_preferred_slot_index(cls, value: int | None) -> int | None:
        if value is not None and value < 0:
            raise ValueError('Slot index cannot be negative.')
        return value


class RescheduleRequest(BaseModel):
    date: date
    preferred_time: datetime | None = None
    preferred_slot_index: int | None = None

    @field_validator('preferred_slot_index')
    @classmethod
    def validate_preferred_slot_index(cls, value: int | None) -> int | None:
        if value is not None and value < 0:
            raise ValueError('Slot index cannot be negative.')
        return value


class WalkInRequest(PatientRequest):
    doctor_id: int


class DelayRequest(BaseModel):
    delay_minutes: int

    @field_validator('delay_minutes')
    @classmethod
    def validate_delay_minutes(cls, value: int) -> int:
        if value <= 0:
            raise ValueError('Delay must be at least one minute.')
        return value


class AppointmentResponse(BaseModel):
    id: int
    clinic_id: str | None = None
    doctor_id: int
    doctor_name: str | None = None
    date: date
    slot_index: int | None = None
    session_index: int | None = None
    time: datetime | None = None
    booked_via: str
    status: str
    token_number: str | None = None
    numeric_token: int | None = None
    patient_id: int | None = None
    patient_name: str | None = None
    cut_off_time: datetime | None = None
    no_show_time: datetime | None = None
    delay_minutes: int | None = 0
    estimated_time: datetime | None = None

    class Config:
        from_attributes = True


class SlotResponse(BaseModel):
    index: int
    time: datetime
    session_index: int
    is_blocked: bool
    is_booked: bool
    in_advance_zone: bool

    class Config:
        from_attributes = True


class SessionResponse(BaseModel):
    index: int
    start: datetime
    end: datetime
    total_slots: int
    advance_capacity: int
    walk_in_capacity: int
    advance_booked: int
    consultation_started: bool

    class Config:
        from_attributes = True


class DayScheduleResponse(BaseModel):
    doctor_id: int
    date: date
    slot_duration: int
    sessions: list[SessionResponse]
    slots: list[SlotResponse]

    class Config:
        from_attributes = True


class WalkInResponse(BaseModel):
    status: str
    patient_id: int
    appointment_id: int | None = None
    token_number: str | None = None
    numeric_token: int | None = None
    slot_index: int | None = None
    estimated_time: datetime | None = None
    patients_ahead: int = 0
    pool_position: int | None = None

    class Config:
        from_attributes = True


class PoolEntryResponse(BaseModel):
    id: int
    doctor_id: int
    date: date
    session_index: int
    patient_id: int | None = None
    patient_name: str
    registered_at: datetime
    status: str
    position: int | None = None

    class Config:
        from_attributes = True


class PoolPlacementResponse(BaseModel):
    entry_id: int
    patient_id: int | None = None
    appointment_id: int
    token_number: str
    slot_index: int
    time: datetime

    class Config:
        from_attributes = True


class PoolAssignmentResponse(BaseModel):
    placed: list[PoolPlacementResponse]
    failed: dict[int, str]


class QueueResponse(BaseModel):
    session_index: int
    consultation_count: int
    current_consultation: AppointmentResponse | None = None
    next_token: AppointmentResponse | None = None
    arrived_queue: list[AppointmentResponse]
    buffer_queue: list[AppointmentResponse]
    skipped_queue: list[AppointmentResponse]
    estimated_walk_in_position: int
    skipped_rejoin_position: int


class StatusSweepResponse(BaseModel):
    skipped: list[int]
    no_shows: list[int]


class DelayResponse(BaseModel):
    delay_minutes: int
    delayed_appointment_ids: list[int] = []


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
        ensure_reservation_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_notifier() -> NotificationSink:
    return _default_notifier


def current_time() -> datetime:
    return datetime.now()


def to_http_error(exc: SchedulingError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


def database_unavailable(db: Session) -> HTTPException:
    db.rollback()
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


@router.get('/doctors/{doctor_id}/slots', response_model=DayScheduleResponse)
def list_doctor_slots(
    doctor_id: int,
    target_date: date = Query(alias='date'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        overview = booking.describe_day(SqlAlchemyStore(db), doctor_id, target_date, current_time())
        return DayScheduleResponse.model_validate(overview)
    except SchedulingError as exc:
        raise to_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.post('/appointments/advance', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_advance(
    data: AdvanceBookingRequest,
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    ensure_database_ready()

    try:
        appointment = booking.book_advance_appointment(
            SqlAlchemyStore(db),
            data.doctor_id,
            data.date,
            data.to_details(),
            preferred_time=data.preferred_time,
            preferred_slot_index=data.preferred_slot_index,
            now=current_time(),
            notifier=notifier,
        )
        return AppointmentResponse.model_validate(appointment)
    except SchedulingError as exc:
        raise to_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.post('/appointments/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule(
    appointment_id: int,
    data: RescheduleRequest,
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    ensure_database_ready()

    try:
        appointment = booking.reschedule_appointment(
            SqlAlchemyStore(db),
            appointment_id,
            data.date,
            preferred_slot_index=data.preferred_slot_index,
            preferred_time=data.preferred_time,
            now=current_time(),
            notifier=notifier,
        )
        return AppointmentResponse.model_validate(appointment)
    except SchedulingError as exc:
        raise to_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.post('/walk-ins', response_model=WalkInResponse, status_code=status.HTTP_201_CREATED)
def register_walk_in(
    data: WalkInRequest,
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    ensure_database_ready()

    try:
        registration = booking.register_walk_in(
            SqlAlchemyStore(db),
            data.doctor_id,
            data.to_details(),
            now=current_time(),
            notifier=notifier,
        )
        return WalkInResponse.model_validate(registration)
    except SchedulingError as exc:
        raise to_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.get('/doctors/{doctor_id}/walk-in-pool', response_model=list[PoolEntryResponse])
def list_walk_in_pool(
    doctor_id: int,
    session_index: int = Query(default=0, ge=0),
    target_date: date | None = Query(default=None, alias='date'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        store = SqlAlchemyStore(db)
        doctor = get_doctor(store, doctor_id)
        entries = walk_in_pool.get_walk_in_pool(
            store,
            doctor.clinic_id,
            doctor.id,
            target_date or current_time().date(),
            session_index,
        )
        return [PoolEntryResponse.model_validate(entry) for entry in entries]
    except SchedulingError as exc:
        raise to_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.delete('/walk-in-pool/{entry_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_walk_in_pool_entry(entry_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        walk_in_pool.remove_from_walk_in_pool(SqlAlchemyStore(db), entry_id)
    except SchedulingError as exc:
        raise to_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.post('/doctors/{doctor_id}/sessions/{session_index}/pool/assign', response_model=PoolAssignmentResponse)
def assign_walk_in_pool(
    doctor_id: int,
    session_index: int,
    target_date: date | None = Query(default=None, alias='date'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        store = SqlAlchemyStore(db)
        now = current_time()
        drained = walk_in_pool.assign_walk_ins_from_pool(
            store,
            get_doctor(store, doctor_id),
            target_date or now.date(),
            session_index,
            now,
        )
        return PoolAssignmentResponse(
            placed=[PoolPlacementResponse.model_validate(placement) for placement in drained.placed],
            failed=drained.failed,
        )
    except SchedulingError as exc:
        raise to_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.get('/doctors/{doctor_id}/queue', response_model=QueueResponse)
def get_queue(
    doctor_id: int,
    session_index: int | None = Query(default=None, ge=0),
    target_date: date | None = Query(default=None, alias='date'),
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    ensure_database_ready()

    try:
        store = SqlAlchemyStore(db)
        now = current_time()
        queue_date = target_date or now.date()
        doctor = get_doctor(store, doctor_id)

        if queue_date == now.date():
            walk_in_pool.drain_pool_if_started(store, doctor, queue_date, now, notifier)

        if session_index is None:
            session = current_or_next_session(load_day_schedule(store, doctor, queue_date).sessions, now)
            session_index = session.index if session is not None else 0

        queue = load_queue_state(store, doctor.clinic_id, doctor, queue_date, session_index)
        upcoming = next_token(queue.buffer_queue, queue.arrived_queue)
        return QueueResponse(
            session_index=session_index,
            consultation_count=queue.consultation_count,
            current_consultation=(
                AppointmentResponse.model_validate(queue.current_consultation) if queue.current_consultation else None
            ),
            next_token=AppointmentResponse.model_validate(upcoming) if upcoming else None,
            arrived_queue=[AppointmentResponse.model_validate(item) for item in queue.arrived_queue],
            buffer_queue=[AppointmentResponse.model_validate(item) for item in queue.buffer_queue],
            skipped_queue=[AppointmentResponse.model_validate(item) for item in queue.skipped_queue],
            estimated_walk_in_position=estimate_walk_in_position(
                queue.consultation_count,
                resolve_policy(store, doctor.clinic_id).walk_in_spacing,
            ),
            skipped_rejoin_position=calculate_skipped_rejoin_position(queue.arrived_queue),
        )
    except SchedulingError as exc:
        raise to_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


def _run_transition(db: Session, transition, appointment_id: int, **kwargs) -> AppointmentResponse:
    ensure_database_ready()

    try:
        result = transition(SqlAlchemyStore(db), appointment_id, now=current_time(), **kwargs)
        return AppointmentResponse.model_validate(result.appointment)
    except SchedulingError as exc:
        raise to_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.post('/appointments/{appointment_id}/confirm', response_model=AppointmentResponse)
def confirm_appointment(appointment_id: int, db: Session = Depends(get_db)):
    return _run_transition(db, appointment_status.confirm_arrival, appointment_id)


@router.post('/appointments/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    return _run_transition(db, appointment_status.complete_appointment, appointment_id, notifier=notifier)


@router.post('/appointments/{appointment_id}/skip', response_model=AppointmentResponse)
def skip_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    return _run_transition(db, appointment_status.skip_appointment, appointment_id, notifier=notifier)


@router.post('/appointments/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    return _run_transition(db, appointment_status.cancel_appointment, appointment_id, notifier=notifier)


@router.post('/appointments/{appointment_id}/no-show', response_model=AppointmentResponse)
def mark_no_show(appointment_id: int, db: Session = Depends(get_db)):
    return _run_transition(db, appointment_status.mark_no_show, appointment_id)


@router.post('/appointments/{appointment_id}/rejoin', response_model=AppointmentResponse)
def rejoin_appointment(appointment_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        appointment = rejoin.rejoin_skipped_appointment(SqlAlchemyStore(db), appointment_id, current_time())
        return AppointmentResponse.model_validate(appointment)
    except SchedulingError as exc:
        raise to_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.delete('/appointments/{appointment_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_appointment(appointment_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        appointment_status.delete_appointment(SqlAlchemyStore(db), appointment_id)
    except SchedulingError as exc:
        raise to_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.post('/clinics/{clinic_id}/status-sweep', response_model=StatusSweepResponse)
def run_status_sweep(
    clinic_id: str,
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    ensure_database_ready()

    try:
        swept = appointment_status.sweep_statuses(SqlAlchemyStore(db), clinic_id, current_time(), notifier)
        return StatusSweepResponse(skipped=swept.skipped, no_shows=swept.no_shows)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.post('/appointments/{appointment_id}/delay', response_model=DelayResponse)
def delay_following_appointments(appointment_id: int, data: DelayRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        shifted = delays.propagate_delay(SqlAlchemyStore(db), appointment_id, data.delay_minutes, current_time())
        return DelayResponse(delay_minutes=data.delay_minutes, delayed_appointment_ids=shifted)
    except SchedulingError as exc:
        raise to_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.post('/doctors/{doctor_id}/late', response_model=DelayResponse)
def report_doctor_late(
    doctor_id: int,
    target_date: date | None = Query(default=None, alias='date'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        now = current_time()
        late_minutes = delays.propagate_doctor_late_delay(SqlAlchemyStore(db), doctor_id, target_date or now.date(), now)
        return DelayResponse(delay_minutes=late_minutes)
    except SchedulingError as exc:
        raise to_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc
