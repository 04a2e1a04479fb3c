import os
from datetime import date, time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from frontdesk.database import Base  # noqa: E402
from frontdesk.models.appointment import Appointment  # noqa: E402
from frontdesk.models.availability import AvailabilityWindow, LeaveException  # noqa: E402
from frontdesk.models.clinic import Clinic, Doctor  # noqa: E402
from frontdesk.models.patient import Patient, PatientVisit  # noqa: E402
from frontdesk.models.reservation import ConsultationCounter, SlotReservation, TokenCounter  # noqa: E402
from frontdesk.models.walk_in_pool import WalkInPoolEntry  # noqa: E402
from frontdesk.storage import SqlAlchemyStore  # noqa: E402

MONDAY = date(2026, 1, 5)

SCHEDULER_TABLES = [
    Clinic.__table__,
    Doctor.__table__,
    Patient.__table__,
    PatientVisit.__table__,
    AvailabilityWindow.__table__,
    LeaveException.__table__,
    Appointment.__table__,
    SlotReservation.__table__,
    TokenCounter.__table__,
    ConsultationCounter.__table__,
    WalkInPoolEntry.__table__,
]


@pytest.fixture
def scheduler_db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=SCHEDULER_TABLES)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine, tables=list(reversed(SCHEDULER_TABLES)))


@pytest.fixture
def store(scheduler_db):
    return SqlAlchemyStore(scheduler_db)


@pytest.fixture
def make_doctor(scheduler_db):
    """Create a clinic doctor who works Monday mornings (09:00-12:00) by default."""

    def _make_doctor(
        name: str = 'Dr. Asha Menon',
        sessions: tuple[tuple[time, time], ...] = ((time(9, 0), time(12, 0)),),
        weekday: int = 0,
        slot_minutes: int | None = 15,
        walk_in_token_allotment: int | None = None,
        advance_ratio: float | None = None,
    ) -> Doctor:
        clinic = scheduler_db.get(Clinic, 'clinic-1')
        if clinic is None:
            clinic = Clinic(
                id='clinic-1',
                name='Sunrise Clinic',
                walk_in_token_allotment=walk_in_token_allotment,
                advance_ratio=advance_ratio,
            )
            scheduler_db.add(clinic)

        doctor = Doctor(clinic_id='clinic-1', name=name, department='General Medicine', average_consulting_time=slot_minutes)
        scheduler_db.add(doctor)
        scheduler_db.flush()

        for start, end in sessions:
            scheduler_db.add(AvailabilityWindow(doctor_id=doctor.id, weekday=weekday, start_time=start, end_time=end))

        scheduler_db.commit()
        scheduler_db.refresh(doctor)
        return doctor

    return _make_doctor
