"""Appointment model definitions."""

from datetime import timedelta
from enum import Enum

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, String, text
from frontdesk.database import Base


class BookingType(str, Enum):
    ADVANCE = "Advance"
    WALK_IN = "Walk-in"


class AppointmentStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    SKIPPED = "Skipped"
    NO_SHOW = "No-show"


ACTIVE_STATUSES = (AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value)

ACTIVE_SLOT_CONDITION = "status IN ('Pending', 'Confirmed')"


class Appointment(Base):
    """Represents a token-holding appointment in a doctor's day."""
    __tablename__ = "appointments"
    __table_args__ = (
        # At most one active appointment may hold a slot.
        Index(
            "uq_appointments_active_slot",
            "doctor_id",
            "date",
            "slot_index",
            unique=True,
            sqlite_where=text(ACTIVE_SLOT_CONDITION),
            postgresql_where=text(ACTIVE_SLOT_CONDITION),
        ),
    )

    id = Column(Integer, primary_key=True)
    clinic_id = Column(String, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"))
    doctor_name = Column(String)
    date = Column(Date)
    slot_index = Column(Integer)
    session_index = Column(Integer)
    time = Column(DateTime)
    booked_via = Column(String)
    status = Column(String)
    token_number = Column(String)
    numeric_token = Column(Integer)
    patient_id = Column(Integer, ForeignKey("patients.id"))
    patient_name = Column(String)
    cut_off_time = Column(DateTime)
    no_show_time = Column(DateTime)
    delay_minutes = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def estimated_time(self):
        if self.time is None:
            return None
        return self.time + timedelta(minutes=self.delay_minutes or 0)

    @property
    def is_advance(self) -> bool:
        return self.booked_via == BookingType.ADVANCE.value
