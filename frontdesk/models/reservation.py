"""Reservation and counter model definitions.

Each record lives at a deterministic id so that creating it acts as a
mutex: the primary key lets only one concurrent writer succeed.
"""

from sqlalchemy import Column, Date, DateTime, Integer, String
from frontdesk.database import Base


class SlotReservation(Base):
    """Claims one slot index of a doctor's day during allocation."""
    __tablename__ = "slot_reservations"

    id = Column(String, primary_key=True)
    clinic_id = Column(String)
    doctor_name = Column(String)
    date = Column(Date)
    slot_index = Column(Integer)
    booking_type = Column(String)
    reserved_by = Column(String)
    created_at = Column(DateTime)
    expires_at = Column(DateTime)


class TokenCounter(Base):
    """Monotonic token counter per clinic, doctor, date and booking type."""
    __tablename__ = "token_counters"

    id = Column(String, primary_key=True)
    count = Column(Integer, nullable=False, default=0)


class ConsultationCounter(Base):
    """Completed consultations per clinic, doctor, date and session."""
    __tablename__ = "consultation_counters"

    id = Column(String, primary_key=True)
    clinic_id = Column(String)
    doctor_id = Column(Integer)
    date = Column(Date)
    session_index = Column(Integer)
    count = Column(Integer, nullable=False, default=0)
    last_updated = Column(DateTime)
