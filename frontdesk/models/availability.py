"""Availability model definitions."""

from sqlalchemy import Column, Date, ForeignKey, Integer, Time
from frontdesk.database import Base


class AvailabilityWindow(Base):
    """Represents one recurring weekly consultation session of a doctor."""
    __tablename__ = "availability_windows"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), index=True, nullable=False)
    weekday = Column(Integer, nullable=False)  # 0 = Monday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)


class LeaveException(Base):
    """Represents a blocked interval on one date of a doctor's availability."""
    __tablename__ = "leave_exceptions"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), index=True, nullable=False)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
